from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import MissingReferenceError, ResourceNotFoundError, ValidationError
from app.models.academic import Batch, Subject
from app.models.faculty import Faculty
from app.models.time_slot import TimeSlot
from app.models.timetable_entry import TimetableEntry
from app.models.timetable_template import EndCondition, TimetableTemplate
from app.models.user import User
from app.schemas.conflict import ConflictReport
from app.schemas.template import RecurrenceOutcome, TemplateCreate, TemplatePreview
from app.services.audit import log_activity
from app.services.calendar_facts import CalendarFacts
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore, commit_or_rollback, flush_or_rollback
from app.services.recurrence import expand_template

logger = logging.getLogger(__name__)


def get_template(db: Session, template_id: str) -> TimetableTemplate:
    template = db.get(TimetableTemplate, template_id)
    if template is None:
        raise ResourceNotFoundError("TimetableTemplate", template_id)
    return template


def list_templates(db: Session, *, batch_id: str | None = None, include_inactive: bool = False) -> list[TimetableTemplate]:
    stmt = select(TimetableTemplate)
    if batch_id:
        stmt = stmt.where(TimetableTemplate.batch_id == batch_id)
    if not include_inactive:
        stmt = stmt.where(TimetableTemplate.is_active.is_(True))
    return list(db.execute(stmt.order_by(TimetableTemplate.created_at.desc(), TimetableTemplate.name)).scalars().all())


def _validate_template_references(db: Session, payload: TemplateCreate) -> None:
    missing: dict[str, list[str]] = {"batches": [], "subjects": [], "faculty": [], "time_slots": []}
    if db.get(Batch, payload.batch_id) is None:
        missing["batches"].append(payload.batch_id)
    subject = db.get(Subject, payload.subject_id)
    if subject is None:
        missing["subjects"].append(payload.subject_id)
    elif subject.batch_id != payload.batch_id:
        missing["subjects_not_in_batch"] = [f"{payload.subject_id}@{payload.batch_id}"]
    if db.get(Faculty, payload.faculty_id) is None:
        missing["faculty"].append(payload.faculty_id)
    slot = db.get(TimeSlot, payload.time_slot_id)
    if slot is None or not slot.is_active:
        missing["time_slots"].append(payload.time_slot_id)
    if any(missing.values()):
        raise MissingReferenceError(missing)


def expand(db: Session, template: TimetableTemplate, calendar: CalendarFacts | None = None) -> RecurrenceOutcome:
    calendar = calendar or CalendarFacts(db)
    slot = db.get(TimeSlot, template.time_slot_id)
    if slot is None:
        raise MissingReferenceError({"time_slots": [template.time_slot_id]})
    end_date = template.end_date
    if end_date is None and template.end_condition == EndCondition.SEMESTER_END:
        end_date = calendar.semester_end_for_batch(template.batch_id, template.start_date)
    target_hours = template.total_hours
    if target_hours is None and template.end_condition == EndCondition.HOURS_COMPLETE:
        subject = db.get(Subject, template.subject_id)
        target_hours = subject.total_hours if subject is not None else None
    return expand_template(
        template,
        calendar=calendar,
        slot=slot,
        end_date=end_date,
        target_hours=target_hours,
        max_iterations=get_settings().recurrence_max_iterations,
    )


def preview_template(db: Session, template: TimetableTemplate) -> TemplatePreview:
    calendar = CalendarFacts(db)
    outcome = expand(db, template, calendar)
    warnings: list[str] = []
    if outcome.cap_reached:
        warnings.append("Recurrence stopped at the iteration cap; check the template's end condition")
    if outcome.drafts:
        report = ConflictDetector(db, calendar).detect(outcome.drafts)
    else:
        report = ConflictReport.build([])
        warnings.append("Template produces no entries")
    return TemplatePreview(
        template_id=template.id,
        batch_id=template.batch_id,
        recurrence=outcome,
        conflicts=report,
        warnings=warnings,
    )


def generate_entries(db: Session, template: TimetableTemplate, user: User) -> tuple[list[TimetableEntry], int, RecurrenceOutcome]:
    """Persist the template's valid drafts; colliding drafts are dropped and logged."""
    calendar = CalendarFacts(db)
    outcome = expand(db, template, calendar)
    if not outcome.drafts:
        return [], 0, outcome
    report = ConflictDetector(db, calendar).detect(outcome.drafts)
    store = EntryStore(db)
    created: list[TimetableEntry] = []
    dropped = 0
    for item in report.items:
        if item.has_errors:
            dropped += 1
            logger.info(
                "TEMPLATE DRAFT DROPPED | template_id=%s | date=%s | reason=%s",
                template.id,
                item.entry.date,
                "; ".join(conflict.message for conflict in item.errors()),
            )
            continue
        created.append(store.stage_create(item.entry))
    flush_or_rollback(db, action="template generation")
    log_activity(
        db,
        user=user,
        action="timetable.template.generate",
        entity_type="timetable_template",
        entity_id=template.id,
        details={"created": len(created), "dropped": dropped, "cap_reached": outcome.cap_reached},
    )
    return created, dropped, outcome


def create_template(db: Session, payload: TemplateCreate, user: User) -> tuple[TimetableTemplate, list[TimetableEntry], int, RecurrenceOutcome | None]:
    _validate_template_references(db, payload)
    template = TimetableTemplate(
        name=payload.name,
        batch_id=payload.batch_id,
        subject_id=payload.subject_id,
        faculty_id=payload.faculty_id,
        time_slot_id=payload.time_slot_id,
        day_of_week=payload.day_of_week,
        recurrence_pattern=payload.recurrence_pattern,
        start_date=payload.start_date,
        end_date=payload.end_date,
        end_condition=payload.end_condition,
        total_hours=payload.total_hours,
        notes=payload.notes,
        is_active=True,
        created_by_id=user.id,
    )
    db.add(template)
    flush_or_rollback(db, action="timetable template")
    log_activity(
        db,
        user=user,
        action="timetable.template.create",
        entity_type="timetable_template",
        entity_id=template.id,
        details={"name": template.name, "generate_entries": payload.generate_entries},
    )

    created: list[TimetableEntry] = []
    dropped = 0
    outcome: RecurrenceOutcome | None = None
    if payload.generate_entries:
        created, dropped, outcome = generate_entries(db, template, user)
    commit_or_rollback(db, action="timetable template")
    logger.info(
        "TIMETABLE TEMPLATE CREATED | template_id=%s | batch_id=%s | generated=%s | dropped=%s | user_id=%s",
        template.id,
        template.batch_id,
        len(created),
        dropped,
        user.id,
    )
    return template, created, dropped, outcome


def deactivate_template(db: Session, template_id: str, user: User) -> TimetableTemplate:
    template = get_template(db, template_id)
    if not template.is_active:
        raise ValidationError("Template is already inactive", details={"template_id": template_id})
    template.is_active = False
    log_activity(
        db,
        user=user,
        action="timetable.template.deactivate",
        entity_type="timetable_template",
        entity_id=template.id,
    )
    commit_or_rollback(db, action="timetable template deactivation")
    return template
