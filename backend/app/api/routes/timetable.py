import datetime as dt
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.core.exceptions import ResourceNotFoundError, ValidationError
from app.models.time_slot import TimeSlot
from app.models.timetable_entry import DayOfWeek, TimetableEntry
from app.models.user import User, UserRole
from app.schemas.bulk import BulkCreateSpec, BulkOperationResult, BulkOperationSubmit, BulkOptions
from app.schemas.conflict import ConflictCheckResponse, EntryWriteResult
from app.schemas.template import TemplateCreate, TemplateCreateResult, TemplateOut, TemplatePreview
from app.schemas.timetable import (
    BulkCreateRequest,
    ConflictCheckRequest,
    EntryDraft,
    EntryFilter,
    EntryOut,
    EntryUpdate,
    TimeSlotCreate,
    TimeSlotOut,
    TimeSlotUpdate,
    parse_time_to_minutes,
)
from app.schemas.undo import UndoRecorded
from app.services.audit import log_activity
from app.services.bulk_operations import BulkOperationEngine
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore, commit_or_rollback, flush_or_rollback
from app.services.templates import (
    create_template,
    deactivate_template,
    get_template,
    list_templates,
    preview_template,
)
from app.services.timetable_entries import create_entry, delete_entry, update_entry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/entries", response_model=list[EntryOut])
def list_entries(
    batch_id: str | None = Query(default=None),
    faculty_id: str | None = Query(default=None),
    day_of_week: DayOfWeek | None = Query(default=None),
    date_from: dt.date | None = Query(default=None),
    date_to: dt.date | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[EntryOut]:
    filters = EntryFilter(
        batch_id=batch_id,
        faculty_id=faculty_id,
        day_of_week=day_of_week,
        date_from=date_from,
        date_to=date_to,
        include_inactive=include_inactive,
    )
    return EntryStore(db).list_entries(filters)


@router.post("/entries", response_model=EntryWriteResult, status_code=status.HTTP_201_CREATED)
def create_timetable_entry(
    payload: EntryDraft,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> EntryWriteResult:
    entry, outcome = create_entry(db, payload, current_user)
    return EntryWriteResult(entry=EntryOut.model_validate(entry), warnings=outcome.warnings())


@router.patch("/entries/{entry_id}", response_model=EntryWriteResult)
def update_timetable_entry(
    entry_id: str,
    payload: EntryUpdate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> EntryWriteResult:
    entry, outcome = update_entry(db, entry_id, payload, current_user)
    return EntryWriteResult(entry=EntryOut.model_validate(entry), warnings=outcome.warnings())


@router.delete("/entries/{entry_id}", response_model=UndoRecorded)
def delete_timetable_entry(
    entry_id: str,
    ttl_seconds: int | None = Query(default=None, ge=1),
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> UndoRecorded:
    record = delete_entry(db, entry_id, current_user, ttl_seconds=ttl_seconds)
    return UndoRecorded(undo_id=record.id, expires_at=record.expires_at)


@router.post("/entries/bulk", response_model=BulkOperationResult)
def bulk_create_entries(
    payload: BulkCreateRequest,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> BulkOperationResult:
    submit = BulkOperationSubmit(
        operation=BulkCreateSpec(entries=payload.entries),
        options=BulkOptions(
            validate_only=payload.validate_only,
            conflict_policy=payload.conflict_resolution.lower(),
        ),
    )
    engine = BulkOperationEngine(db, current_user)
    plan = engine.plan(submit)
    if payload.validate_only:
        return engine.preview(submit, plan)
    operation = engine.create_operation(submit)
    return engine.execute(operation, submit, plan)


@router.post("/conflicts/check", response_model=ConflictCheckResponse)
def check_conflicts(
    payload: ConflictCheckRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ConflictCheckResponse:
    draft = EntryDraft.model_validate(payload.model_dump(exclude={"exclude_entry_id", "suggest_alternatives"}))
    EntryStore(db).validate_references([draft])
    exclude = [payload.exclude_entry_id] if payload.exclude_entry_id else []
    detector = ConflictDetector(db)
    outcome = detector.check_one(draft, exclude_entry_ids=exclude)
    alternatives: list[TimeSlot] = []
    if outcome.has_errors and payload.suggest_alternatives:
        alternatives = detector.suggest_alternatives(draft, exclude_entry_ids=exclude)
    return ConflictCheckResponse(
        has_conflicts=bool(outcome.conflicts),
        has_errors=outcome.has_errors,
        conflicts=outcome.conflicts,
        alternatives=[TimeSlotOut.model_validate(slot) for slot in alternatives],
    )


@router.get("/time-slots", response_model=list[TimeSlotOut])
def list_time_slots(
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[TimeSlotOut]:
    stmt = select(TimeSlot)
    if not include_inactive:
        stmt = stmt.where(TimeSlot.is_active.is_(True))
    return list(db.execute(stmt.order_by(TimeSlot.sort_order, TimeSlot.start_time)).scalars().all())


@router.post("/time-slots", response_model=TimeSlotOut, status_code=status.HTTP_201_CREATED)
def create_time_slot(
    payload: TimeSlotCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TimeSlotOut:
    slot = TimeSlot(
        **payload.model_dump(),
        duration=parse_time_to_minutes(payload.end_time) - parse_time_to_minutes(payload.start_time),
    )
    db.add(slot)
    flush_or_rollback(db, action="time slot")
    log_activity(
        db,
        user=current_user,
        action="timetable.time_slot.create",
        entity_type="time_slot",
        entity_id=slot.id,
        details={"start_time": slot.start_time, "end_time": slot.end_time},
    )
    commit_or_rollback(db, action="time slot")
    return slot


@router.patch("/time-slots/{slot_id}", response_model=TimeSlotOut)
def update_time_slot(
    slot_id: str,
    payload: TimeSlotUpdate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TimeSlotOut:
    slot = db.get(TimeSlot, slot_id)
    if slot is None:
        raise ResourceNotFoundError("TimeSlot", slot_id)

    data = payload.model_dump(exclude_unset=True)
    # Counts inactive entries too; an undo restores them onto this slot.
    in_use = db.execute(
        select(func.count(TimetableEntry.id)).where(TimetableEntry.time_slot_id == slot_id)
    ).scalar_one()
    if in_use and set(data) - {"is_active"}:
        raise ValidationError(
            "Time slot is referenced by timetable entries; it can only be deactivated",
            details={"time_slot_id": slot_id, "entries": in_use},
        )

    start_time = data.get("start_time", slot.start_time)
    end_time = data.get("end_time", slot.end_time)
    try:
        start_minutes = parse_time_to_minutes(start_time)
        end_minutes = parse_time_to_minutes(end_time)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"time_slot_id": slot_id}) from exc
    if end_minutes <= start_minutes:
        raise ValidationError("End time must be after start time", details={"time_slot_id": slot_id})

    for key, value in data.items():
        if value is not None:
            setattr(slot, key, value)
    slot.duration = end_minutes - start_minutes
    log_activity(
        db,
        user=current_user,
        action="timetable.time_slot.update",
        entity_type="time_slot",
        entity_id=slot.id,
        details={"changes": sorted(data)},
    )
    commit_or_rollback(db, action="time slot update")
    return slot


@router.get("/templates", response_model=list[TemplateOut])
def list_timetable_templates(
    batch_id: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[TemplateOut]:
    return list_templates(db, batch_id=batch_id, include_inactive=include_inactive)


@router.post("/templates", response_model=TemplateCreateResult, status_code=status.HTTP_201_CREATED)
def create_timetable_template(
    payload: TemplateCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TemplateCreateResult:
    template, created, dropped, outcome = create_template(db, payload, current_user)
    warnings: list[str] = []
    if dropped:
        warnings.append(f"{dropped} generated entries collided with the timetable and were not created")
    if outcome is not None and outcome.cap_reached:
        warnings.append("Recurrence stopped at the iteration cap")
    return TemplateCreateResult(
        template=TemplateOut.model_validate(template),
        created_entries=[EntryOut.model_validate(entry) for entry in created],
        dropped=dropped,
        cap_reached=bool(outcome and outcome.cap_reached),
        warnings=warnings,
    )


@router.get("/templates/{template_id}", response_model=TemplateOut)
def get_timetable_template(
    template_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TemplateOut:
    return get_template(db, template_id)


@router.post("/templates/{template_id}/preview", response_model=TemplatePreview)
def preview_timetable_template(
    template_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TemplatePreview:
    return preview_template(db, get_template(db, template_id))


@router.delete("/templates/{template_id}", response_model=TemplateOut)
def delete_timetable_template(
    template_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TemplateOut:
    return deactivate_template(db, template_id, current_user)
