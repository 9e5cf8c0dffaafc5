from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.exceptions import AppError, ConflictError, MissingReferenceError, OperationStateError, ResourceNotFoundError, ValidationError
from app.models.academic import Batch, Subject
from app.models.bulk_operation import BulkOperation, BulkOperationKind, LogLevel, OperationLog, OperationStatus
from app.models.faculty import Faculty
from app.models.time_slot import TimeSlot
from app.models.timetable_entry import DayOfWeek, EntryType, TimetableEntry
from app.models.timetable_template import EndCondition, TimetableTemplate
from app.models.user import User, UserRole
from app.schemas.bulk import (
    KIND_BY_REQUEST,
    BulkCreateSpec,
    BulkItemResult,
    BulkOperationOut,
    BulkOperationResult,
    BulkOperationSubmit,
    BulkOptions,
    CloneRequest,
    FacultyReplaceRequest,
    RescheduleRequest,
    TemplateApplyRequest,
)
from app.schemas.conflict import ConflictReport, EntryConflicts
from app.schemas.timetable import CustomEvent, EntryDraft, RegularSession
from app.services.audit import log_activity
from app.services.calendar_facts import CalendarFacts
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore, commit_or_rollback, flush_or_rollback
from app.services.recurrence import expand_template

logger = logging.getLogger(__name__)

WORKLOAD_WARNING_RATIO = 1.2
MAX_PUSH_FORWARD_DAYS = 366
PROGRESS_STARTED = 10
PROGRESS_DETECTED = 90

KIND_LABELS = {
    BulkOperationKind.BULK_CREATE: "Bulk create",
    BulkOperationKind.CLONE: "Clone",
    BulkOperationKind.FACULTY_REPLACE: "Faculty replacement",
    BulkOperationKind.RESCHEDULE: "Reschedule",
    BulkOperationKind.TEMPLATE_APPLY: "Template apply",
}


class OperationCancelled(Exception):
    """Raised at a checkpoint once cancellation has been requested."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _join_notes(existing: str | None, addition: str) -> str:
    return f"{existing}\n{addition}" if existing else addition


@dataclass
class PlannedItem:
    draft: EntryDraft
    source: TimetableEntry | None = None


@dataclass
class OperationPlan:
    kind: BulkOperationKind
    items: list[PlannedItem] = field(default_factory=list)
    rejected: list[BulkItemResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def drafts(self) -> list[EntryDraft]:
        return [item.draft for item in self.items]

    @property
    def exclude_entry_ids(self) -> set[str]:
        return {item.source.id for item in self.items if item.source is not None}


@dataclass
class Decision:
    write: list[int] = field(default_factory=list)
    skipped: list[EntryConflicts] = field(default_factory=list)
    blocked: list[EntryConflicts] = field(default_factory=list)
    displaced: set[str] = field(default_factory=set)


def estimate_seconds_remaining(operation: BulkOperation) -> int | None:
    if operation.status != OperationStatus.RUNNING or operation.progress <= 0 or operation.started_at is None:
        return None
    elapsed = (_utc_now() - _as_utc(operation.started_at)).total_seconds()
    return max(0, int(elapsed * (100 - operation.progress) / operation.progress))


def operation_out(operation: BulkOperation) -> BulkOperationOut:
    payload = BulkOperationOut.model_validate(operation)
    payload.estimated_seconds_remaining = estimate_seconds_remaining(operation)
    return payload


class BulkOperationEngine:
    """Validate, detect, preview and execute bulk timetable mutations.

    Every kind goes through the same protocol: ``plan`` resolves references and
    builds the resulting drafts, the conflict detector evaluates them, and
    ``execute`` applies the surviving items in one transaction while the
    ``BulkOperation`` row tracks progress.
    """

    def __init__(self, db: Session, user: User, settings: Settings | None = None) -> None:
        self.db = db
        self.user = user
        self.settings = settings or get_settings()
        self.calendar = CalendarFacts(db)
        self.detector = ConflictDetector(db, self.calendar)
        self.store = EntryStore(db)

    # Planning

    def plan(self, submit: BulkOperationSubmit) -> OperationPlan:
        request = submit.operation
        if isinstance(request, BulkCreateSpec):
            return self._plan_bulk_create(request)
        if isinstance(request, CloneRequest):
            return self._plan_clone(request, submit)
        if isinstance(request, FacultyReplaceRequest):
            return self._plan_faculty_replace(request)
        if isinstance(request, RescheduleRequest):
            return self._plan_reschedule(request, submit)
        if isinstance(request, TemplateApplyRequest):
            return self._plan_template_apply(request)
        raise ValidationError(f"Unsupported bulk operation kind: {request.kind}")

    def _require(self, model, ids: list[str], label: str) -> dict:
        found = {row.id: row for row in self.db.execute(select(model).where(model.id.in_(ids))).scalars().all()}
        missing = sorted(set(ids) - set(found))
        if missing:
            raise MissingReferenceError({label: missing})
        return found

    def _plan_bulk_create(self, request: BulkCreateSpec) -> OperationPlan:
        if len(request.entries) > self.settings.bulk_max_entries:
            raise ValidationError(
                f"Bulk create accepts at most {self.settings.bulk_max_entries} entries",
                details={"received": len(request.entries), "limit": self.settings.bulk_max_entries},
            )
        self.store.validate_references(request.entries)
        return OperationPlan(
            kind=BulkOperationKind.BULK_CREATE,
            items=[PlannedItem(draft=draft) for draft in request.entries],
        )

    def _plan_clone(self, request: CloneRequest, submit: BulkOperationSubmit) -> OperationPlan:
        batches = self._require(Batch, [request.source_batch_id, request.target_batch_id], "batches")
        source_batch = batches[request.source_batch_id]
        target_batch = batches[request.target_batch_id]
        date_range = request.date_range
        entries = self.store.active_for_batch(
            source_batch.id,
            date_from=date_range.start if date_range else None,
            date_to=date_range.end if date_range else None,
        )
        if not entries:
            raise ValidationError(
                "Source batch has no active entries to clone",
                details={"source_batch_id": source_batch.id},
            )

        source_subjects = {
            subject.id: subject
            for subject in self.db.execute(select(Subject).where(Subject.batch_id == source_batch.id)).scalars().all()
        }
        target_subjects = {
            subject.code: subject
            for subject in self.db.execute(
                select(Subject).where(Subject.batch_id == target_batch.id, Subject.is_active.is_(True))
            ).scalars().all()
        }

        plan = OperationPlan(kind=BulkOperationKind.CLONE)
        for entry in entries:
            if entry.custom_event_title is not None:
                activity = CustomEvent(title=entry.custom_event_title, color=entry.custom_event_color)
            else:
                source_subject = source_subjects.get(entry.subject_id)
                code = source_subject.code if source_subject is not None else entry.subject_id
                target_subject = target_subjects.get(code)
                if target_subject is None:
                    plan.rejected.append(
                        BulkItemResult(
                            status="failed",
                            source_entry_id=entry.id,
                            reason=f"Subject {code} is not offered in batch {target_batch.name}",
                        )
                    )
                    continue
                faculty_id = entry.faculty_id
                if not submit.options.preserve_faculty and target_subject.primary_faculty_id:
                    faculty_id = target_subject.primary_faculty_id
                activity = RegularSession(subject_id=target_subject.id, faculty_id=faculty_id)
            plan.items.append(
                PlannedItem(
                    draft=EntryDraft(
                        batch_id=target_batch.id,
                        time_slot_id=entry.time_slot_id,
                        day_of_week=entry.day_of_week,
                        date=entry.date,
                        entry_type=entry.entry_type,
                        activity=activity,
                        notes=f"Cloned from {source_batch.name}" + (f" - {entry.notes}" if entry.notes else ""),
                        requires_attendance=entry.requires_attendance,
                    )
                )
            )
        if plan.rejected:
            plan.warnings.append(f"{len(plan.rejected)} entries reference subjects missing from {target_batch.name}")
        return plan

    def _plan_faculty_replace(self, request: FacultyReplaceRequest) -> OperationPlan:
        faculty = self._require(Faculty, [request.current_faculty_id, request.new_faculty_id], "faculty")
        current = faculty[request.current_faculty_id]
        replacement = faculty[request.new_faculty_id]
        if not replacement.is_active:
            raise ValidationError("Replacement faculty is inactive", details={"faculty_id": replacement.id})
        if request.batch_ids:
            self._require(Batch, request.batch_ids, "batches")

        stmt = select(TimetableEntry).where(
            TimetableEntry.faculty_id == current.id,
            TimetableEntry.is_active.is_(True),
        )
        if request.batch_ids:
            stmt = stmt.where(TimetableEntry.batch_id.in_(request.batch_ids))
        if request.subject_ids:
            stmt = stmt.where(TimetableEntry.subject_id.in_(request.subject_ids))
        if request.effective_date is not None:
            stmt = stmt.where(TimetableEntry.date >= request.effective_date)
        entries = list(self.db.execute(stmt.order_by(TimetableEntry.date, TimetableEntry.id)).scalars().all())
        if not entries:
            raise ValidationError(
                "No active entries match the replacement scope",
                details={"current_faculty_id": current.id},
            )

        note = f"Faculty changed from {current.name} to {replacement.name}"
        plan = OperationPlan(kind=BulkOperationKind.FACULTY_REPLACE)
        for entry in entries:
            draft = self._draft_from_entry(entry, faculty_id=replacement.id, notes=_join_notes(entry.notes, note))
            plan.items.append(PlannedItem(draft=draft, source=entry))

        current_load = self._active_load(current.id)
        new_load = self._active_load(replacement.id) + len(entries)
        if current_load and new_load > current_load * WORKLOAD_WARNING_RATIO:
            plan.warnings.append(
                f"{replacement.name} would carry {new_load} sessions, more than 120% of "
                f"{current.name}'s current {current_load}"
            )
        return plan

    def _plan_reschedule(self, request: RescheduleRequest, submit: BulkOperationSubmit) -> OperationPlan:
        if request.batch_ids:
            self._require(Batch, request.batch_ids, "batches")
        stmt = select(TimetableEntry).where(
            TimetableEntry.is_active.is_(True),
            TimetableEntry.date >= request.source_range.start,
            TimetableEntry.date <= request.source_range.end,
        )
        if request.batch_ids:
            stmt = stmt.where(TimetableEntry.batch_id.in_(request.batch_ids))
        entries = list(self.db.execute(stmt.order_by(TimetableEntry.date, TimetableEntry.id)).scalars().all())
        if not entries:
            raise ValidationError(
                "No dated entries fall inside the source range",
                details={"source_start": request.source_range.start.isoformat(), "source_end": request.source_range.end.isoformat()},
            )

        options = submit.options
        plan = OperationPlan(kind=BulkOperationKind.RESCHEDULE)
        shift = request.target_range.start - request.source_range.start
        source_days = self._working_days(request.source_range.start, request.source_range.end, options.exclude_weekends)
        target_days: dict[tuple[str, EntryType], list[date]] = {}
        overflow = 0
        for entry in entries:
            if request.move_type == "shift":
                landing = self._next_eligible(entry.date + shift, entry, options)
            else:
                # Ordinal projection: the n-th working day of the source range lands on
                # the n-th eligible day of the target range for the entry's batch.
                key = (entry.batch_id, entry.entry_type)
                if key not in target_days:
                    target_days[key] = [
                        day
                        for day in self._working_days(request.target_range.start, request.target_range.end, options.exclude_weekends)
                        if not (options.respect_blackouts and self._is_blocked(day, entry))
                    ]
                position = sum(1 for day in source_days if day < entry.date)
                eligible = target_days[key]
                landing = eligible[position] if position < len(eligible) else None
            if landing is None:
                overflow += 1
                plan.rejected.append(
                    BulkItemResult(
                        status="skipped",
                        source_entry_id=entry.id,
                        reason=f"No eligible target date for the entry on {entry.date.isoformat()}",
                    )
                )
                continue
            draft = self._draft_from_entry(
                entry,
                date=landing,
                day_of_week=DayOfWeek.from_date(landing),
                notes=_join_notes(entry.notes, f"Rescheduled from {entry.date.isoformat()}"),
            )
            plan.items.append(PlannedItem(draft=draft, source=entry))
        if overflow:
            plan.warnings.append(f"{overflow} entries did not fit into the target range and were dropped")
        return plan

    @staticmethod
    def _working_days(start: date, end: date, exclude_weekends: bool) -> list[date]:
        days = [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
        return [day for day in days if not (exclude_weekends and day.weekday() >= 5)]

    def _is_blocked(self, day: date, entry: TimetableEntry) -> bool:
        if self.calendar.holidays_on(day, entry.batch_id):
            return True
        return entry.entry_type == EntryType.REGULAR and self.calendar.blocking_exam_period(day, entry.batch_id) is not None

    def _next_eligible(self, proposed: date, entry: TimetableEntry, options: BulkOptions) -> date | None:
        candidate = proposed
        for _ in range(MAX_PUSH_FORWARD_DAYS):
            weekend = options.exclude_weekends and candidate.weekday() >= 5
            if not weekend and not (options.respect_blackouts and self._is_blocked(candidate, entry)):
                return candidate
            candidate += timedelta(days=1)
        return None

    def _plan_template_apply(self, request: TemplateApplyRequest) -> OperationPlan:
        template = self.db.get(TimetableTemplate, request.template_id)
        if template is None:
            raise MissingReferenceError({"templates": [request.template_id]})
        if not template.is_active:
            raise ValidationError("Template is inactive", details={"template_id": template.id})
        batches = self._require(Batch, request.target_batch_ids, "batches")
        slot = self.db.get(TimeSlot, template.time_slot_id)
        if slot is None or not slot.is_active:
            raise MissingReferenceError({"time_slots": [template.time_slot_id]})
        template_subject = self.db.get(Subject, template.subject_id)
        if template_subject is None:
            raise MissingReferenceError({"subjects": [template.subject_id]})

        plan = OperationPlan(kind=BulkOperationKind.TEMPLATE_APPLY)
        for batch_id in dict.fromkeys(request.target_batch_ids):
            batch = batches[batch_id]
            subject = template_subject
            if batch.id != template.batch_id:
                subject = self.db.execute(
                    select(Subject).where(Subject.batch_id == batch.id, Subject.code == template_subject.code)
                ).scalars().first()
            if subject is None:
                plan.rejected.append(
                    BulkItemResult(
                        status="failed",
                        reason=f"Subject {template_subject.code} is not offered in batch {batch.name}",
                    )
                )
                continue
            end_date = template.end_date
            if end_date is None and template.end_condition == EndCondition.SEMESTER_END:
                end_date = self.calendar.semester_end_for_batch(batch.id, template.start_date)
            outcome = expand_template(
                template,
                calendar=self.calendar,
                slot=slot,
                batch_id=batch.id,
                subject_id=subject.id,
                end_date=end_date,
                target_hours=template.total_hours or subject.total_hours,
                max_iterations=self.settings.recurrence_max_iterations,
            )
            if outcome.cap_reached:
                plan.warnings.append(
                    f"Recurrence for batch {batch.name} stopped at the {self.settings.recurrence_max_iterations}-iteration cap"
                )
            plan.items.extend(PlannedItem(draft=draft) for draft in outcome.drafts)
        if not plan.items and not plan.rejected:
            raise ValidationError("Template produced no entries for the selected batches", details={"template_id": template.id})
        return plan

    def _draft_from_entry(self, entry: TimetableEntry, **overrides) -> EntryDraft:
        values = entry.snapshot()
        values.update(overrides)
        return EntryDraft.model_validate(values)

    def _active_load(self, faculty_id: str) -> int:
        stmt = select(func.count(TimetableEntry.id)).where(
            TimetableEntry.faculty_id == faculty_id,
            TimetableEntry.is_active.is_(True),
        )
        return int(self.db.execute(stmt).scalar_one())

    # Detection and decisions

    def detect(
        self,
        plan: OperationPlan,
        checkpoint: Callable[[int, int], None] | None = None,
        exclude_entry_ids: set[str] | None = None,
    ) -> ConflictReport | None:
        if not plan.items:
            return None
        return self.detector.detect(
            plan.drafts,
            exclude_entry_ids=plan.exclude_entry_ids if exclude_entry_ids is None else exclude_entry_ids,
            checkpoint=checkpoint,
            checkpoint_every=self.settings.bulk_progress_chunk_size,
        )

    @staticmethod
    def decide(report: ConflictReport | None, policy: str) -> Decision:
        decision = Decision()
        if report is None:
            return decision
        for item in report.items:
            if not item.has_errors:
                decision.write.append(item.index)
            elif policy == "skip":
                decision.skipped.append(item)
            elif policy == "force" and not item.has_internal_conflicts():
                decision.write.append(item.index)
                decision.displaced |= item.displaceable_entry_ids()
            else:
                decision.blocked.append(item)
        return decision

    def settle(self, plan: OperationPlan, report: ConflictReport | None, policy: str) -> tuple[ConflictReport | None, Decision]:
        """Decide, then re-detect until skipped moves no longer vacate their positions.

        A skipped item keeps its source entry in place, so items that were cleared
        to land on that position have to be re-checked with the source counted as
        an occupant. The skipped set only grows between rounds.
        """
        decision = self.decide(report, policy)
        while report is not None and policy == "skip":
            staying = {
                plan.items[item.index].source.id
                for item in decision.skipped
                if plan.items[item.index].source is not None
            }
            if not staying:
                break
            report = self.detect(plan, exclude_entry_ids=plan.exclude_entry_ids - staying)
            rerun = self.decide(report, policy)
            settled = {item.index for item in rerun.skipped} == {item.index for item in decision.skipped}
            decision = rerun
            if settled:
                break
        return report, decision

    def _raise_if_blocked(self, decision: Decision, report: ConflictReport, policy: str) -> None:
        if not decision.blocked:
            return
        if policy == "force":
            message = "Conflicts inside the request cannot be forced"
        else:
            message = f"{len(decision.blocked)} of {len(report.items)} entries have blocking conflicts"
        raise ConflictError(message, report=report.model_dump(mode="json"), details={"policy": policy})

    def _build_result(
        self,
        plan: OperationPlan,
        report: ConflictReport | None,
        decision: Decision,
        submit: BulkOperationSubmit,
        *,
        entry_ids: dict[int, str] | None = None,
    ) -> BulkOperationResult:
        options = submit.options
        items: list[BulkItemResult] = []
        blocked = {item.index for item in decision.blocked}
        skipped = {item.index: item for item in decision.skipped}
        for index, planned in enumerate(plan.items):
            conflicts = report.items[index].conflicts if report is not None else []
            if index in skipped:
                items.append(
                    BulkItemResult(
                        index=index,
                        status="skipped",
                        source_entry_id=planned.source.id if planned.source else None,
                        draft=planned.draft,
                        reason="; ".join(conflict.message for conflict in skipped[index].errors()),
                        conflicts=conflicts,
                    )
                )
            elif index in blocked:
                items.append(
                    BulkItemResult(
                        index=index,
                        status="failed",
                        source_entry_id=planned.source.id if planned.source else None,
                        draft=planned.draft,
                        reason="Blocking conflicts",
                        conflicts=conflicts,
                    )
                )
            else:
                items.append(
                    BulkItemResult(
                        index=index,
                        status="updated" if planned.source is not None else "created",
                        entry_id=(entry_ids or {}).get(index) or (planned.source.id if planned.source else None),
                        source_entry_id=planned.source.id if planned.source else None,
                        draft=planned.draft,
                        conflicts=conflicts,
                    )
                )
        items.extend(plan.rejected)

        successful = sum(1 for item in items if item.status in ("created", "updated"))
        skipped_count = sum(1 for item in items if item.status == "skipped")
        failed = sum(1 for item in items if item.status == "failed")
        warnings = list(plan.warnings)
        if report is not None and report.has_warnings:
            warnings.append(f"{report.summary.entries_with_warnings} entries carry warnings")
        if decision.displaced:
            warnings.append(f"{len(decision.displaced)} existing entries will be deactivated to make room")

        label = KIND_LABELS[plan.kind]
        if options.validate_only:
            verdict = "valid" if not decision.blocked and not decision.skipped else "has blocking conflicts"
            summary = f"{label} validation: {len(plan.items)} entries checked, {verdict}"
        elif options.dry_run:
            summary = f"{label} preview: {successful} would be written, {skipped_count} skipped, {failed} failed"
        else:
            summary = f"{label}: {successful} written, {skipped_count} skipped, {failed} failed"
        return BulkOperationResult(
            kind=plan.kind,
            dry_run=options.dry_run,
            validate_only=options.validate_only,
            conflict_policy=options.conflict_policy,
            affected=len(items),
            successful=successful,
            skipped=skipped_count,
            failed=failed,
            displaced_entry_ids=sorted(decision.displaced),
            items=[] if options.validate_only else items,
            conflicts=report,
            warnings=warnings,
            summary=summary,
        )

    def preview(self, submit: BulkOperationSubmit, plan: OperationPlan | None = None) -> BulkOperationResult:
        """Dry-run and validate-only path: nothing is written, nothing is tracked."""
        plan = plan or self.plan(submit)
        report, decision = self.settle(plan, self.detect(plan), submit.options.conflict_policy)
        return self._build_result(plan, report, decision, submit)

    # Tracking

    def create_operation(self, submit: BulkOperationSubmit) -> BulkOperation:
        operation = BulkOperation(
            kind=KIND_BY_REQUEST[submit.operation.kind],
            status=OperationStatus.PENDING,
            progress=0,
            requested_by_id=self.user.id,
            parameters=submit.model_dump(mode="json"),
        )
        self.db.add(operation)
        self.db.flush()
        self._log(operation, LogLevel.INFO, "Operation submitted", {"options": submit.options.model_dump()})
        commit_or_rollback(self.db, action="bulk operation submission")
        logger.info(
            "BULK OPERATION SUBMITTED | operation_id=%s | kind=%s | user_id=%s",
            operation.id,
            operation.kind.value,
            self.user.id,
        )
        return operation

    def _log(self, operation: BulkOperation, level: LogLevel, message: str, details: dict | None = None) -> None:
        self.db.add(OperationLog(operation_id=operation.id, level=level, message=message, details=details))

    def _raise_if_cancelled(self, operation: BulkOperation) -> None:
        self.db.refresh(operation, attribute_names=["cancel_requested"])
        if operation.cancel_requested:
            raise OperationCancelled()

    def _checkpoint(self, operation: BulkOperation) -> Callable[[int, int], None]:
        def checkpoint(done: int, total: int) -> None:
            self._raise_if_cancelled(operation)
            operation.progress = PROGRESS_STARTED + int((PROGRESS_DETECTED - PROGRESS_STARTED) * done / max(total, 1))
            commit_or_rollback(self.db, action="bulk operation progress")

        return checkpoint

    def execute(
        self,
        operation: BulkOperation,
        submit: BulkOperationSubmit,
        plan: OperationPlan | None = None,
    ) -> BulkOperationResult:
        kind = operation.kind
        if operation.status == OperationStatus.CANCELLED:
            return BulkOperationResult(
                operation_id=operation.id,
                kind=kind,
                status=OperationStatus.CANCELLED,
                conflict_policy=submit.options.conflict_policy,
                summary=f"{KIND_LABELS[kind]} was cancelled before it started",
            )
        if operation.status != OperationStatus.PENDING:
            raise OperationStateError(
                f"Operation is {operation.status.value} and cannot be started",
                details={"operation_id": operation.id},
            )

        operation.status = OperationStatus.RUNNING
        operation.started_at = _utc_now()
        operation.progress = PROGRESS_STARTED
        self._log(operation, LogLevel.INFO, "Operation started")
        commit_or_rollback(self.db, action="bulk operation start")
        logger.info(
            "BULK OPERATION START | operation_id=%s | kind=%s | user_id=%s",
            operation.id,
            kind.value,
            operation.requested_by_id,
        )

        policy = submit.options.conflict_policy
        try:
            plan = plan or self.plan(submit)
            report = self.detect(plan, checkpoint=self._checkpoint(operation))
            report, decision = self.settle(plan, report, policy)
            if report is not None:
                self._raise_if_blocked(decision, report, policy)
            self._raise_if_cancelled(operation)
            result = self._apply(operation, plan, report, decision, submit)
        except OperationCancelled:
            self.db.rollback()
            return self._finish_cancelled(operation, submit)
        except AppError as exc:
            self.db.rollback()
            self._finish_failed(operation, exc.message, exc.details)
            raise
        except Exception as exc:
            self.db.rollback()
            self._finish_failed(operation, str(exc), {"error_type": type(exc).__name__})
            raise

        logger.info(
            "BULK OPERATION COMPLETE | operation_id=%s | kind=%s | successful=%s | skipped=%s | failed=%s",
            operation.id,
            kind.value,
            result.successful,
            result.skipped,
            result.failed,
        )
        return result

    def _apply(
        self,
        operation: BulkOperation,
        plan: OperationPlan,
        report: ConflictReport | None,
        decision: Decision,
        submit: BulkOperationSubmit,
    ) -> BulkOperationResult:
        action = f"{KIND_LABELS[plan.kind].lower()} operation"
        if decision.displaced:
            displaced = self.db.execute(
                select(TimetableEntry).where(TimetableEntry.id.in_(decision.displaced))
            ).scalars().all()
            self.store.stage_deactivate(displaced)
            flush_or_rollback(self.db, action=action)

        moves: list[tuple[TimetableEntry, dict]] = []
        created: dict[int, TimetableEntry] = {}
        for index in decision.write:
            planned = plan.items[index]
            if planned.source is not None:
                moves.append((planned.source, planned.draft.column_values()))
            else:
                created[index] = self.store.stage_create(planned.draft)
        self.store.stage_moves(moves, action=action)
        flush_or_rollback(self.db, action=action)

        result = self._build_result(
            plan,
            report,
            decision,
            submit,
            entry_ids={index: entry.id for index, entry in created.items()},
        )
        result.operation_id = operation.id
        result.status = OperationStatus.COMPLETED

        for message in result.warnings:
            self._log(operation, LogLevel.WARN, message)
        for item in result.items:
            if item.status in ("skipped", "failed"):
                self._log(
                    operation,
                    LogLevel.WARN if item.status == "skipped" else LogLevel.ERROR,
                    item.reason or f"Item {item.status}",
                    {"index": item.index, "source_entry_id": item.source_entry_id},
                )
        self._log(operation, LogLevel.INFO, result.summary)
        log_activity(
            self.db,
            user=self.user,
            action=f"bulk.{plan.kind.value.lower()}",
            entity_type="bulk_operation",
            entity_id=operation.id,
            bulk_operation_id=operation.id,
            details={
                "successful": result.successful,
                "skipped": result.skipped,
                "failed": result.failed,
                "displaced": result.displaced_entry_ids,
            },
        )

        operation.status = OperationStatus.COMPLETED
        operation.progress = 100
        operation.completed_at = _utc_now()
        operation.affected_count = result.affected
        operation.success_count = result.successful
        operation.failed_count = result.failed + result.skipped
        operation.results = result.model_dump(mode="json")
        commit_or_rollback(self.db, action=action)
        return result

    def _finish_cancelled(self, operation: BulkOperation, submit: BulkOperationSubmit) -> BulkOperationResult:
        operation.status = OperationStatus.CANCELLED
        operation.completed_at = _utc_now()
        self._log(operation, LogLevel.WARN, "Operation cancelled before writing")
        commit_or_rollback(self.db, action="bulk operation cancellation")
        logger.info("BULK OPERATION CANCELLED | operation_id=%s | kind=%s", operation.id, operation.kind.value)
        return BulkOperationResult(
            operation_id=operation.id,
            kind=operation.kind,
            status=OperationStatus.CANCELLED,
            conflict_policy=submit.options.conflict_policy,
            summary=f"{KIND_LABELS[operation.kind]} was cancelled; no entries were changed",
        )

    def _finish_failed(self, operation: BulkOperation, message: str, details: dict | None) -> None:
        operation.status = OperationStatus.FAILED
        operation.completed_at = _utc_now()
        operation.error_log = message
        operation.results = {"error": message, "details": details or {}}
        self._log(operation, LogLevel.ERROR, message, details)
        commit_or_rollback(self.db, action="bulk operation failure")
        logger.error(
            "BULK OPERATION FAILED | operation_id=%s | kind=%s | error=%s",
            operation.id,
            operation.kind.value,
            message,
        )


def get_operation(db: Session, operation_id: str, user: User) -> BulkOperation:
    operation = db.get(BulkOperation, operation_id)
    if operation is None or (user.role != UserRole.admin and operation.requested_by_id != user.id):
        raise ResourceNotFoundError("BulkOperation", operation_id)
    return operation


def operation_history(db: Session, user: User, limit: int) -> list[BulkOperation]:
    stmt = select(BulkOperation)
    if user.role != UserRole.admin:
        stmt = stmt.where(BulkOperation.requested_by_id == user.id)
    stmt = stmt.order_by(BulkOperation.created_at.desc(), BulkOperation.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def operation_logs(db: Session, operation: BulkOperation) -> list[OperationLog]:
    stmt = (
        select(OperationLog)
        .where(OperationLog.operation_id == operation.id)
        .order_by(OperationLog.timestamp, OperationLog.id)
    )
    return list(db.execute(stmt).scalars().all())


def cancel_operation(db: Session, operation: BulkOperation, user: User) -> BulkOperation:
    if operation.status not in (OperationStatus.PENDING, OperationStatus.RUNNING):
        raise OperationStateError(
            f"Operation is {operation.status.value} and can no longer be cancelled",
            details={"operation_id": operation.id, "status": operation.status.value},
        )
    operation.cancel_requested = True
    if operation.status == OperationStatus.PENDING:
        operation.status = OperationStatus.CANCELLED
        operation.completed_at = _utc_now()
    db.add(OperationLog(operation_id=operation.id, level=LogLevel.WARN, message="Cancellation requested", details={"user_id": user.id}))
    log_activity(
        db,
        user=user,
        action="bulk.cancel",
        entity_type="bulk_operation",
        entity_id=operation.id,
        bulk_operation_id=operation.id,
    )
    commit_or_rollback(db, action="bulk operation cancellation")
    logger.info("BULK OPERATION CANCEL REQUESTED | operation_id=%s | user_id=%s", operation.id, user.id)
    return operation


def run_bulk_operation_job(session_factory: Callable[[], Session], operation_id: str) -> None:
    """Background entry point: executes a submitted operation in its own session."""
    db = session_factory()
    try:
        operation = db.get(BulkOperation, operation_id)
        if operation is None:
            logger.error("BULK OPERATION MISSING | operation_id=%s", operation_id)
            return
        user = db.get(User, operation.requested_by_id)
        if user is None:
            logger.error("BULK OPERATION REQUESTER MISSING | operation_id=%s", operation_id)
            return
        submit = BulkOperationSubmit.model_validate(operation.parameters)
        try:
            BulkOperationEngine(db, user).execute(operation, submit)
        except AppError as exc:
            # Already recorded as FAILED on the operation row.
            logger.warning("BULK OPERATION JOB ENDED | operation_id=%s | error=%s", operation_id, exc.message)
        except Exception:
            logger.exception("BULK OPERATION JOB CRASHED | operation_id=%s", operation_id)
    finally:
        db.close()
