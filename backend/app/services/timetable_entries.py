from __future__ import annotations

from datetime import date
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, ValidationError
from app.models.timetable_entry import DayOfWeek, TimetableEntry
from app.models.undo_operation import UndoEntityType, UndoOperation, UndoOperationType
from app.models.user import User
from app.schemas.conflict import EntryConflicts
from app.schemas.timetable import EntryDraft, EntryUpdate
from app.services.audit import log_activity
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore, commit_or_rollback, flush_or_rollback
from app.services.undo_ledger import UndoLedger

logger = logging.getLogger(__name__)


def _entry_label(entry: TimetableEntry) -> str:
    when = entry.date.isoformat() if entry.date else f"every {entry.day_of_week.value.title()}"
    what = entry.custom_event_title or entry.subject_id
    return f"{what} on {when}"


def _raise_on_errors(outcome: EntryConflicts, message: str) -> None:
    if outcome.has_errors:
        raise ConflictError(message, report=outcome.model_dump(mode="json"))


def create_entry(db: Session, draft: EntryDraft, user: User) -> tuple[TimetableEntry, EntryConflicts]:
    store = EntryStore(db)
    store.validate_references([draft])
    outcome = ConflictDetector(db).check_one(draft)
    _raise_on_errors(outcome, "Entry conflicts with the existing timetable")

    entry = store.stage_create(draft)
    flush_or_rollback(db, action="timetable entry")
    log_activity(
        db,
        user=user,
        action="timetable.entry.create",
        entity_type="timetable_entry",
        entity_id=entry.id,
        details={"batch_id": entry.batch_id, "warnings": len(outcome.warnings())},
    )
    commit_or_rollback(db, action="timetable entry")
    logger.info(
        "TIMETABLE ENTRY CREATED | entry_id=%s | batch_id=%s | user_id=%s",
        entry.id,
        entry.batch_id,
        user.id,
    )
    return entry, outcome


def update_entry(db: Session, entry_id: str, payload: EntryUpdate, user: User) -> tuple[TimetableEntry, EntryConflicts]:
    store = EntryStore(db)
    entry = store.get(entry_id)
    if not entry.is_active:
        raise ValidationError("Inactive entries cannot be edited", details={"entry_id": entry_id})

    changes = payload.model_dump(exclude_unset=True)
    values = entry.snapshot()
    if "date" in changes:
        values["date"] = changes["date"]
        if changes["date"] is not None and "day_of_week" not in changes:
            values["day_of_week"] = DayOfWeek.from_date(changes["date"])
    for key in ("time_slot_id", "day_of_week", "entry_type", "notes"):
        if key in changes and changes[key] is not None:
            values[key] = changes[key]
    if changes.get("faculty_id") is not None:
        if entry.custom_event_title is not None:
            raise ValidationError("Custom events do not carry a faculty assignment", details={"entry_id": entry_id})
        values["faculty_id"] = changes["faculty_id"]
    try:
        draft = EntryDraft.model_validate(values)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid entry update",
            details={"errors": [error["msg"] for error in exc.errors()]},
        ) from exc

    store.validate_references([draft])
    outcome = ConflictDetector(db).check_one(draft, exclude_entry_ids=[entry.id])
    _raise_on_errors(outcome, "Updated entry conflicts with the existing timetable")

    before = entry.snapshot()
    store.stage_moves([(entry, draft.column_values())], action="timetable entry update")
    log_activity(
        db,
        user=user,
        action="timetable.entry.update",
        entity_type="timetable_entry",
        entity_id=entry.id,
        details={"before": before, "changes": sorted(changes)},
    )
    commit_or_rollback(db, action="timetable entry update")
    return entry, outcome


def delete_entry(db: Session, entry_id: str, user: User, *, ttl_seconds: int | None = None) -> UndoOperation:
    store = EntryStore(db)
    entry = store.get(entry_id)
    if not entry.is_active:
        raise ValidationError("Entry is already inactive", details={"entry_id": entry_id})
    if entry.date is not None and entry.date < date.today():
        raise ValidationError("Past timetable entries cannot be deleted", details={"entry_id": entry_id})

    record = UndoLedger(db).record(
        user=user,
        entity_type=UndoEntityType.TIMETABLE_ENTRY,
        entity_id=entry.id,
        data=entry.snapshot(),
        metadata={"display_name": _entry_label(entry), "batch_id": entry.batch_id},
        operation=UndoOperationType.SOFT_DELETE,
        ttl_seconds=ttl_seconds,
    )
    store.stage_deactivate([entry])
    flush_or_rollback(db, action="timetable entry deletion")
    log_activity(
        db,
        user=user,
        action="timetable.entry.delete",
        entity_type="timetable_entry",
        entity_id=entry.id,
        details={"undo_id": record.id},
    )
    commit_or_rollback(db, action="timetable entry deletion")
    logger.info(
        "TIMETABLE ENTRY DELETED | entry_id=%s | undo_id=%s | user_id=%s",
        entry.id,
        record.id,
        user.id,
    )
    return record
