from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import MissingReferenceError, ResourceNotFoundError, StorageError
from app.models.academic import Batch, Subject
from app.models.faculty import Faculty
from app.models.time_slot import TimeSlot
from app.models.timetable_entry import DayOfWeek, EntryType, TimetableEntry
from app.schemas.timetable import EntryDraft, EntryFilter

logger = logging.getLogger(__name__)


def commit_or_rollback(db: Session, *, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("STORAGE COMMIT FAILED | action=%s", action)
        cause = getattr(exc, "orig", None) or exc
        raise StorageError(f"Could not persist {action}; no changes were saved", details={"error": str(cause)}) from exc


def flush_or_rollback(db: Session, *, action: str) -> None:
    try:
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("STORAGE FLUSH FAILED | action=%s", action)
        cause = getattr(exc, "orig", None) or exc
        raise StorageError(f"Could not persist {action}; no changes were saved", details={"error": str(cause)}) from exc


class EntryStore:
    """Authoritative access to timetable entries.

    Writes are staged on the session; callers own the transaction and finish it
    with ``commit_or_rollback`` so a multi-entry change lands all at once.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, entry_id: str) -> TimetableEntry:
        entry = self.db.get(TimetableEntry, entry_id)
        if entry is None:
            raise ResourceNotFoundError("TimetableEntry", entry_id)
        return entry

    def list_entries(self, filters: EntryFilter) -> list[TimetableEntry]:
        stmt = select(TimetableEntry)
        if not filters.include_inactive:
            stmt = stmt.where(TimetableEntry.is_active.is_(True))
        if filters.batch_id:
            stmt = stmt.where(TimetableEntry.batch_id == filters.batch_id)
        if filters.faculty_id:
            stmt = stmt.where(TimetableEntry.faculty_id == filters.faculty_id)
        if filters.day_of_week:
            stmt = stmt.where(TimetableEntry.day_of_week == filters.day_of_week)
        if filters.date_from:
            stmt = stmt.where(TimetableEntry.date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(TimetableEntry.date <= filters.date_to)
        stmt = stmt.order_by(TimetableEntry.date, TimetableEntry.day_of_week, TimetableEntry.time_slot_id)
        return list(self.db.execute(stmt).scalars().all())

    def active_for_batch(self, batch_id: str, *, date_from: date | None = None, date_to: date | None = None) -> list[TimetableEntry]:
        stmt = select(TimetableEntry).where(TimetableEntry.batch_id == batch_id, TimetableEntry.is_active.is_(True))
        if date_from is not None:
            stmt = stmt.where(TimetableEntry.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(TimetableEntry.date <= date_to)
        return list(self.db.execute(stmt.order_by(TimetableEntry.date, TimetableEntry.id)).scalars().all())

    def stage_create(self, draft: EntryDraft) -> TimetableEntry:
        entry = TimetableEntry(**draft.column_values(), is_active=True)
        self.db.add(entry)
        return entry

    def stage_deactivate(self, entries: Iterable[TimetableEntry]) -> list[str]:
        ids: list[str] = []
        for entry in entries:
            entry.is_active = False
            ids.append(entry.id)
        return ids

    def stage_moves(self, moves: Sequence[tuple[TimetableEntry, dict]], *, action: str) -> None:
        """Rewrite positions of several entries without tripping the uniqueness indexes.

        The rows are parked inactive and flushed before their new positions are
        applied, so an entry may move into a spot another moved entry vacates.
        """
        if not moves:
            return
        for entry, _ in moves:
            entry.is_active = False
        flush_or_rollback(self.db, action=action)
        for entry, values in moves:
            for field, value in values.items():
                setattr(entry, field, value)
            entry.is_active = True

    def restore(self, entry_id: str, snapshot: dict) -> TimetableEntry:
        values = dict(snapshot)
        values["day_of_week"] = DayOfWeek(values["day_of_week"])
        values["entry_type"] = EntryType(values.get("entry_type") or EntryType.REGULAR.value)
        values["date"] = date.fromisoformat(values["date"]) if values.get("date") else None
        entry = self.db.get(TimetableEntry, entry_id)
        if entry is None:
            entry = TimetableEntry(id=entry_id)
            self.db.add(entry)
        for field, value in values.items():
            setattr(entry, field, value)
        entry.is_active = True
        return entry

    def validate_references(self, drafts: Sequence[EntryDraft]) -> None:
        """Raise MissingReferenceError listing every id that does not resolve."""
        batch_ids = {draft.batch_id for draft in drafts}
        slot_ids = {draft.time_slot_id for draft in drafts}
        subject_ids = {draft.subject_id for draft in drafts if draft.subject_id}
        faculty_ids = {draft.faculty_id for draft in drafts if draft.faculty_id}

        found_batches = set(self.db.execute(select(Batch.id).where(Batch.id.in_(batch_ids))).scalars().all())
        found_slots = set(
            self.db.execute(
                select(TimeSlot.id).where(TimeSlot.id.in_(slot_ids), TimeSlot.is_active.is_(True))
            ).scalars().all()
        )
        subjects = {
            subject.id: subject
            for subject in self.db.execute(select(Subject).where(Subject.id.in_(subject_ids))).scalars().all()
        }
        found_faculty = set(self.db.execute(select(Faculty.id).where(Faculty.id.in_(faculty_ids))).scalars().all())

        mismatched = sorted(
            {
                f"{draft.subject_id}@{draft.batch_id}"
                for draft in drafts
                if draft.subject_id in subjects and subjects[draft.subject_id].batch_id != draft.batch_id
            }
        )
        missing = {
            "batches": sorted(batch_ids - found_batches),
            "subjects": sorted(subject_ids - set(subjects)),
            "faculty": sorted(faculty_ids - found_faculty),
            "time_slots": sorted(slot_ids - found_slots),
            "subjects_not_in_batch": mismatched,
        }
        if any(missing.values()):
            raise MissingReferenceError(missing)
