from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Collection, Sequence
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.models.time_slot import TimeSlot
from app.models.timetable_entry import EntryType, TimetableEntry, date_key_for
from app.schemas.conflict import (
    BatchDoubleBooking,
    ConflictReport,
    EntryConflicts,
    EntryRef,
    ExamPeriodConflict,
    ExamPeriodRef,
    FacultyConflict,
    HolidayRef,
    HolidayScheduling,
    InternalBatchConflict,
    InternalFacultyConflict,
    ModuleOverlap,
)
from app.schemas.timetable import EntryDraft
from app.services.calendar_facts import CalendarFacts

logger = logging.getLogger(__name__)

Checkpoint = Callable[[int, int], None]


def _when(draft: EntryDraft) -> str:
    if draft.date is not None:
        return f"{draft.day_of_week.value.title()} {draft.date.isoformat()}"
    return f"every {draft.day_of_week.value.title()}"


class ConflictDetector:
    def __init__(self, db: Session, calendar: CalendarFacts | None = None) -> None:
        self.db = db
        self.calendar = calendar or CalendarFacts(db)
        self._slots: dict[str, TimeSlot] | None = None

    def slot_map(self) -> dict[str, TimeSlot]:
        if self._slots is None:
            self._slots = {slot.id: slot for slot in self.db.execute(select(TimeSlot)).scalars().all()}
        return self._slots

    def _slot_label(self, slot_id: str) -> str:
        slot = self.slot_map().get(slot_id)
        return f"{slot.name} ({slot.start_time}-{slot.end_time})" if slot is not None else slot_id

    def _active_entries(self, *criteria, exclude: Collection[str] = ()) -> list[TimetableEntry]:
        stmt = select(TimetableEntry).where(TimetableEntry.is_active.is_(True), *criteria)
        if exclude:
            stmt = stmt.where(TimetableEntry.id.not_in(list(exclude)))
        return list(self.db.execute(stmt).scalars().all())

    def detect(
        self,
        proposals: Sequence[EntryDraft],
        *,
        exclude_entry_ids: Collection[str] = (),
        checkpoint: Checkpoint | None = None,
        checkpoint_every: int = 25,
    ) -> ConflictReport:
        """Evaluate proposals in order against storage, each other and the calendar.

        Entries listed in ``exclude_entry_ids`` are treated as vacated (the rows an
        update or move is about to rewrite). ``checkpoint(done, total)`` runs after
        every ``checkpoint_every`` proposals and may raise to abort detection.
        """
        if not proposals:
            raise ValidationError("At least one proposed entry is required")
        exclude = set(exclude_entry_ids)
        batch_keys: dict[tuple, list[int]] = defaultdict(list)
        faculty_keys: dict[tuple, list[int]] = defaultdict(list)
        batch_days: dict[tuple, list[tuple[int, str]]] = defaultdict(list)
        items: list[EntryConflicts] = []
        total = len(proposals)

        for index, draft in enumerate(proposals):
            date_key = date_key_for(draft.date)
            conflicts = self._stored_conflicts(draft, exclude)

            batch_key = (draft.batch_id, draft.time_slot_id, draft.day_of_week, date_key)
            if batch_keys[batch_key]:
                conflicts.append(
                    InternalBatchConflict(
                        message=(
                            f"Duplicate entry in this request: batch already receives slot "
                            f"{self._slot_label(draft.time_slot_id)} {_when(draft)}"
                        ),
                        batch_id=draft.batch_id,
                        conflicting_indexes=list(batch_keys[batch_key]),
                    )
                )
            if draft.faculty_id is not None:
                faculty_key = (draft.faculty_id, draft.time_slot_id, draft.day_of_week, date_key)
                if faculty_keys[faculty_key]:
                    conflicts.append(
                        InternalFacultyConflict(
                            message=(
                                f"Faculty is assigned twice in this request for slot "
                                f"{self._slot_label(draft.time_slot_id)} {_when(draft)}"
                            ),
                            faculty_id=draft.faculty_id,
                            conflicting_indexes=list(faculty_keys[faculty_key]),
                        )
                    )
                faculty_keys[faculty_key].append(index)

            day_key = (draft.batch_id, draft.day_of_week, date_key)
            overlap = self._module_overlap(draft, exclude, batch_days[day_key])
            if overlap is not None:
                conflicts.append(overlap)
            batch_keys[batch_key].append(index)
            batch_days[day_key].append((index, draft.time_slot_id))

            conflicts.extend(self._calendar_conflicts(draft))
            items.append(EntryConflicts.build(index, draft, conflicts))

            if checkpoint is not None and (index + 1) % max(1, checkpoint_every) == 0:
                checkpoint(index + 1, total)

        report = ConflictReport.build(items)
        if report.has_errors:
            logger.info(
                "CONFLICT DETECTION | proposals=%s | with_errors=%s | with_warnings=%s",
                total,
                report.summary.entries_with_errors,
                report.summary.entries_with_warnings,
            )
        return report

    def check_one(self, draft: EntryDraft, *, exclude_entry_ids: Collection[str] = ()) -> EntryConflicts:
        return self.detect([draft], exclude_entry_ids=exclude_entry_ids).items[0]

    def _stored_conflicts(self, draft: EntryDraft, exclude: set[str]) -> list:
        conflicts: list = []
        date_key = date_key_for(draft.date)
        slot_criteria = (
            TimetableEntry.time_slot_id == draft.time_slot_id,
            TimetableEntry.day_of_week == draft.day_of_week,
            TimetableEntry.date_key == date_key,
        )
        batch_matches = self._active_entries(TimetableEntry.batch_id == draft.batch_id, *slot_criteria, exclude=exclude)
        if batch_matches:
            conflicts.append(
                BatchDoubleBooking(
                    message=(
                        f"Batch already has a class scheduled in slot "
                        f"{self._slot_label(draft.time_slot_id)} {_when(draft)}"
                    ),
                    batch_id=draft.batch_id,
                    conflicting_entries=[EntryRef.model_validate(entry) for entry in batch_matches],
                )
            )
        if draft.faculty_id is not None:
            faculty_matches = self._active_entries(
                TimetableEntry.faculty_id == draft.faculty_id,
                *slot_criteria,
                exclude=exclude,
            )
            if faculty_matches:
                conflicts.append(
                    FacultyConflict(
                        message=(
                            f"Faculty is already teaching in slot "
                            f"{self._slot_label(draft.time_slot_id)} {_when(draft)}"
                        ),
                        faculty_id=draft.faculty_id,
                        conflicting_entries=[EntryRef.model_validate(entry) for entry in faculty_matches],
                    )
                )
        return conflicts

    def _module_overlap(
        self,
        draft: EntryDraft,
        exclude: set[str],
        earlier: list[tuple[int, str]],
    ) -> ModuleOverlap | None:
        slots = self.slot_map()
        slot = slots.get(draft.time_slot_id)
        if slot is None:
            return None

        def overlapping(other_slot_id: str) -> bool:
            other = slots.get(other_slot_id)
            return other_slot_id != draft.time_slot_id and other is not None and slot.overlaps(other)

        stored = [
            entry
            for entry in self._active_entries(
                TimetableEntry.batch_id == draft.batch_id,
                TimetableEntry.day_of_week == draft.day_of_week,
                TimetableEntry.date_key == date_key_for(draft.date),
                TimetableEntry.time_slot_id != draft.time_slot_id,
                exclude=exclude,
            )
            if overlapping(entry.time_slot_id)
        ]
        proposed = [index for index, slot_id in earlier if overlapping(slot_id)]
        if not stored and not proposed:
            return None
        return ModuleOverlap(
            message=(
                f"Slot {self._slot_label(draft.time_slot_id)} overlaps another slot the batch "
                f"already occupies {_when(draft)}"
            ),
            batch_id=draft.batch_id,
            conflicting_entries=[EntryRef.model_validate(entry) for entry in stored],
            conflicting_indexes=proposed,
        )

    def _calendar_conflicts(self, draft: EntryDraft) -> list:
        if draft.date is None:
            return []
        conflicts: list = []
        holidays = self.calendar.holidays_on(draft.date, draft.batch_id)
        if holidays:
            conflicts.append(
                HolidayScheduling(
                    message=f"Scheduled on holiday: {', '.join(holiday.name for holiday in holidays)}",
                    holidays=[HolidayRef.model_validate(holiday) for holiday in holidays],
                )
            )
        if draft.entry_type == EntryType.REGULAR:
            exam_period = self.calendar.blocking_exam_period(draft.date, draft.batch_id)
            if exam_period is not None:
                conflicts.append(
                    ExamPeriodConflict(
                        message=f"Regular classes are blocked during exam period: {exam_period.name}",
                        exam_periods=[ExamPeriodRef.model_validate(exam_period)],
                    )
                )
        return conflicts

    def suggest_alternatives(self, draft: EntryDraft, *, exclude_entry_ids: Collection[str] = ()) -> list[TimeSlot]:
        """Active slots, in display order, free for both the batch and the faculty."""
        date_key = date_key_for(draft.date)
        same_day = (TimetableEntry.day_of_week == draft.day_of_week, TimetableEntry.date_key == date_key)
        occupied = {
            entry.time_slot_id
            for entry in self._active_entries(TimetableEntry.batch_id == draft.batch_id, *same_day, exclude=exclude_entry_ids)
        }
        if draft.faculty_id is not None:
            occupied |= {
                entry.time_slot_id
                for entry in self._active_entries(
                    TimetableEntry.faculty_id == draft.faculty_id,
                    *same_day,
                    exclude=exclude_entry_ids,
                )
            }
        slots = self.slot_map()
        busy = [slots[slot_id] for slot_id in occupied if slot_id in slots]
        candidates = sorted(
            (slot for slot in slots.values() if slot.is_active and slot.id != draft.time_slot_id),
            key=lambda item: (item.sort_order, item.start_minutes),
        )
        return [slot for slot in candidates if not any(slot.overlaps(other) for other in busy)]
