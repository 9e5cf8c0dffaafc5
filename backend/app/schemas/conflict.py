from __future__ import annotations

import datetime as dt
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.models.calendar import HolidayType
from app.models.timetable_entry import DayOfWeek, EntryType
from app.schemas.timetable import EntryDraft, EntryOut, TimeSlotOut

ConflictSeverity = Literal["error", "warning"]


class EntryRef(BaseModel):
    id: str
    batch_id: str
    subject_id: str | None
    faculty_id: str | None
    custom_event_title: str | None
    time_slot_id: str
    day_of_week: DayOfWeek
    date: dt.date | None
    entry_type: EntryType

    model_config = {"from_attributes": True}


class HolidayRef(BaseModel):
    id: str
    name: str
    date: dt.date
    type: HolidayType
    department_id: str | None

    model_config = {"from_attributes": True}


class ExamPeriodRef(BaseModel):
    id: str
    name: str
    start_date: dt.date
    end_date: dt.date
    department_id: str | None

    model_config = {"from_attributes": True}


class BatchDoubleBooking(BaseModel):
    type: Literal["BATCH_DOUBLE_BOOKING"] = "BATCH_DOUBLE_BOOKING"
    severity: ConflictSeverity = "error"
    message: str
    batch_id: str
    conflicting_entries: list[EntryRef]


class FacultyConflict(BaseModel):
    type: Literal["FACULTY_CONFLICT"] = "FACULTY_CONFLICT"
    severity: ConflictSeverity = "error"
    message: str
    faculty_id: str
    conflicting_entries: list[EntryRef]


class InternalBatchConflict(BaseModel):
    type: Literal["INTERNAL_BATCH_CONFLICT"] = "INTERNAL_BATCH_CONFLICT"
    severity: ConflictSeverity = "error"
    message: str
    batch_id: str
    conflicting_indexes: list[int]


class InternalFacultyConflict(BaseModel):
    type: Literal["INTERNAL_FACULTY_CONFLICT"] = "INTERNAL_FACULTY_CONFLICT"
    severity: ConflictSeverity = "error"
    message: str
    faculty_id: str
    conflicting_indexes: list[int]


class HolidayScheduling(BaseModel):
    type: Literal["HOLIDAY_SCHEDULING"] = "HOLIDAY_SCHEDULING"
    severity: ConflictSeverity = "warning"
    message: str
    holidays: list[HolidayRef]


class ExamPeriodConflict(BaseModel):
    type: Literal["EXAM_PERIOD_CONFLICT"] = "EXAM_PERIOD_CONFLICT"
    severity: ConflictSeverity = "error"
    message: str
    exam_periods: list[ExamPeriodRef]


class ModuleOverlap(BaseModel):
    type: Literal["MODULE_OVERLAP"] = "MODULE_OVERLAP"
    severity: ConflictSeverity = "error"
    message: str
    batch_id: str
    conflicting_entries: list[EntryRef] = Field(default_factory=list)
    conflicting_indexes: list[int] = Field(default_factory=list)


ConflictInfo = Annotated[
    Union[
        BatchDoubleBooking,
        FacultyConflict,
        InternalBatchConflict,
        InternalFacultyConflict,
        HolidayScheduling,
        ExamPeriodConflict,
        ModuleOverlap,
    ],
    Field(discriminator="type"),
]

# Conflict kinds a stored occupant can cause; FORCE displaces these, never the rest.
OVERRIDABLE_TYPES = frozenset({"BATCH_DOUBLE_BOOKING", "FACULTY_CONFLICT", "MODULE_OVERLAP"})
INTERNAL_TYPES = frozenset({"INTERNAL_BATCH_CONFLICT", "INTERNAL_FACULTY_CONFLICT"})
CALENDAR_TYPES = frozenset({"HOLIDAY_SCHEDULING", "EXAM_PERIOD_CONFLICT"})


class EntryConflicts(BaseModel):
    index: int
    entry: EntryDraft
    conflicts: list[ConflictInfo] = Field(default_factory=list)
    has_errors: bool = False
    has_warnings: bool = False

    @classmethod
    def build(cls, index: int, entry: EntryDraft, conflicts: list) -> "EntryConflicts":
        return cls(
            index=index,
            entry=entry,
            conflicts=conflicts,
            has_errors=any(item.severity == "error" for item in conflicts),
            has_warnings=any(item.severity == "warning" for item in conflicts),
        )

    def errors(self) -> list:
        return [item for item in self.conflicts if item.severity == "error"]

    def warnings(self) -> list:
        return [item for item in self.conflicts if item.severity == "warning"]

    def displaceable_entry_ids(self) -> set[str]:
        ids: set[str] = set()
        for item in self.conflicts:
            if item.type in OVERRIDABLE_TYPES:
                ids.update(ref.id for ref in item.conflicting_entries)
        return ids

    def has_internal_conflicts(self) -> bool:
        return any(
            item.type in INTERNAL_TYPES or (item.type == "MODULE_OVERLAP" and item.conflicting_indexes)
            for item in self.conflicts
        )


class ConflictSummary(BaseModel):
    total_entries: int
    valid_entries: int
    entries_with_errors: int
    entries_with_warnings: int


class ConflictReport(BaseModel):
    items: list[EntryConflicts]
    has_errors: bool
    has_warnings: bool
    summary: ConflictSummary

    @classmethod
    def build(cls, items: list[EntryConflicts]) -> "ConflictReport":
        with_errors = sum(1 for item in items if item.has_errors)
        with_warnings = sum(1 for item in items if item.has_warnings)
        return cls(
            items=items,
            has_errors=with_errors > 0,
            has_warnings=with_warnings > 0,
            summary=ConflictSummary(
                total_entries=len(items),
                valid_entries=len(items) - with_errors,
                entries_with_errors=with_errors,
                entries_with_warnings=with_warnings,
            ),
        )

    def conflicted_items(self) -> list[EntryConflicts]:
        return [item for item in self.items if item.conflicts]


class ConflictCheckResponse(BaseModel):
    has_conflicts: bool
    has_errors: bool
    conflicts: list[ConflictInfo]
    alternatives: list[TimeSlotOut] = Field(default_factory=list)


class EntryWriteResult(BaseModel):
    entry: EntryOut
    warnings: list[ConflictInfo] = Field(default_factory=list)
