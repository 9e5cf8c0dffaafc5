from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from app.models.timetable_entry import DayOfWeek
from app.models.timetable_template import EndCondition, RecurrencePattern
from app.schemas.conflict import ConflictReport
from app.schemas.timetable import EntryDraft, EntryOut


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    batch_id: str = Field(min_length=1, max_length=36)
    subject_id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)
    time_slot_id: str = Field(min_length=1, max_length=36)
    day_of_week: DayOfWeek
    recurrence_pattern: RecurrencePattern = RecurrencePattern.WEEKLY
    start_date: dt.date
    end_date: dt.date | None = None
    end_condition: EndCondition = EndCondition.SEMESTER_END
    total_hours: int | None = Field(default=None, ge=1, le=1000)
    notes: str | None = Field(default=None, max_length=2000)
    generate_entries: bool = False

    @model_validator(mode="after")
    def validate_end_condition(self) -> "TemplateCreate":
        if self.end_condition == EndCondition.HOURS_COMPLETE and self.total_hours is None:
            raise ValueError("total_hours is required when end_condition is HOURS_COMPLETE")
        if self.end_condition == EndCondition.SPECIFIC_DATE and self.end_date is None:
            raise ValueError("end_date is required when end_condition is SPECIFIC_DATE")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TemplateOut(BaseModel):
    id: str
    name: str
    batch_id: str
    subject_id: str
    faculty_id: str
    time_slot_id: str
    day_of_week: DayOfWeek
    recurrence_pattern: RecurrencePattern
    start_date: dt.date
    end_date: dt.date | None
    end_condition: EndCondition
    total_hours: int | None
    is_active: bool
    notes: str | None
    created_by_id: str | None = None
    created_at: dt.datetime | None = None

    model_config = {"from_attributes": True}


class RecurrenceOutcome(BaseModel):
    drafts: list[EntryDraft]
    cap_reached: bool = False
    iterations: int = 0
    hours_generated: float = 0
    skipped_dates: list[dt.date] = Field(default_factory=list)


class TemplatePreview(BaseModel):
    template_id: str
    batch_id: str
    recurrence: RecurrenceOutcome
    conflicts: ConflictReport
    warnings: list[str] = Field(default_factory=list)


class TemplateCreateResult(BaseModel):
    template: TemplateOut
    created_entries: list[EntryOut] = Field(default_factory=list)
    dropped: int = 0
    cap_reached: bool = False
    warnings: list[str] = Field(default_factory=list)
