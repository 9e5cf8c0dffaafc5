from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.timetable_entry import DayOfWeek, EntryType

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class RegularSession(BaseModel):
    kind: Literal["regular"] = "regular"
    subject_id: str = Field(min_length=1, max_length=36)
    faculty_id: str = Field(min_length=1, max_length=36)


class CustomEvent(BaseModel):
    kind: Literal["custom_event"] = "custom_event"
    title: str = Field(min_length=1, max_length=200)
    color: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str | None) -> str | None:
        if value is not None and not COLOR_PATTERN.match(value):
            raise ValueError("Color must be a #RRGGBB hex value")
        return value


EntryActivity = Annotated[Union[RegularSession, CustomEvent], Field(discriminator="kind")]


class EntryDraft(BaseModel):
    """A proposed entry: what a caller wants to exist, before conflict checks."""

    batch_id: str = Field(min_length=1, max_length=36)
    time_slot_id: str = Field(min_length=1, max_length=36)
    day_of_week: DayOfWeek
    date: dt.date | None = None
    entry_type: EntryType = EntryType.REGULAR
    activity: EntryActivity
    notes: str | None = Field(default=None, max_length=2000)
    requires_attendance: bool = True
    template_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_flat_activity(cls, data):
        # Accept the flat shape {subject_id, faculty_id} / {custom_event_title, custom_event_color}.
        if not isinstance(data, dict) or "activity" in data:
            return data
        data = dict(data)
        title = data.pop("custom_event_title", None)
        color = data.pop("custom_event_color", None)
        subject_id = data.pop("subject_id", None)
        faculty_id = data.pop("faculty_id", None)
        if title is not None and (subject_id is not None or faculty_id is not None):
            raise ValueError("An entry is either a subject session or a custom event, not both")
        if title is not None:
            data["activity"] = {"kind": "custom_event", "title": title, "color": color}
        elif subject_id is not None or faculty_id is not None:
            data["activity"] = {"kind": "regular", "subject_id": subject_id, "faculty_id": faculty_id}
        return data

    @model_validator(mode="after")
    def validate_day_matches_date(self) -> "EntryDraft":
        if self.date is not None and DayOfWeek.from_date(self.date) != self.day_of_week:
            raise ValueError(
                f"day_of_week {self.day_of_week.value} does not match date {self.date.isoformat()} "
                f"({DayOfWeek.from_date(self.date).value})"
            )
        return self

    @property
    def subject_id(self) -> str | None:
        return self.activity.subject_id if isinstance(self.activity, RegularSession) else None

    @property
    def faculty_id(self) -> str | None:
        return self.activity.faculty_id if isinstance(self.activity, RegularSession) else None

    @property
    def slot_key(self) -> tuple[str, DayOfWeek, dt.date | None]:
        return self.time_slot_id, self.day_of_week, self.date

    def column_values(self) -> dict:
        values = {
            "batch_id": self.batch_id,
            "time_slot_id": self.time_slot_id,
            "day_of_week": self.day_of_week,
            "date": self.date,
            "entry_type": self.entry_type,
            "notes": self.notes,
            "requires_attendance": self.requires_attendance,
            "template_id": self.template_id,
            "subject_id": None,
            "faculty_id": None,
            "custom_event_title": None,
            "custom_event_color": None,
        }
        if isinstance(self.activity, RegularSession):
            values["subject_id"] = self.activity.subject_id
            values["faculty_id"] = self.activity.faculty_id
        else:
            values["custom_event_title"] = self.activity.title
            values["custom_event_color"] = self.activity.color
        return values


class EntryOut(BaseModel):
    id: str
    batch_id: str
    kind: Literal["regular", "custom_event"]
    subject_id: str | None
    faculty_id: str | None
    custom_event_title: str | None
    custom_event_color: str | None
    time_slot_id: str
    day_of_week: DayOfWeek
    date: dt.date | None
    entry_type: EntryType
    is_active: bool
    requires_attendance: bool
    notes: str | None
    template_id: str | None
    created_at: dt.datetime | None = None

    model_config = {"from_attributes": True}


class EntryUpdate(BaseModel):
    time_slot_id: str | None = Field(default=None, min_length=1, max_length=36)
    day_of_week: DayOfWeek | None = None
    date: dt.date | None = None
    faculty_id: str | None = Field(default=None, min_length=1, max_length=36)
    entry_type: EntryType | None = None
    notes: str | None = Field(default=None, max_length=2000)


class EntryFilter(BaseModel):
    batch_id: str | None = None
    faculty_id: str | None = None
    day_of_week: DayOfWeek | None = None
    date_from: dt.date | None = None
    date_to: dt.date | None = None
    include_inactive: bool = False


class BulkCreateRequest(BaseModel):
    entries: list[EntryDraft] = Field(min_length=1)
    validate_only: bool = False
    conflict_resolution: Literal["STOP", "SKIP", "FORCE"] = "STOP"


class ConflictCheckRequest(EntryDraft):
    exclude_entry_id: str | None = None
    suggest_alternatives: bool = True


class TimeSlotCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    start_time: str
    end_time: str
    sort_order: int = Field(default=0, ge=0)
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_time_order(self) -> "TimeSlotCreate":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self


class TimeSlotUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    start_time: str | None = None
    end_time: str | None = None
    sort_order: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class TimeSlotOut(BaseModel):
    id: str
    name: str
    start_time: str
    end_time: str
    duration: int
    sort_order: int
    is_active: bool

    model_config = {"from_attributes": True}
