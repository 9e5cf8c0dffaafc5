from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from app.models.calendar import HolidayType
from app.schemas.conflict import ExamPeriodRef, HolidayRef


class HolidayCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    date: dt.date
    type: HolidayType = HolidayType.UNIVERSITY
    department_id: str | None = Field(default=None, max_length=36)
    is_recurring: bool = False
    description: str | None = Field(default=None, max_length=2000)


class HolidayOut(BaseModel):
    id: str
    name: str
    date: dt.date
    type: HolidayType
    department_id: str | None
    is_recurring: bool
    description: str | None

    model_config = {"from_attributes": True}


class ExamPeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    start_date: dt.date
    end_date: dt.date
    exam_type: str = Field(default="INTERNAL", min_length=1, max_length=50)
    blocks_regular_classes: bool = True
    department_id: str | None = Field(default=None, max_length=36)
    description: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_range(self) -> "ExamPeriodCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ExamPeriodOut(BaseModel):
    id: str
    name: str
    start_date: dt.date
    end_date: dt.date
    exam_type: str
    blocks_regular_classes: bool
    department_id: str | None
    description: str | None

    model_config = {"from_attributes": True}


class CalendarFactsOut(BaseModel):
    batch_id: str
    date: dt.date
    holidays: list[HolidayRef]
    blocking_exam_period: ExamPeriodRef | None = None
    is_blackout: bool
