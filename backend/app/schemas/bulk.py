from __future__ import annotations

import datetime as dt
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.bulk_operation import BulkOperationKind, LogLevel, OperationStatus
from app.schemas.conflict import ConflictInfo, ConflictReport
from app.schemas.timetable import EntryDraft

ConflictPolicy = Literal["stop", "skip", "force"]


class DateRange(BaseModel):
    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("Range end must not be before range start")
        return self

    def contains(self, value: dt.date) -> bool:
        return self.start <= value <= self.end

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days


class BulkOptions(BaseModel):
    dry_run: bool = False
    validate_only: bool = False
    conflict_policy: ConflictPolicy = "stop"
    preserve_faculty: bool = True
    exclude_weekends: bool = True
    respect_blackouts: bool = True
    run_async: bool = False

    @field_validator("conflict_policy", mode="before")
    @classmethod
    def normalize_policy(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "override":
                return "force"
        return value


class CloneRequest(BaseModel):
    kind: Literal["clone"] = "clone"
    source_batch_id: str = Field(min_length=1, max_length=36)
    target_batch_id: str = Field(min_length=1, max_length=36)
    date_range: DateRange | None = None

    @model_validator(mode="after")
    def validate_distinct_batches(self) -> "CloneRequest":
        if self.source_batch_id == self.target_batch_id:
            raise ValueError("Source and target batch must differ")
        return self


class FacultyReplaceRequest(BaseModel):
    kind: Literal["faculty_replace"] = "faculty_replace"
    current_faculty_id: str = Field(min_length=1, max_length=36)
    new_faculty_id: str = Field(min_length=1, max_length=36)
    batch_ids: list[str] | None = None
    subject_ids: list[str] | None = None
    effective_date: dt.date | None = None

    @model_validator(mode="after")
    def validate_distinct_faculty(self) -> "FacultyReplaceRequest":
        if self.current_faculty_id == self.new_faculty_id:
            raise ValueError("Replacement faculty must differ from the current faculty")
        return self


class RescheduleRequest(BaseModel):
    kind: Literal["reschedule"] = "reschedule"
    source_range: DateRange
    target_range: DateRange
    batch_ids: list[str] | None = None
    move_type: Literal["shift", "map"] = "shift"

    @model_validator(mode="after")
    def validate_source_span(self) -> "RescheduleRequest":
        if self.source_range.start >= self.source_range.end:
            raise ValueError("Source range start must be before its end")
        return self


class BulkCreateSpec(BaseModel):
    kind: Literal["bulk_create"] = "bulk_create"
    entries: list[EntryDraft] = Field(min_length=1)


class TemplateApplyRequest(BaseModel):
    kind: Literal["template_apply"] = "template_apply"
    template_id: str = Field(min_length=1, max_length=36)
    target_batch_ids: list[str] = Field(min_length=1)


BulkOperationSpec = Annotated[
    Union[BulkCreateSpec, CloneRequest, FacultyReplaceRequest, RescheduleRequest, TemplateApplyRequest],
    Field(discriminator="kind"),
]

KIND_BY_REQUEST: dict[str, BulkOperationKind] = {
    "bulk_create": BulkOperationKind.BULK_CREATE,
    "clone": BulkOperationKind.CLONE,
    "faculty_replace": BulkOperationKind.FACULTY_REPLACE,
    "reschedule": BulkOperationKind.RESCHEDULE,
    "template_apply": BulkOperationKind.TEMPLATE_APPLY,
}


class BulkOperationSubmit(BaseModel):
    operation: BulkOperationSpec
    options: BulkOptions = Field(default_factory=BulkOptions)


ItemStatus = Literal["created", "updated", "skipped", "failed"]


class BulkItemResult(BaseModel):
    index: int | None = None
    status: ItemStatus
    entry_id: str | None = None
    source_entry_id: str | None = None
    draft: EntryDraft | None = None
    reason: str | None = None
    conflicts: list[ConflictInfo] = Field(default_factory=list)


class BulkOperationResult(BaseModel):
    operation_id: str | None = None
    kind: BulkOperationKind
    status: OperationStatus | None = None
    dry_run: bool = False
    validate_only: bool = False
    conflict_policy: ConflictPolicy = "stop"
    affected: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    displaced_entry_ids: list[str] = Field(default_factory=list)
    items: list[BulkItemResult] = Field(default_factory=list)
    conflicts: ConflictReport | None = None
    warnings: list[str] = Field(default_factory=list)
    summary: str = ""


class BulkOperationOut(BaseModel):
    id: str
    kind: BulkOperationKind
    status: OperationStatus
    progress: int
    requested_by_id: str
    parameters: dict
    results: dict | None
    error_log: str | None
    affected_count: int
    success_count: int
    failed_count: int
    cancel_requested: bool
    created_at: dt.datetime | None = None
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    estimated_seconds_remaining: int | None = None

    model_config = {"from_attributes": True}


class OperationLogOut(BaseModel):
    id: str
    operation_id: str
    level: LogLevel
    message: str
    details: dict | None
    timestamp: dt.datetime | None = None

    model_config = {"from_attributes": True}

