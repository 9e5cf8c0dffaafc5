from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.undo_operation import UndoEntityType, UndoOperationType


class UndoCreate(BaseModel):
    entity_type: UndoEntityType
    entity_id: str = Field(min_length=1, max_length=36)
    operation: UndoOperationType = UndoOperationType.DELETE
    data: dict
    metadata: dict = Field(default_factory=dict)
    timeout_seconds: int = Field(default=30, ge=1, le=300)


class UndoOut(BaseModel):
    id: str
    user_id: str
    entity_type: UndoEntityType
    entity_id: str
    operation: UndoOperationType
    metadata: dict = Field(validation_alias="metadata_")
    expires_at: datetime
    created_at: datetime | None = None

    model_config = {"from_attributes": True, "populate_by_name": True}


class UndoRecorded(BaseModel):
    undo_id: str
    expires_at: datetime


class UndoResult(BaseModel):
    undo_id: str
    entity_type: UndoEntityType
    entity_id: str
    restored: bool = True
    message: str


class UndoSweepResult(BaseModel):
    deleted: int
