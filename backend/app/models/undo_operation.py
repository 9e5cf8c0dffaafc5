import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class UndoEntityType(str, Enum):
    TIMETABLE_ENTRY = "TIMETABLE_ENTRY"
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    SUBJECT = "SUBJECT"
    BATCH = "BATCH"
    HOLIDAY = "HOLIDAY"
    TIMESLOT = "TIMESLOT"


class UndoOperationType(str, Enum):
    DELETE = "DELETE"
    BATCH_DELETE = "BATCH_DELETE"
    SOFT_DELETE = "SOFT_DELETE"


class UndoOperation(Base):
    __tablename__ = "undo_operations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entity_type: Mapped[UndoEntityType] = mapped_column(SAEnum(UndoEntityType, name="undo_entity_type"), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    operation: Mapped[UndoOperationType] = mapped_column(
        SAEnum(UndoOperationType, name="undo_operation_type"),
        nullable=False,
        default=UndoOperationType.DELETE,
    )
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
