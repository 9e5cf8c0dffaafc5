import uuid
import datetime as dt
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from sqlalchemy.sql import func

from app.db.base import Base
from app.models.time_slot import TimeSlot

# Weekly entries carry no date; the key keeps them inside the uniqueness indexes.
WEEKLY_DATE_KEY = "weekly"


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_date(cls, value: dt.date) -> "DayOfWeek":
        return list(cls)[value.weekday()]

    @property
    def weekday(self) -> int:
        return list(DayOfWeek).index(self)


class EntryType(str, Enum):
    REGULAR = "REGULAR"
    MAKEUP = "MAKEUP"
    EXTRA = "EXTRA"
    EXAM = "EXAM"


def date_key_for(value: dt.date | None) -> str:
    return value.isoformat() if value is not None else WEEKLY_DATE_KEY


class TimetableEntry(Base):
    __tablename__ = "timetable_entries"
    __table_args__ = (
        CheckConstraint(
            "(subject_id IS NOT NULL AND faculty_id IS NOT NULL AND custom_event_title IS NULL)"
            " OR (subject_id IS NULL AND faculty_id IS NULL AND custom_event_title IS NOT NULL)",
            name="ck_timetable_entries_kind",
        ),
        Index(
            "uq_timetable_entries_batch_slot",
            "batch_id",
            "time_slot_id",
            "day_of_week",
            "date_key",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index(
            "uq_timetable_entries_faculty_slot",
            "faculty_id",
            "time_slot_id",
            "day_of_week",
            "date_key",
            unique=True,
            sqlite_where=text("is_active = 1 AND faculty_id IS NOT NULL"),
            postgresql_where=text("is_active AND faculty_id IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batches.id"), nullable=False, index=True)
    subject_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("subjects.id"), nullable=True)
    faculty_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("faculty.id"), nullable=True, index=True)
    custom_event_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    custom_event_color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    time_slot_id: Mapped[str] = mapped_column(String(36), ForeignKey("time_slots.id"), nullable=False)
    day_of_week: Mapped[DayOfWeek] = mapped_column(SAEnum(DayOfWeek, name="day_of_week"), nullable=False)
    date: Mapped[dt.date | None] = mapped_column(Date, nullable=True, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, default=WEEKLY_DATE_KEY)
    entry_type: Mapped[EntryType] = mapped_column(
        SAEnum(EntryType, name="entry_type"),
        nullable=False,
        default=EntryType.REGULAR,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_attendance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("timetable_templates.id"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    time_slot: Mapped[TimeSlot] = relationship(lazy="joined")

    @validates("date")
    def _sync_date_key(self, _key: str, value: dt.date | None) -> dt.date | None:
        self.date_key = date_key_for(value)
        return value

    @property
    def kind(self) -> str:
        return "custom_event" if self.custom_event_title is not None else "regular"

    def snapshot(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "subject_id": self.subject_id,
            "faculty_id": self.faculty_id,
            "custom_event_title": self.custom_event_title,
            "custom_event_color": self.custom_event_color,
            "time_slot_id": self.time_slot_id,
            "day_of_week": self.day_of_week.value,
            "date": self.date.isoformat() if self.date else None,
            "entry_type": self.entry_type.value,
            "requires_attendance": self.requires_attendance,
            "notes": self.notes,
            "template_id": self.template_id,
        }
