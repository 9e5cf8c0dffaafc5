from __future__ import annotations

from datetime import date

from sqlalchemy import and_, extract, or_, select
from sqlalchemy.orm import Session

from app.models.academic import Batch
from app.models.calendar import AcademicCalendar, ExamPeriod, Holiday


class CalendarFacts:
    """Read-only holiday and exam-period lookups scoped to a batch's department.

    A fact applies to a batch when its department scope is empty (university-wide)
    or equals the department of the batch's program. Lookups are memoized per
    instance, so create one per request or operation.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._departments: dict[str, str | None] = {}
        self._holidays: dict[tuple[date, str], list[Holiday]] = {}
        self._exams: dict[tuple[date, str], ExamPeriod | None] = {}

    def department_for_batch(self, batch_id: str) -> str | None:
        if batch_id not in self._departments:
            batch = self.db.get(Batch, batch_id)
            self._departments[batch_id] = batch.department_id if batch is not None else None
        return self._departments[batch_id]

    def _scope_clause(self, column, batch_id: str):
        department_id = self.department_for_batch(batch_id)
        if department_id is None:
            return column.is_(None)
        return or_(column.is_(None), column == department_id)

    def holidays_on(self, on_date: date, batch_id: str) -> list[Holiday]:
        key = (on_date, batch_id)
        if key not in self._holidays:
            recurring_match = and_(
                Holiday.is_recurring.is_(True),
                extract("month", Holiday.date) == on_date.month,
                extract("day", Holiday.date) == on_date.day,
            )
            stmt = (
                select(Holiday)
                .where(
                    or_(Holiday.date == on_date, recurring_match),
                    self._scope_clause(Holiday.department_id, batch_id),
                )
                .order_by(Holiday.name)
            )
            self._holidays[key] = list(self.db.execute(stmt).scalars().all())
        return self._holidays[key]

    def blocking_exam_period(self, on_date: date, batch_id: str) -> ExamPeriod | None:
        key = (on_date, batch_id)
        if key not in self._exams:
            stmt = (
                select(ExamPeriod)
                .where(
                    ExamPeriod.start_date <= on_date,
                    ExamPeriod.end_date >= on_date,
                    ExamPeriod.blocks_regular_classes.is_(True),
                    self._scope_clause(ExamPeriod.department_id, batch_id),
                )
                .order_by(ExamPeriod.start_date)
                .limit(1)
            )
            self._exams[key] = self.db.execute(stmt).scalars().first()
        return self._exams[key]

    def is_blackout(self, on_date: date, batch_id: str) -> bool:
        return bool(self.holidays_on(on_date, batch_id)) or self.blocking_exam_period(on_date, batch_id) is not None

    def semester_end_for_batch(self, batch_id: str, reference: date) -> date | None:
        department_id = self.department_for_batch(batch_id)
        if department_id is None:
            return None
        base = select(AcademicCalendar).where(
            AcademicCalendar.department_id == department_id,
            AcademicCalendar.is_active.is_(True),
        )
        current = self.db.execute(
            base.where(
                AcademicCalendar.semester_start <= reference,
                AcademicCalendar.semester_end >= reference,
            ).order_by(AcademicCalendar.semester_end.desc())
        ).scalars().first()
        if current is not None:
            return current.semester_end
        upcoming = self.db.execute(
            base.where(AcademicCalendar.semester_end >= reference).order_by(AcademicCalendar.semester_end)
        ).scalars().first()
        return upcoming.semester_end if upcoming is not None else None
