from __future__ import annotations

import calendar as calendar_lib
from datetime import date, timedelta
import logging

from app.models.time_slot import TimeSlot
from app.models.timetable_entry import DayOfWeek, EntryType
from app.models.timetable_template import EndCondition, RecurrencePattern, TimetableTemplate
from app.schemas.template import RecurrenceOutcome
from app.schemas.timetable import EntryDraft, RegularSession
from app.services.calendar_facts import CalendarFacts

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100


def add_months(anchor: date, months: int) -> date:
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor.day, calendar_lib.monthrange(year, month)[1])
    return date(year, month, day)


def _visit_dates(start: date, pattern: RecurrencePattern):
    step = 0
    while True:
        if pattern == RecurrencePattern.DAILY:
            yield start + timedelta(days=step)
        elif pattern == RecurrencePattern.WEEKLY:
            yield start + timedelta(days=7 * step)
        else:
            yield add_months(start, step)
        step += 1


def expand_template(
    template: TimetableTemplate,
    *,
    calendar: CalendarFacts,
    slot: TimeSlot,
    batch_id: str | None = None,
    subject_id: str | None = None,
    end_date: date | None = None,
    target_hours: float | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> RecurrenceOutcome:
    """Expand a template into dated drafts.

    Every visited date counts as one iteration, including dates skipped for a
    day-of-week mismatch or a blackout. Hitting ``max_iterations`` before an end
    condition fires is reported through ``cap_reached``.
    """
    batch_id = batch_id or template.batch_id
    subject_id = subject_id or template.subject_id
    limit = end_date if end_date is not None else template.end_date
    if template.end_condition == EndCondition.HOURS_COMPLETE:
        target_hours = target_hours if target_hours is not None else (template.total_hours or 0)
    else:
        target_hours = None

    drafts: list[EntryDraft] = []
    skipped: list[date] = []
    hours = 0.0
    iterations = 0
    cap_reached = False

    for current in _visit_dates(template.start_date, template.recurrence_pattern):
        if limit is not None and current > limit:
            break
        if target_hours is not None and hours >= target_hours:
            break
        if iterations >= max_iterations:
            cap_reached = True
            break
        iterations += 1

        if DayOfWeek.from_date(current) != template.day_of_week:
            continue
        if calendar.is_blackout(current, batch_id):
            skipped.append(current)
            continue
        drafts.append(
            EntryDraft(
                batch_id=batch_id,
                time_slot_id=template.time_slot_id,
                day_of_week=template.day_of_week,
                date=current,
                entry_type=EntryType.REGULAR,
                activity=RegularSession(subject_id=subject_id, faculty_id=template.faculty_id),
                notes=f"Generated from template: {template.name}",
                template_id=template.id,
            )
        )
        hours += slot.duration_hours

    if cap_reached:
        logger.warning(
            "RECURRENCE CAP REACHED | template_id=%s | batch_id=%s | iterations=%s | generated=%s",
            template.id,
            batch_id,
            iterations,
            len(drafts),
        )
    return RecurrenceOutcome(
        drafts=drafts,
        cap_reached=cap_reached,
        iterations=iterations,
        hours_generated=hours,
        skipped_dates=skipped,
    )
