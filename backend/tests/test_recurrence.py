from datetime import date, timedelta

from app.models.calendar import AcademicCalendar, ExamPeriod, Holiday, HolidayType
from app.models.timetable_entry import DayOfWeek
from app.models.timetable_template import EndCondition, RecurrencePattern, TimetableTemplate
from app.services.calendar_facts import CalendarFacts
from app.services.recurrence import add_months, expand_template
from app.services.templates import expand


def make_template(seed, **overrides):
    values = {
        "name": "Algorithms lecture",
        "batch_id": seed.batch_a.id,
        "subject_id": seed.algorithms_a.id,
        "faculty_id": seed.faculty_1.id,
        "time_slot_id": seed.slot_1.id,
        "day_of_week": DayOfWeek.MONDAY,
        "recurrence_pattern": RecurrencePattern.WEEKLY,
        "start_date": date(2025, 8, 4),
        "end_date": None,
        "end_condition": EndCondition.SPECIFIC_DATE,
        "total_hours": None,
    }
    values.update(overrides)
    return TimetableTemplate(**values)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2025, 1, 31), 3) == date(2025, 4, 30)
    assert add_months(date(2025, 11, 15), 2) == date(2026, 1, 15)


def test_hours_complete_generates_exact_count(db_session, seed):
    template = make_template(seed, end_condition=EndCondition.HOURS_COMPLETE, total_hours=30)

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1)

    assert len(outcome.drafts) == 30
    assert outcome.hours_generated == 30
    assert not outcome.cap_reached
    assert all(draft.day_of_week == DayOfWeek.MONDAY for draft in outcome.drafts)
    assert outcome.drafts[1].date - outcome.drafts[0].date == timedelta(days=7)


def test_semester_scenario_skips_holiday_monday(db_session, seed):
    db_session.add(Holiday(name="Independence Day Observed", date=date(2025, 8, 25), type=HolidayType.NATIONAL))
    db_session.commit()
    template = make_template(seed, end_condition=EndCondition.SEMESTER_END, end_date=date(2025, 10, 31))

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1)

    dates = [draft.date for draft in outcome.drafts]
    assert len(dates) == 12
    assert date(2025, 8, 25) not in dates
    assert dates[0] == date(2025, 8, 4)
    assert dates[-1] == date(2025, 10, 27)
    assert outcome.skipped_dates == [date(2025, 8, 25)]
    assert outcome.drafts[0].notes == "Generated from template: Algorithms lecture"


def test_blocking_exam_period_is_skipped(db_session, seed):
    db_session.add(
        ExamPeriod(
            name="Mid-semester exams",
            start_date=date(2025, 9, 1),
            end_date=date(2025, 9, 12),
            blocks_regular_classes=True,
        )
    )
    db_session.commit()
    template = make_template(seed, end_date=date(2025, 9, 30))

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1)

    dates = [draft.date for draft in outcome.drafts]
    assert date(2025, 9, 1) not in dates
    assert date(2025, 9, 8) not in dates
    assert outcome.skipped_dates == [date(2025, 9, 1), date(2025, 9, 8)]


def test_iteration_cap_is_reported(db_session, seed):
    template = make_template(
        seed,
        recurrence_pattern=RecurrencePattern.DAILY,
        end_condition=EndCondition.HOURS_COMPLETE,
        total_hours=500,
    )

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1, max_iterations=100)

    assert outcome.cap_reached
    assert outcome.iterations == 100
    # 100 consecutive days starting on a Monday contain 15 Mondays.
    assert len(outcome.drafts) == 15


def test_end_date_before_start_generates_nothing(db_session, seed):
    template = make_template(seed, end_date=date(2025, 8, 1))

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1)

    assert outcome.drafts == []
    assert not outcome.cap_reached


def test_monthly_pattern_keeps_anchor_day(db_session, seed):
    template = make_template(
        seed,
        recurrence_pattern=RecurrencePattern.MONTHLY,
        start_date=date(2025, 9, 1),
        end_date=date(2026, 6, 30),
    )

    outcome = expand_template(template, calendar=CalendarFacts(db_session), slot=seed.slot_1)

    # Only the months whose 1st falls on a Monday qualify.
    assert [draft.date for draft in outcome.drafts] == [date(2025, 9, 1), date(2025, 12, 1), date(2026, 6, 1)]


def test_semester_end_comes_from_academic_calendar(db_session, seed):
    db_session.add(
        AcademicCalendar(
            department_id=seed.department.id,
            semester_name="Odd 2025",
            academic_year="2025-26",
            semester_start=date(2025, 8, 1),
            semester_end=date(2025, 8, 31),
        )
    )
    template = make_template(seed, end_condition=EndCondition.SEMESTER_END)
    db_session.add(template)
    db_session.commit()

    outcome = expand(db_session, template)

    assert [draft.date for draft in outcome.drafts] == [
        date(2025, 8, 4),
        date(2025, 8, 11),
        date(2025, 8, 18),
        date(2025, 8, 25),
    ]
    assert all(draft.template_id == template.id for draft in outcome.drafts)
