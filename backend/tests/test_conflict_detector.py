from datetime import date

import pytest

from app.core.exceptions import ValidationError
from app.models.calendar import ExamPeriod, Holiday, HolidayType
from app.models.timetable_entry import DayOfWeek, EntryType
from app.schemas.timetable import EntryDraft
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore


MONDAY = date(2030, 1, 7)


def make_draft(seed, **overrides):
    values = {
        "batch_id": seed.batch_a.id,
        "time_slot_id": seed.slot_1.id,
        "day_of_week": DayOfWeek.MONDAY,
        "date": MONDAY,
        "subject_id": seed.algorithms_a.id,
        "faculty_id": seed.faculty_1.id,
    }
    values.update(overrides)
    return EntryDraft.model_validate(values)


def store_entry(db_session, draft):
    entry = EntryStore(db_session).stage_create(draft)
    db_session.commit()
    return entry


def conflict_types(item):
    return [conflict.type for conflict in item.conflicts]


def test_detect_rejects_empty_proposals(db_session, seed):
    with pytest.raises(ValidationError):
        ConflictDetector(db_session).detect([])


def test_stored_batch_and_faculty_double_booking(db_session, seed):
    existing = store_entry(db_session, make_draft(seed))

    same_batch = make_draft(seed, subject_id=seed.networks_a.id, faculty_id=seed.faculty_2.id)
    same_faculty = make_draft(seed, batch_id=seed.batch_b.id, subject_id=seed.algorithms_b.id)
    report = ConflictDetector(db_session).detect([same_batch, same_faculty])

    assert conflict_types(report.items[0]) == ["BATCH_DOUBLE_BOOKING"]
    assert report.items[0].conflicts[0].conflicting_entries[0].id == existing.id
    assert conflict_types(report.items[1]) == ["FACULTY_CONFLICT"]
    assert report.has_errors
    assert report.summary.entries_with_errors == 2


def test_excluded_entry_does_not_conflict_with_itself(db_session, seed):
    existing = store_entry(db_session, make_draft(seed))

    outcome = ConflictDetector(db_session).check_one(make_draft(seed), exclude_entry_ids=[existing.id])

    assert outcome.conflicts == []
    assert not outcome.has_errors


def test_weekly_and_dated_entries_use_separate_keys(db_session, seed):
    store_entry(db_session, make_draft(seed, date=None))

    outcome = ConflictDetector(db_session).check_one(make_draft(seed))

    assert outcome.conflicts == []


def test_internal_conflicts_are_reported_against_earlier_positions(db_session, seed):
    first = make_draft(seed)
    duplicate_batch = make_draft(seed, subject_id=seed.networks_a.id, faculty_id=seed.faculty_2.id)
    duplicate_faculty = make_draft(seed, batch_id=seed.batch_b.id, subject_id=seed.algorithms_b.id)

    report = ConflictDetector(db_session).detect([first, duplicate_batch, duplicate_faculty])

    assert report.items[0].conflicts == []
    assert conflict_types(report.items[1]) == ["INTERNAL_BATCH_CONFLICT"]
    assert report.items[1].conflicts[0].conflicting_indexes == [0]
    assert conflict_types(report.items[2]) == ["INTERNAL_FACULTY_CONFLICT"]
    assert report.items[2].conflicts[0].conflicting_indexes == [0]
    assert report.items[1].has_internal_conflicts()


def test_module_slot_overlapping_stored_entry(db_session, seed):
    existing = store_entry(db_session, make_draft(seed))

    outcome = ConflictDetector(db_session).check_one(
        make_draft(
            seed,
            time_slot_id=seed.module_slot.id,
            subject_id=seed.networks_a.id,
            faculty_id=seed.faculty_2.id,
        )
    )

    assert conflict_types(outcome) == ["MODULE_OVERLAP"]
    assert outcome.conflicts[0].conflicting_entries[0].id == existing.id
    assert outcome.displaceable_entry_ids() == {existing.id}


def test_module_slot_overlapping_earlier_proposal(db_session, seed):
    report = ConflictDetector(db_session).detect(
        [
            make_draft(seed),
            make_draft(
                seed,
                time_slot_id=seed.module_slot.id,
                subject_id=seed.networks_a.id,
                faculty_id=seed.faculty_2.id,
            ),
        ]
    )

    overlap = report.items[1].conflicts[0]
    assert overlap.type == "MODULE_OVERLAP"
    assert overlap.conflicting_indexes == [0]
    assert report.items[1].has_internal_conflicts()


def test_holiday_is_a_warning_only(db_session, seed):
    db_session.add(Holiday(name="Founders Day", date=MONDAY, type=HolidayType.UNIVERSITY))
    db_session.commit()

    outcome = ConflictDetector(db_session).check_one(make_draft(seed))

    assert conflict_types(outcome) == ["HOLIDAY_SCHEDULING"]
    assert outcome.conflicts[0].severity == "warning"
    assert outcome.has_warnings
    assert not outcome.has_errors


def test_exam_period_blocks_regular_but_not_makeup(db_session, seed):
    db_session.add(
        ExamPeriod(
            name="Mid-semester exams",
            start_date=date(2030, 1, 6),
            end_date=date(2030, 1, 12),
            blocks_regular_classes=True,
            department_id=seed.department.id,
        )
    )
    db_session.commit()
    detector = ConflictDetector(db_session)

    regular = detector.check_one(make_draft(seed))
    makeup = detector.check_one(make_draft(seed, entry_type=EntryType.MAKEUP))

    assert conflict_types(regular) == ["EXAM_PERIOD_CONFLICT"]
    assert regular.has_errors
    assert makeup.conflicts == []
    assert not makeup.has_errors


def test_calendar_facts_respect_department_scope(db_session, seed):
    db_session.add_all(
        [
            Holiday(
                name="Workshop Day",
                date=MONDAY,
                type=HolidayType.DEPARTMENT,
                department_id=seed.other_department.id,
            ),
            ExamPeriod(
                name="Mechanical exams",
                start_date=MONDAY,
                end_date=MONDAY,
                blocks_regular_classes=True,
                department_id=seed.other_department.id,
            ),
        ]
    )
    db_session.commit()

    outcome = ConflictDetector(db_session).check_one(make_draft(seed))

    assert outcome.conflicts == []


def test_recurring_holiday_matches_any_year(db_session, seed):
    db_session.add(Holiday(name="New Year", date=date(2020, 1, 7), type=HolidayType.NATIONAL, is_recurring=True))
    db_session.commit()

    outcome = ConflictDetector(db_session).check_one(make_draft(seed))

    assert conflict_types(outcome) == ["HOLIDAY_SCHEDULING"]


def test_checkpoint_runs_every_chunk(db_session, seed):
    calls = []
    drafts = [
        make_draft(seed, time_slot_id=slot.id)
        for slot in (seed.slot_1, seed.slot_2, seed.slot_3)
    ]

    ConflictDetector(db_session).detect(
        drafts,
        checkpoint=lambda done, total: calls.append((done, total)),
        checkpoint_every=2,
    )

    assert calls == [(2, 3)]


def test_suggest_alternatives_skips_busy_and_overlapping_slots(db_session, seed):
    store_entry(db_session, make_draft(seed))
    store_entry(
        db_session,
        make_draft(
            seed,
            batch_id=seed.batch_b.id,
            time_slot_id=seed.slot_2.id,
            subject_id=seed.algorithms_b.id,
            faculty_id=seed.faculty_2.id,
        ),
    )

    draft = make_draft(seed, subject_id=seed.networks_a.id, faculty_id=seed.faculty_2.id)
    alternatives = ConflictDetector(db_session).suggest_alternatives(draft)

    assert [slot.id for slot in alternatives] == [seed.slot_3.id]
