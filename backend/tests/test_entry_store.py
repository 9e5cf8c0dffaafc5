from datetime import date

import pytest
from sqlalchemy import select

from app.core.exceptions import StorageError
from app.models.timetable_entry import TimetableEntry
from app.schemas.timetable import EntryDraft
from app.services.entry_store import EntryStore, commit_or_rollback, flush_or_rollback


def make_draft(seed, **overrides):
    values = {
        "batch_id": seed.batch_a.id,
        "time_slot_id": seed.slot_1.id,
        "day_of_week": "MONDAY",
        "date": "2030-01-07",
        "subject_id": seed.algorithms_a.id,
        "faculty_id": seed.faculty_1.id,
    }
    values.update(overrides)
    return EntryDraft.model_validate(values)


def stored_entries(db_session):
    db_session.expire_all()
    return list(db_session.execute(select(TimetableEntry)).scalars())


def test_batch_slot_index_rejects_second_active_row(db_session, seed):
    store = EntryStore(db_session)
    store.stage_create(make_draft(seed))
    store.stage_create(make_draft(seed, subject_id=seed.networks_a.id, faculty_id=seed.faculty_2.id))

    with pytest.raises(StorageError) as excinfo:
        flush_or_rollback(db_session, action="entry create")

    assert "no changes were saved" in excinfo.value.message
    assert stored_entries(db_session) == []


def test_faculty_slot_index_rejects_second_active_row(db_session, seed):
    store = EntryStore(db_session)
    store.stage_create(make_draft(seed))
    store.stage_create(make_draft(seed, batch_id=seed.batch_b.id, subject_id=seed.algorithms_b.id))

    with pytest.raises(StorageError):
        commit_or_rollback(db_session, action="entry create")

    assert stored_entries(db_session) == []


def test_rows_without_faculty_do_not_collide_on_faculty_index(db_session, seed):
    store = EntryStore(db_session)
    store.stage_create(make_draft(seed, faculty_id=None, subject_id=None, custom_event_title="Orientation"))
    store.stage_create(
        make_draft(
            seed,
            batch_id=seed.batch_b.id,
            faculty_id=None,
            subject_id=None,
            custom_event_title="Orientation",
        )
    )

    commit_or_rollback(db_session, action="entry create")

    assert len(stored_entries(db_session)) == 2


@pytest.mark.parametrize(
    "overrides",
    [
        lambda seed: {"subject_id": seed.networks_a.id, "faculty_id": seed.faculty_2.id},
        lambda seed: {"batch_id": seed.batch_b.id, "subject_id": seed.algorithms_b.id},
    ],
    ids=["batch", "faculty"],
)
def test_inactive_row_frees_its_position(db_session, seed, overrides):
    store = EntryStore(db_session)
    first = store.stage_create(make_draft(seed))
    commit_or_rollback(db_session, action="entry create")

    store.stage_deactivate([first])
    commit_or_rollback(db_session, action="entry delete")
    second = store.stage_create(make_draft(seed, **overrides(seed)))
    commit_or_rollback(db_session, action="entry create")

    entries = {entry.id: entry for entry in stored_entries(db_session)}
    assert entries[first.id].is_active is False
    assert entries[second.id].is_active is True
    assert entries[second.id].date == date(2030, 1, 7)
