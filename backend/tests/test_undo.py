from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.models.timetable_entry import TimetableEntry
from app.models.undo_operation import UndoEntityType, UndoOperation


def entry_payload(seed, **overrides):
    payload = {
        "batch_id": seed.batch_a.id,
        "time_slot_id": seed.slot_1.id,
        "day_of_week": "MONDAY",
        "date": "2030-01-07",
        "subject_id": seed.algorithms_a.id,
        "faculty_id": seed.faculty_1.id,
    }
    payload.update(overrides)
    return payload


def create_and_delete(client, headers, payload):
    entry = client.post("/api/timetable/entries", json=payload, headers=headers).json()["entry"]
    deleted = client.delete(f"/api/timetable/entries/{entry['id']}", headers=headers)
    assert deleted.status_code == 200
    return entry, deleted.json()["undo_id"]


def test_undo_restores_entry_exactly_once(client, seed, admin_headers, db_session):
    entry, undo_id = create_and_delete(client, admin_headers, entry_payload(seed))

    restored = client.post(f"/api/undo/{undo_id}", headers=admin_headers)

    assert restored.status_code == 200
    body = restored.json()
    assert body["entity_type"] == "TIMETABLE_ENTRY"
    assert body["entity_id"] == entry["id"]
    db_session.expire_all()
    assert db_session.get(TimetableEntry, entry["id"]).is_active is True
    assert db_session.get(UndoOperation, undo_id) is None

    assert client.post(f"/api/undo/{undo_id}", headers=admin_headers).status_code == 404


def test_expired_undo_is_purged(client, seed, admin_headers, db_session):
    entry, undo_id = create_and_delete(client, admin_headers, entry_payload(seed))
    record = db_session.get(UndoOperation, undo_id)
    record.expires_at = datetime.now(timezone.utc) - timedelta(seconds=5)
    db_session.commit()

    response = client.post(f"/api/undo/{undo_id}", headers=admin_headers)

    assert response.status_code == 410
    db_session.expire_all()
    assert db_session.get(UndoOperation, undo_id) is None
    assert db_session.get(TimetableEntry, entry["id"]).is_active is False


def test_restore_is_refused_when_position_was_taken(client, seed, admin_headers, db_session):
    entry, undo_id = create_and_delete(client, admin_headers, entry_payload(seed))
    replacement = client.post(
        "/api/timetable/entries",
        json=entry_payload(seed, subject_id=seed.networks_a.id, faculty_id=seed.faculty_2.id),
        headers=admin_headers,
    )
    assert replacement.status_code == 201

    response = client.post(f"/api/undo/{undo_id}", headers=admin_headers)

    assert response.status_code == 409
    db_session.expire_all()
    assert db_session.get(UndoOperation, undo_id) is not None
    assert db_session.get(TimetableEntry, entry["id"]).is_active is False


def test_unsupported_entity_type_is_not_implemented(client, seed, admin_headers):
    recorded = client.post(
        "/api/undo/",
        json={
            "entity_type": "FACULTY",
            "entity_id": seed.faculty_1.id,
            "data": {"name": seed.faculty_1.name},
            "timeout_seconds": 60,
        },
        headers=admin_headers,
    )
    assert recorded.status_code == 201

    response = client.post(f"/api/undo/{recorded.json()['undo_id']}", headers=admin_headers)

    assert response.status_code == 501
    assert response.json()["details"]["entity_type"] == "FACULTY"


def test_record_rejects_timeout_above_ceiling(client, seed, admin_headers):
    response = client.post(
        "/api/undo/",
        json={"entity_type": "HOLIDAY", "entity_id": "h-1", "data": {}, "timeout_seconds": 301},
        headers=admin_headers,
    )
    assert response.status_code == 422


def test_list_shows_only_live_records_of_requester(client, seed, admin_headers, db_session):
    _, live_id = create_and_delete(client, admin_headers, entry_payload(seed))
    db_session.add_all(
        [
            UndoOperation(
                user_id=seed.admin.id,
                entity_type=UndoEntityType.HOLIDAY,
                entity_id="stale-holiday",
                data={},
                expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
            ),
            UndoOperation(
                user_id=seed.student.id,
                entity_type=UndoEntityType.TIMETABLE_ENTRY,
                entity_id="someone-else",
                data={},
                expires_at=datetime.now(timezone.utc) + timedelta(minutes=1),
            ),
        ]
    )
    db_session.commit()

    listing = client.get("/api/undo/", headers=admin_headers)
    assert [item["id"] for item in listing.json()] == [live_id]
    assert listing.json()[0]["metadata"]["batch_id"] == seed.batch_a.id

    filtered = client.get("/api/undo/", params={"entity_type": "HOLIDAY"}, headers=admin_headers)
    assert filtered.json() == []


def test_sweep_deletes_only_expired_records(client, seed, admin_headers, db_session):
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            UndoOperation(
                user_id=seed.admin.id,
                entity_type=UndoEntityType.TIMETABLE_ENTRY,
                entity_id=f"expired-{index}",
                data={},
                expires_at=now - timedelta(minutes=index + 1),
            )
            for index in range(2)
        ]
        + [
            UndoOperation(
                user_id=seed.admin.id,
                entity_type=UndoEntityType.TIMETABLE_ENTRY,
                entity_id="live",
                data={},
                expires_at=now + timedelta(minutes=5),
            )
        ]
    )
    db_session.commit()

    response = client.delete("/api/undo/expired", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"deleted": 2}
    db_session.expire_all()
    remaining = list(db_session.execute(select(UndoOperation.entity_id)).scalars())
    assert remaining == ["live"]


def test_undo_requires_admin(client, seed, admin_headers, student_headers):
    _, undo_id = create_and_delete(client, admin_headers, entry_payload(seed))
    assert client.post(f"/api/undo/{undo_id}", headers=student_headers).status_code == 403


def test_malformed_holiday_snapshot_is_rejected(client, seed, admin_headers, db_session):
    recorded = client.post(
        "/api/undo/",
        json={"entity_type": "HOLIDAY", "entity_id": "lost-holiday", "data": {"date": "2030-01-01"}},
        headers=admin_headers,
    )
    assert recorded.status_code == 201
    undo_id = recorded.json()["undo_id"]

    response = client.post(f"/api/undo/{undo_id}", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Undo snapshot is invalid"
    assert response.json()["details"]["missing"] == "name"
    db_session.expire_all()
    assert db_session.get(UndoOperation, undo_id) is not None


def test_holiday_snapshot_with_bad_date_is_rejected(client, seed, admin_headers):
    recorded = client.post(
        "/api/undo/",
        json={
            "entity_type": "HOLIDAY",
            "entity_id": "lost-holiday",
            "data": {"name": "Founders Day", "date": "first of march", "type": "UNIVERSITY"},
        },
        headers=admin_headers,
    )

    response = client.post(f"/api/undo/{recorded.json()['undo_id']}", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["details"]["undo_id"] == recorded.json()["undo_id"]


def test_malformed_entry_snapshot_is_rejected(client, seed, admin_headers, db_session):
    recorded = client.post(
        "/api/undo/",
        json={"entity_type": "TIMETABLE_ENTRY", "entity_id": "lost-entry", "data": {"batch_id": seed.batch_a.id}},
        headers=admin_headers,
    )
    assert recorded.status_code == 201

    response = client.post(f"/api/undo/{recorded.json()['undo_id']}", headers=admin_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Undo snapshot is invalid"
    assert body["details"]["errors"]
    db_session.expire_all()
    assert db_session.get(TimetableEntry, "lost-entry") is None
