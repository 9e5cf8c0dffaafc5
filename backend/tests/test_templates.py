from sqlalchemy import select

from app.models.timetable_entry import TimetableEntry


def template_payload(seed, **overrides):
    payload = {
        "name": "Algorithms weekly",
        "batch_id": seed.batch_a.id,
        "subject_id": seed.algorithms_a.id,
        "faculty_id": seed.faculty_1.id,
        "time_slot_id": seed.slot_1.id,
        "day_of_week": "MONDAY",
        "recurrence_pattern": "WEEKLY",
        "start_date": "2030-01-07",
        "end_date": "2030-01-28",
        "end_condition": "SPECIFIC_DATE",
    }
    payload.update(overrides)
    return payload


def test_create_template_without_generation(client, seed, admin_headers, db_session):
    response = client.post("/api/timetable/templates", json=template_payload(seed), headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["template"]["is_active"] is True
    assert body["template"]["created_by_id"] == seed.admin.id
    assert body["created_entries"] == []
    db_session.expire_all()
    assert list(db_session.execute(select(TimetableEntry)).scalars()) == []


def test_generation_drops_colliding_dates(client, seed, admin_headers):
    occupied = client.post(
        "/api/timetable/entries",
        json={
            "batch_id": seed.batch_a.id,
            "time_slot_id": seed.slot_1.id,
            "day_of_week": "MONDAY",
            "date": "2030-01-14",
            "subject_id": seed.networks_a.id,
            "faculty_id": seed.faculty_2.id,
        },
        headers=admin_headers,
    )
    assert occupied.status_code == 201

    response = client.post(
        "/api/timetable/templates",
        json=template_payload(seed, generate_entries=True),
        headers=admin_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert [entry["date"] for entry in body["created_entries"]] == ["2030-01-07", "2030-01-21", "2030-01-28"]
    assert {entry["template_id"] for entry in body["created_entries"]} == {body["template"]["id"]}
    assert body["dropped"] == 1
    assert body["warnings"] == ["1 generated entries collided with the timetable and were not created"]


def test_template_end_condition_validation(client, seed, admin_headers):
    no_hours = client.post(
        "/api/timetable/templates",
        json=template_payload(seed, end_condition="HOURS_COMPLETE", end_date=None),
        headers=admin_headers,
    )
    assert no_hours.status_code == 422

    no_end = client.post(
        "/api/timetable/templates",
        json=template_payload(seed, end_date=None),
        headers=admin_headers,
    )
    assert no_end.status_code == 422


def test_template_subject_must_belong_to_batch(client, seed, admin_headers):
    response = client.post(
        "/api/timetable/templates",
        json=template_payload(seed, subject_id=seed.algorithms_b.id),
        headers=admin_headers,
    )

    assert response.status_code == 404
    assert response.json()["details"]["missing"]["subjects_not_in_batch"]


def test_preview_reports_drafts_and_conflicts(client, seed, admin_headers, db_session):
    template = client.post("/api/timetable/templates", json=template_payload(seed), headers=admin_headers).json()
    client.post(
        "/api/calendar/holidays",
        json={"name": "Founders Day", "date": "2030-01-21"},
        headers=admin_headers,
    )

    response = client.post(f"/api/timetable/templates/{template['template']['id']}/preview", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert [draft["date"] for draft in body["recurrence"]["drafts"]] == ["2030-01-07", "2030-01-14", "2030-01-28"]
    assert body["recurrence"]["skipped_dates"] == ["2030-01-21"]
    assert body["conflicts"]["has_errors"] is False
    db_session.expire_all()
    assert list(db_session.execute(select(TimetableEntry)).scalars()) == []


def test_deactivate_template(client, seed, admin_headers, student_headers):
    template_id = client.post(
        "/api/timetable/templates", json=template_payload(seed), headers=admin_headers
    ).json()["template"]["id"]

    assert client.delete(f"/api/timetable/templates/{template_id}", headers=student_headers).status_code == 403

    deactivated = client.delete(f"/api/timetable/templates/{template_id}", headers=admin_headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    assert client.delete(f"/api/timetable/templates/{template_id}", headers=admin_headers).status_code == 400
    assert client.get("/api/timetable/templates", headers=admin_headers).json() == []
    listing = client.get("/api/timetable/templates", params={"include_inactive": True}, headers=admin_headers)
    assert [item["id"] for item in listing.json()] == [template_id]
    assert client.get(f"/api/timetable/templates/{template_id}", headers=student_headers).status_code == 200
