from app.models.calendar import Holiday


def test_create_and_list_holidays(client, seed, admin_headers, student_headers):
    created = client.post(
        "/api/calendar/holidays",
        json={"name": "Republic Day", "date": "2030-01-26", "type": "NATIONAL"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["is_recurring"] is False

    client.post(
        "/api/calendar/holidays",
        json={"name": "Summer Break Start", "date": "2030-05-01"},
        headers=admin_headers,
    )

    listing = client.get(
        "/api/calendar/holidays",
        params={"date_from": "2030-01-01", "date_to": "2030-01-31"},
        headers=student_headers,
    )
    assert listing.status_code == 200
    assert [holiday["name"] for holiday in listing.json()] == ["Republic Day"]


def test_department_holiday_needs_department(client, seed, admin_headers):
    missing = client.post(
        "/api/calendar/holidays",
        json={"name": "Lab Maintenance", "date": "2030-02-04", "type": "DEPARTMENT"},
        headers=admin_headers,
    )
    assert missing.status_code == 400

    unknown = client.post(
        "/api/calendar/holidays",
        json={
            "name": "Lab Maintenance",
            "date": "2030-02-04",
            "type": "DEPARTMENT",
            "department_id": "no-such-department",
        },
        headers=admin_headers,
    )
    assert unknown.status_code == 404
    assert unknown.json()["details"]["missing"] == {"departments": ["no-such-department"]}


def test_students_cannot_edit_calendar(client, seed, student_headers):
    response = client.post(
        "/api/calendar/holidays",
        json={"name": "Republic Day", "date": "2030-01-26"},
        headers=student_headers,
    )
    assert response.status_code == 403


def test_exam_period_validation_and_listing(client, seed, admin_headers):
    backwards = client.post(
        "/api/calendar/exam-periods",
        json={"name": "Finals", "start_date": "2030-05-10", "end_date": "2030-05-01"},
        headers=admin_headers,
    )
    assert backwards.status_code == 422

    created = client.post(
        "/api/calendar/exam-periods",
        json={
            "name": "Finals",
            "start_date": "2030-05-01",
            "end_date": "2030-05-10",
            "department_id": seed.department.id,
        },
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["blocks_regular_classes"] is True
    assert created.json()["exam_type"] == "INTERNAL"

    listing = client.get(
        "/api/calendar/exam-periods",
        params={"department_id": seed.other_department.id},
        headers=admin_headers,
    )
    assert listing.json() == []


def test_calendar_facts_for_batch(client, seed, admin_headers):
    client.post(
        "/api/calendar/holidays",
        json={"name": "Founders Day", "date": "2030-03-04", "type": "UNIVERSITY"},
        headers=admin_headers,
    )
    client.post(
        "/api/calendar/exam-periods",
        json={"name": "Midterms", "start_date": "2030-03-10", "end_date": "2030-03-15"},
        headers=admin_headers,
    )

    holiday = client.get(
        f"/api/calendar/batches/{seed.batch_a.id}/facts",
        params={"date": "2030-03-04"},
        headers=admin_headers,
    ).json()
    assert holiday["is_blackout"] is True
    assert [item["name"] for item in holiday["holidays"]] == ["Founders Day"]
    assert holiday["blocking_exam_period"] is None

    exams = client.get(
        f"/api/calendar/batches/{seed.batch_a.id}/facts",
        params={"date": "2030-03-12"},
        headers=admin_headers,
    ).json()
    assert exams["blocking_exam_period"]["name"] == "Midterms"

    clear = client.get(
        f"/api/calendar/batches/{seed.batch_a.id}/facts",
        params={"date": "2030-03-05"},
        headers=admin_headers,
    ).json()
    assert clear["is_blackout"] is False

    missing = client.get(
        "/api/calendar/batches/no-such-batch/facts",
        params={"date": "2030-03-05"},
        headers=admin_headers,
    )
    assert missing.status_code == 404


def test_deleted_holiday_can_be_undone(client, seed, admin_headers, db_session):
    created = client.post(
        "/api/calendar/holidays",
        json={"name": "Founders Day", "date": "2030-03-04", "description": "Campus closed"},
        headers=admin_headers,
    ).json()

    deleted = client.delete(f"/api/calendar/holidays/{created['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    db_session.expire_all()
    assert db_session.get(Holiday, created["id"]) is None

    restored = client.post(f"/api/undo/{deleted.json()['undo_id']}", headers=admin_headers)
    assert restored.status_code == 200
    assert restored.json()["message"] == "Holiday restored"

    db_session.expire_all()
    holiday = db_session.get(Holiday, created["id"])
    assert holiday.name == "Founders Day"
    assert holiday.description == "Campus closed"
