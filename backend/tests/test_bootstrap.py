import pytest
from sqlalchemy import create_engine, text

from app.db import bootstrap


def _raise_error(message: str):
    raise RuntimeError(message)


def test_runtime_schema_bootstrap_raises_on_validation_failure(monkeypatch):
    monkeypatch.setattr(bootstrap.Base.metadata, "create_all", lambda bind: None)
    monkeypatch.setattr(
        bootstrap,
        "_assert_required_schema",
        lambda: _raise_error("missing required schema"),
    )

    with pytest.raises(RuntimeError, match="Runtime schema bootstrap failed"):
        bootstrap.ensure_runtime_schema()


def test_missing_schema_items_reports_tables_columns_and_indexes():
    engine = create_engine("sqlite+pysqlite://")
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE time_slots (id VARCHAR(36) PRIMARY KEY, start_time VARCHAR(5))"))
        connection.execute(
            text(
                "CREATE TABLE timetable_entries (id VARCHAR(36) PRIMARY KEY, batch_id VARCHAR(36), "
                "faculty_id VARCHAR(36), time_slot_id VARCHAR(36), day_of_week VARCHAR(10), "
                "date DATE, date_key VARCHAR(10), is_active BOOLEAN)"
            )
        )
        missing_tables, missing = bootstrap.missing_schema_items(connection)
    engine.dispose()

    assert "holidays" in missing_tables
    assert "time_slots" not in missing_tables
    assert missing["time_slots"] == ["duration", "end_time", "is_active"]
    assert missing["timetable_entries"] == ["uq_timetable_entries_batch_slot", "uq_timetable_entries_faculty_slot"]
