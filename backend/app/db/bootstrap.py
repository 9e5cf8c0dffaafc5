from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from app.db.base import Base
from app.db.session import engine
import app.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "time_slots": {"id", "start_time", "end_time", "duration", "is_active"},
    "timetable_entries": {"id", "batch_id", "faculty_id", "time_slot_id", "day_of_week", "date", "date_key", "is_active"},
    "holidays": {"id", "date", "department_id", "is_recurring"},
    "exam_periods": {"id", "start_date", "end_date", "blocks_regular_classes", "department_id"},
    "timetable_templates": {"id", "recurrence_pattern", "end_condition", "total_hours"},
    "bulk_operations": {"id", "status", "progress", "cancel_requested"},
    "undo_operations": {"id", "user_id", "entity_type", "expires_at"},
}

REQUIRED_INDEXES: dict[str, set[str]] = {
    "timetable_entries": {"uq_timetable_entries_batch_slot", "uq_timetable_entries_faculty_slot"},
}


def missing_schema_items(connection: Connection) -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(connection)
    table_names = set(inspector.get_table_names())
    missing_tables = sorted(name for name in REQUIRED_COLUMNS if name not in table_names)
    missing: dict[str, list[str]] = {}
    for table_name, required in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        existing |= {item["name"] for item in inspector.get_indexes(table_name)}
        expected = required | REQUIRED_INDEXES.get(table_name, set())
        absent = sorted(expected - existing)
        if absent:
            missing[table_name] = absent
    return missing_tables, missing


def _assert_required_schema() -> None:
    with engine.connect() as connection:
        missing_tables, missing = missing_schema_items(connection)
    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing:
        flat = [f"{table}.{name}" for table, names in missing.items() for name in names]
        raise RuntimeError(f"Missing required columns or indexes: {', '.join(flat)}")


def ensure_runtime_schema() -> None:
    try:
        # The uniqueness indexes are part of the schema contract; create_all adds them with the tables.
        Base.metadata.create_all(bind=engine)
        _assert_required_schema()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc
