"""create timetable engine schema

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role_enum = sa.Enum("admin", "scheduler", "faculty", "student", name="user_role")
day_of_week_enum = sa.Enum(
    "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY", name="day_of_week"
)
entry_type_enum = sa.Enum("REGULAR", "MAKEUP", "EXTRA", "EXAM", name="entry_type")
holiday_type_enum = sa.Enum("NATIONAL", "UNIVERSITY", "DEPARTMENT", "LOCAL", name="holiday_type")
recurrence_pattern_enum = sa.Enum("DAILY", "WEEKLY", "MONTHLY", name="recurrence_pattern")
end_condition_enum = sa.Enum("SEMESTER_END", "HOURS_COMPLETE", "SPECIFIC_DATE", name="end_condition")
bulk_operation_kind_enum = sa.Enum(
    "BULK_CREATE", "CLONE", "FACULTY_REPLACE", "RESCHEDULE", "TEMPLATE_APPLY", name="bulk_operation_kind"
)
operation_status_enum = sa.Enum("PENDING", "RUNNING", "COMPLETED", "FAILED", "CANCELLED", name="operation_status")
log_level_enum = sa.Enum("INFO", "WARN", "ERROR", name="log_level")
undo_entity_type_enum = sa.Enum(
    "TIMETABLE_ENTRY", "STUDENT", "FACULTY", "SUBJECT", "BATCH", "HOLIDAY", "TIMESLOT", name="undo_entity_type"
)
undo_operation_type_enum = sa.Enum("DELETE", "BATCH_DELETE", "SOFT_DELETE", name="undo_operation_type")

ALL_ENUMS = (
    user_role_enum,
    day_of_week_enum,
    entry_type_enum,
    holiday_type_enum,
    recurrence_pattern_enum,
    end_condition_enum,
    bulk_operation_kind_enum,
    operation_status_enum,
    log_level_enum,
    undo_entity_type_enum,
    undo_operation_type_enum,
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("short_name", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "programs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("short_name", sa.String(length=20), nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_table(
        "batches",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("program_id", sa.String(length=36), sa.ForeignKey("programs.id"), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_year", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("program_id", "semester", "start_year", "name", name="uq_batches_program_term"),
    )
    op.create_table(
        "faculty",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("max_hours", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_faculty_email", "faculty", ["email"], unique=True)
    op.create_index("ix_faculty_user_id", "faculty", ["user_id"])

    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("total_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("batches.id"), nullable=False),
        sa.Column("primary_faculty_id", sa.String(length=36), sa.ForeignKey("faculty.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("batch_id", "code", name="uq_subjects_batch_code"),
    )
    op.create_index("ix_subjects_batch_id", "subjects", ["batch_id"])

    op.create_table(
        "time_slots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "academic_calendars",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("semester_name", sa.String(length=100), nullable=False),
        sa.Column("academic_year", sa.String(length=20), nullable=False),
        sa.Column("semester_start", sa.Date(), nullable=False),
        sa.Column("semester_end", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_academic_calendars_department_id", "academic_calendars", ["department_id"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", holiday_type_enum, nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_holidays_date", "holidays", ["date"])

    op.create_table(
        "exam_periods",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("exam_type", sa.String(length=50), nullable=False, server_default="INTERNAL"),
        sa.Column("blocks_regular_classes", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "timetable_templates",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("batches.id"), nullable=False),
        sa.Column("subject_id", sa.String(length=36), sa.ForeignKey("subjects.id"), nullable=False),
        sa.Column("faculty_id", sa.String(length=36), sa.ForeignKey("faculty.id"), nullable=False),
        sa.Column("time_slot_id", sa.String(length=36), sa.ForeignKey("time_slots.id"), nullable=False),
        sa.Column("day_of_week", day_of_week_enum, nullable=False),
        sa.Column("recurrence_pattern", recurrence_pattern_enum, nullable=False, server_default="WEEKLY"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("end_condition", end_condition_enum, nullable=False, server_default="SEMESTER_END"),
        sa.Column("total_hours", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_timetable_templates_batch_id", "timetable_templates", ["batch_id"])

    op.create_table(
        "timetable_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("batches.id"), nullable=False),
        sa.Column("subject_id", sa.String(length=36), sa.ForeignKey("subjects.id"), nullable=True),
        sa.Column("faculty_id", sa.String(length=36), sa.ForeignKey("faculty.id"), nullable=True),
        sa.Column("custom_event_title", sa.String(length=200), nullable=True),
        sa.Column("custom_event_color", sa.String(length=20), nullable=True),
        sa.Column("time_slot_id", sa.String(length=36), sa.ForeignKey("time_slots.id"), nullable=False),
        sa.Column("day_of_week", day_of_week_enum, nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("date_key", sa.String(length=10), nullable=False, server_default="weekly"),
        sa.Column("entry_type", entry_type_enum, nullable=False, server_default="REGULAR"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("requires_attendance", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("template_id", sa.String(length=36), sa.ForeignKey("timetable_templates.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "(subject_id IS NOT NULL AND faculty_id IS NOT NULL AND custom_event_title IS NULL)"
            " OR (subject_id IS NULL AND faculty_id IS NULL AND custom_event_title IS NOT NULL)",
            name="ck_timetable_entries_kind",
        ),
    )
    op.create_index("ix_timetable_entries_batch_id", "timetable_entries", ["batch_id"])
    op.create_index("ix_timetable_entries_faculty_id", "timetable_entries", ["faculty_id"])
    op.create_index("ix_timetable_entries_date", "timetable_entries", ["date"])
    op.create_index(
        "uq_timetable_entries_batch_slot",
        "timetable_entries",
        ["batch_id", "time_slot_id", "day_of_week", "date_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index(
        "uq_timetable_entries_faculty_slot",
        "timetable_entries",
        ["faculty_id", "time_slot_id", "day_of_week", "date_key"],
        unique=True,
        postgresql_where=sa.text("is_active AND faculty_id IS NOT NULL"),
        sqlite_where=sa.text("is_active = 1 AND faculty_id IS NOT NULL"),
    )

    op.create_table(
        "bulk_operations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("kind", bulk_operation_kind_enum, nullable=False),
        sa.Column("status", operation_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_by_id", sa.String(length=36), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("results", sa.JSON(), nullable=True),
        sa.Column("error_log", sa.Text(), nullable=True),
        sa.Column("affected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bulk_operations_requested_by_id", "bulk_operations", ["requested_by_id"])

    op.create_table(
        "operation_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("operation_id", sa.String(length=36), sa.ForeignKey("bulk_operations.id"), nullable=False),
        sa.Column("level", log_level_enum, nullable=False, server_default="INFO"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_operation_logs_operation_id", "operation_logs", ["operation_id"])

    op.create_table(
        "undo_operations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", undo_entity_type_enum, nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("operation", undo_operation_type_enum, nullable=False, server_default="DELETE"),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_undo_operations_user_id", "undo_operations", ["user_id"])
    op.create_index("ix_undo_operations_expires_at", "undo_operations", ["expires_at"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("bulk_operation_id", sa.String(length=36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_bulk_operation_id", "activity_logs", ["bulk_operation_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("undo_operations")
    op.drop_table("operation_logs")
    op.drop_table("bulk_operations")
    op.drop_index("uq_timetable_entries_faculty_slot", table_name="timetable_entries")
    op.drop_index("uq_timetable_entries_batch_slot", table_name="timetable_entries")
    op.drop_table("timetable_entries")
    op.drop_table("timetable_templates")
    op.drop_table("exam_periods")
    op.drop_table("holidays")
    op.drop_table("academic_calendars")
    op.drop_table("time_slots")
    op.drop_table("subjects")
    op.drop_table("faculty")
    op.drop_table("batches")
    op.drop_table("programs")
    op.drop_table("departments")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in ALL_ENUMS:
        enum.drop(bind, checkfirst=True)
