"""Initial shift ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


shift_kind = sa.Enum("DAY", "NIGHT", "CUSTOM", "ALL_TIME_OVERTIME", name="shift_kind")
attendance_shift_source = sa.Enum(
    "ASSIGNED",
    "INFERRED",
    "UNASSIGNED",
    "AMBIGUOUS",
    name="attendance_shift_source",
)
ledger_calculation_mode = sa.Enum("CHECK_IN", "FULL", "BASIC", "DAY_OFF", name="ledger_calculation_mode")
audit_actor_type = sa.Enum("ADMIN", "EMPLOYEE", "SYSTEM", name="audit_actor_type")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_employees_position"), "employees", ["position"], unique=False)

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("kind", shift_kind, nullable=False),
        sa.Column("start_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("end_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("position", sa.String(length=100), nullable=True),
        sa.Column("all_time_overtime", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("replaced_by_shift_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["replaced_by_shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_shifts_position"), "shifts", ["position"], unique=False)

    op.create_table(
        "shift_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("is_day_off", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("assigned_by", sa.String(length=255), nullable=False),
        sa.Column("note", sa.String(length=1000), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_shift_assignments_employee_work_date"),
    )
    op.create_index(op.f("ix_shift_assignments_employee_id"), "shift_assignments", ["employee_id"], unique=False)
    op.create_index(op.f("ix_shift_assignments_work_date"), "shift_assignments", ["work_date"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("shift_source", attendance_shift_source, nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_break_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_on_break", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("current_break_reason", sa.String(length=500), nullable=True),
        sa.Column("auto_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_work_date"),
    )
    op.create_index(op.f("ix_attendance_records_employee_id"), "attendance_records", ["employee_id"], unique=False)
    op.create_index(op.f("ix_attendance_records_work_date"), "attendance_records", ["work_date"], unique=False)
    op.create_index(
        "uq_attendance_records_open_session",
        "attendance_records",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("check_out_time IS NULL"),
        sqlite_where=sa.text("check_out_time IS NULL"),
    )

    op.create_table(
        "break_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("auto_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_break_sessions_attendance_record_id"),
        "break_sessions",
        ["attendance_record_id"],
        unique=False,
    )
    op.create_index(
        "uq_break_sessions_open_per_record",
        "break_sessions",
        ["attendance_record_id"],
        unique=True,
        postgresql_where=sa.text("end_time IS NULL"),
        sqlite_where=sa.text("end_time IS NULL"),
    )

    op.create_table(
        "monthly_shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("attendance_record_id", sa.Integer(), nullable=True),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("regular_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("worked_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_hours", sa.Float(), nullable=True),
        sa.Column("raw_lateness_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("delay_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_checkout_penalty_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_break_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_day_off", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("calculation_mode", ledger_calculation_mode, nullable=False),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_monthly_shifts_employee_work_date"),
    )
    op.create_index(op.f("ix_monthly_shifts_employee_id"), "monthly_shifts", ["employee_id"], unique=False)
    op.create_index(op.f("ix_monthly_shifts_work_date"), "monthly_shifts", ["work_date"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_ts_utc"), "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_audit_logs_ts_utc"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index(op.f("ix_monthly_shifts_work_date"), table_name="monthly_shifts")
    op.drop_index(op.f("ix_monthly_shifts_employee_id"), table_name="monthly_shifts")
    op.drop_table("monthly_shifts")
    op.drop_index("uq_break_sessions_open_per_record", table_name="break_sessions")
    op.drop_index(op.f("ix_break_sessions_attendance_record_id"), table_name="break_sessions")
    op.drop_table("break_sessions")
    op.drop_index("uq_attendance_records_open_session", table_name="attendance_records")
    op.drop_index(op.f("ix_attendance_records_work_date"), table_name="attendance_records")
    op.drop_index(op.f("ix_attendance_records_employee_id"), table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index(op.f("ix_shift_assignments_work_date"), table_name="shift_assignments")
    op.drop_index(op.f("ix_shift_assignments_employee_id"), table_name="shift_assignments")
    op.drop_table("shift_assignments")
    op.drop_index(op.f("ix_shifts_position"), table_name="shifts")
    op.drop_table("shifts")
    op.drop_index(op.f("ix_employees_position"), table_name="employees")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in (audit_actor_type, ledger_calculation_mode, attendance_shift_source, shift_kind):
        enum_type.drop(bind, checkfirst=True)
