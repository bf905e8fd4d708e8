"""gate_pass_schema

Roster, gate passes, leave windows with exclusions, audit trail and
scheduled-job history. At most one OPEN/OUT pass per subject is enforced
by a partial unique index.

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "7c1e2a9d4b10"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_PASS = sa.text("status IN ('OPEN', 'OUT')")


def upgrade():
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("admission_number", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("class_name", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "leave_windows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("created_by_name", sa.String(150), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("start_date <= end_date", name="ck_leave_windows_date_range"),
    )
    op.create_index("idx_leave_windows_status", "leave_windows", ["status"])

    op.create_table(
        "leave_exclusions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("leave_window_id", sa.Integer(),
                  sa.ForeignKey("leave_windows.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subject_id", sa.Integer(),
                  sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("excluded_by", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("leave_window_id", "subject_id",
                            name="uq_leave_exclusions_window_subject"),
    )
    op.create_index("ix_leave_exclusions_leave_window_id", "leave_exclusions",
                    ["leave_window_id"])

    op.create_table(
        "gate_passes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subject_id", sa.Integer(),
                  sa.ForeignKey("students.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sponsor_id", sa.Integer(), nullable=False),
        sa.Column("sponsor_name", sa.String(150), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("leave_window_id", sa.Integer(),
                  sa.ForeignKey("leave_windows.id", ondelete="SET NULL"), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expected_return_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_gate_passes_one_active_per_subject", "gate_passes", ["subject_id"],
        unique=True, sqlite_where=_ACTIVE_PASS, postgresql_where=_ACTIVE_PASS,
    )
    op.create_index("idx_gate_passes_subject_issued", "gate_passes",
                    ["subject_id", "issued_at"])
    op.create_index("idx_gate_passes_status", "gate_passes", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subject_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_subject", "audit_logs", ["subject_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor_id"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("interval_seconds", sa.Integer(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_status", sa.String(20), nullable=True),
        sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
        sa.Column("last_run_result", sa.JSON(), nullable=True),
        sa.Column("run_count", sa.Integer(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("idx_audit_ts", table_name="audit_logs")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_index("idx_audit_actor", table_name="audit_logs")
    op.drop_index("idx_audit_subject", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_gate_passes_status", table_name="gate_passes")
    op.drop_index("idx_gate_passes_subject_issued", table_name="gate_passes")
    op.drop_index("uq_gate_passes_one_active_per_subject", table_name="gate_passes")
    op.drop_table("gate_passes")
    op.drop_index("ix_leave_exclusions_leave_window_id", table_name="leave_exclusions")
    op.drop_table("leave_exclusions")
    op.drop_index("idx_leave_windows_status", table_name="leave_windows")
    op.drop_table("leave_windows")
    op.drop_table("students")
