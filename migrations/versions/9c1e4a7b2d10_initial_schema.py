"""initial_schema

Users, sessions, projects, phases, predefined phases, work logs,
progress adjustments and audit log.

Revision ID: 9c1e4a7b2d10
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "9c1e4a7b2d10"
down_revision = None
branch_labels = None
depends_on = None


def _created_updated():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="engineer"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_super_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("role IN ('supervisor', 'engineer', 'administrator')", name="ck_users_role"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "user_sessions" not in existing_tables:
        op.create_table(
            "user_sessions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token_hash", sa.String(length=256), nullable=False),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
        op.create_index("ix_user_sessions_token_hash", "user_sessions", ["token_hash"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("client_name", sa.String(length=200), nullable=True),
            sa.Column("location", sa.String(length=200), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("planned_total_weeks", sa.Integer(), nullable=False),
            sa.Column("predicted_hours", sa.Float(), nullable=False, server_default="0"),
            sa.Column("actual_hours", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("archived_by", sa.Integer(), nullable=True),
            *_created_updated(),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("planned_total_weeks > 0", name="ck_projects_planned_weeks_positive"),
            sa.CheckConstraint("predicted_hours >= 0", name="ck_projects_predicted_hours_nonneg"),
            sa.CheckConstraint(
                "status IN ('active', 'on_hold', 'completed', 'cancelled')",
                name="ck_projects_status",
            ),
        )
        op.create_index("ix_projects_archived_at", "projects", ["archived_at"])

    if "project_phases" not in existing_tables:
        op.create_table(
            "project_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("phase_order", sa.Integer(), nullable=False),
            sa.Column("phase_name", sa.String(length=200), nullable=False),
            sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("planned_weeks", sa.Integer(), nullable=False),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_date", sa.Date(), nullable=True),
            sa.Column("approved_date", sa.Date(), nullable=True),
            sa.Column("predicted_hours", sa.Float(), nullable=True),
            sa.Column("actual_hours", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="not_started"),
            sa.Column("delay_reason", sa.String(length=10), nullable=False, server_default="none"),
            sa.Column("warning_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("early_access_granted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("early_access_status", sa.String(length=20), nullable=False,
                      server_default="not_accessible"),
            sa.Column("early_access_granted_by", sa.Integer(), nullable=True),
            sa.Column("early_access_granted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("early_access_note", sa.Text(), nullable=True),
            sa.Column("calculated_progress", sa.Float(), nullable=False, server_default="0"),
            sa.Column("actual_progress", sa.Float(), nullable=True),
            sa.Column("progress_variance", sa.Float(), nullable=True),
            *_created_updated(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["early_access_granted_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "phase_order", name="uq_project_phases_order"),
            sa.CheckConstraint("planned_weeks > 0", name="ck_project_phases_planned_weeks_positive"),
            sa.CheckConstraint("phase_order > 0", name="ck_project_phases_order_positive"),
            sa.CheckConstraint(
                "predicted_hours IS NULL OR predicted_hours >= 0",
                name="ck_project_phases_predicted_hours_nonneg",
            ),
            sa.CheckConstraint(
                "status IN ('not_started', 'ready', 'in_progress', 'submitted', 'approved', 'completed')",
                name="ck_project_phases_status",
            ),
            sa.CheckConstraint(
                "delay_reason IN ('none', 'client', 'company')",
                name="ck_project_phases_delay_reason",
            ),
            sa.CheckConstraint(
                "early_access_status IN ('not_accessible', 'accessible', 'in_progress', 'work_completed')",
                name="ck_project_phases_early_access_status",
            ),
        )
        op.create_index("ix_project_phases_project_id", "project_phases", ["project_id"])

    if "predefined_phases" not in existing_tables:
        op.create_table(
            "predefined_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("typical_duration_weeks", sa.Integer(), nullable=False, server_default="4"),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "work_logs" not in existing_tables:
        op.create_table(
            "work_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("engineer_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.Integer(), nullable=False),
            sa.Column("work_date", sa.Date(), nullable=False),
            sa.Column("hours", sa.Float(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("entry_type", sa.String(length=20), nullable=False, server_default="daily"),
            sa.Column("supervisor_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("manual_progress_percentage", sa.Float(), nullable=True),
            sa.Column("progress_notes", sa.Text(), nullable=True),
            sa.Column("progress_adjusted_by", sa.Integer(), nullable=True),
            sa.Column("progress_adjusted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            *_created_updated(),
            sa.ForeignKeyConstraint(["engineer_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["phase_id"], ["project_phases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["progress_adjusted_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("hours > 0", name="ck_work_logs_hours_positive"),
            sa.CheckConstraint("entry_type IN ('daily', 'historical')", name="ck_work_logs_entry_type"),
        )
        op.create_index("ix_work_logs_project_id", "work_logs", ["project_id"])
        op.create_index("idx_work_logs_phase_date", "work_logs", ["phase_id", "work_date"])
        op.create_index("idx_work_logs_engineer_date", "work_logs", ["engineer_id", "work_date"])

    if "progress_adjustments" not in existing_tables:
        op.create_table(
            "progress_adjustments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.Integer(), nullable=False),
            sa.Column("engineer_id", sa.Integer(), nullable=True),
            sa.Column("work_log_id", sa.Integer(), nullable=True),
            sa.Column("hours_logged", sa.Float(), nullable=False, server_default="0"),
            sa.Column("hours_based_progress", sa.Float(), nullable=False, server_default="0"),
            sa.Column("manual_progress_percentage", sa.Float(), nullable=False),
            sa.Column("adjustment_reason", sa.Text(), nullable=False),
            sa.Column("adjustment_type", sa.String(length=20), nullable=False, server_default="phase_overall"),
            sa.Column("adjusted_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["phase_id"], ["project_phases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["engineer_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["work_log_id"], ["work_logs.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["adjusted_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "manual_progress_percentage >= 0 AND manual_progress_percentage <= 100",
                name="ck_progress_adjustments_range",
            ),
            sa.CheckConstraint(
                "adjustment_type IN ('work_log', 'phase_overall')",
                name="ck_progress_adjustments_type",
            ),
        )
        op.create_index("idx_progress_adjustments_phase", "progress_adjustments", ["phase_id", "created_at"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])


def downgrade():
    for table in (
        "audit_logs",
        "progress_adjustments",
        "work_logs",
        "predefined_phases",
        "project_phases",
        "projects",
        "user_sessions",
        "users",
    ):
        op.drop_table(table)
