"""Initial schema: users, sessions, publish jobs and runs

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Statuses are stored as VARCHAR (native_enum=False), no enum types to create

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="Autodesk User"),
        sa.Column("autodesk_id", sa.String(100), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_unique_constraint("uq_users_autodesk_id", "users", ["autodesk_id"])

    # Sessions table
    op.create_table(
        "sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    # Publish jobs table
    op.create_table(
        "publish_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("hub_id", sa.String(255), nullable=False),
        sa.Column("hub_name", sa.String(255), nullable=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("project_name", sa.String(255), nullable=True),
        sa.Column("folder_id", sa.String(255), nullable=True),
        sa.Column("folder_name", sa.String(255), nullable=True),
        sa.Column("models", sa.JSON(), nullable=False),
        sa.Column("schedule_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cron_expression", sa.String(100), nullable=False, server_default="0 2 * * *"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("next_run", sa.DateTime(), nullable=True),
        sa.Column("last_run", sa.DateTime(), nullable=True),
        sa.Column("output_format", sa.String(50), nullable=False, server_default="default"),
        sa.Column("publish_views", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_sheets", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("include_linked_models", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_options", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="idle"),
        sa.Column("statistics", sa.JSON(), nullable=False),
        sa.Column("history", sa.JSON(), nullable=False),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_on_success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_on_failure", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notification_recipients", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_publish_jobs_user_id", "publish_jobs", ["user_id"])
    op.create_index("ix_publish_jobs_hub_id", "publish_jobs", ["hub_id"])
    op.create_index("ix_publish_jobs_project_id", "publish_jobs", ["project_id"])
    op.create_index("ix_publish_jobs_schedule_enabled", "publish_jobs", ["schedule_enabled"])
    op.create_index("ix_publish_jobs_status", "publish_jobs", ["status"])

    # Publish runs table (kept when their job is deleted)
    op.create_table(
        "publish_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("hub_id", sa.String(255), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("results", sa.JSON(), nullable=False),
        sa.Column("stats", sa.JSON(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_publish_runs_job_id", "publish_runs", ["job_id"])
    op.create_index("ix_publish_runs_user_id", "publish_runs", ["user_id"])
    op.create_index("ix_publish_runs_project_id", "publish_runs", ["project_id"])
    op.create_index("ix_publish_runs_status", "publish_runs", ["status"])


def downgrade() -> None:
    op.drop_table("publish_runs")
    op.drop_table("publish_jobs")
    op.drop_table("sessions")
    op.drop_table("users")
