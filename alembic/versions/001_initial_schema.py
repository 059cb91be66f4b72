"""Initial schema: users, workspaces, goals, tasks, tracking records, shares, permissions

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(256), unique=True, nullable=False),
        sa.Column("email", sa.String(256), unique=True, nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("timezone", sa.String(256), nullable=False, server_default="UTC"),
        *_timestamps(),
    )

    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("group_name", sa.String(256), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workspaces_user_id", "workspaces", ["user_id"])

    op.create_table(
        "goals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", sa.String(36), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
    )
    op.create_index("ix_goals_workspace_id", "goals", ["workspace_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("goal_id", sa.String(36), sa.ForeignKey("goals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("time_budget", sa.Integer, nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="1"),
        sa.Column("is_recurring", sa.Boolean, nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("time_budget >= 0", name="ck_tasks_time_budget_non_negative"),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="ck_tasks_priority_range"),
    )
    op.create_index("ix_tasks_goal_id", "tasks", ["goal_id"])

    op.create_table(
        "task_tracking_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tracking_records_task_id", "task_tracking_records", ["task_id"])
    op.create_index("ix_tracking_records_user_start", "task_tracking_records", ["user_id", "start_time"])
    # At most one running record per user
    op.create_index(
        "uq_tracking_records_open_per_user",
        "task_tracking_records",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("end_time IS NULL"),
    )

    op.create_table(
        "workspace_shares",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(36), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("shared_with_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invited_by_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
    )
    op.create_index(
        "ix_workspace_shares_workspace_user", "workspace_shares", ["workspace_id", "shared_with_user_id"]
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("resource_id", sa.String(36), nullable=False),
        sa.Column("resource_type", sa.String(20), nullable=False),
        sa.Column("can_list", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("can_edit", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("can_delete", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("can_add_task", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("can_submit_record", sa.Boolean, nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "resource_id", "resource_type", name="uq_permissions_user_resource"),
    )
    op.create_index("ix_permissions_resource_id", "permissions", ["resource_id"])


def downgrade() -> None:
    op.drop_table("permissions")
    op.drop_table("workspace_shares")
    op.drop_index("uq_tracking_records_open_per_user", table_name="task_tracking_records")
    op.drop_table("task_tracking_records")
    op.drop_table("tasks")
    op.drop_table("goals")
    op.drop_table("workspaces")
    op.drop_table("users")
