"""completion_review_workflow

Create users, projects, tasks, completion_requests and notifications.

completion_requests carries a partial unique index so a work item can
have at most one pending request at a time.

Revision ID: 7c3e1a9d2b40
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c3e1a9d2b40"
down_revision = None
branch_labels = None
depends_on = None


def _work_item_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assignee_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="In Progress"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _work_item_constraints(table):
    return [
        sa.CheckConstraint(
            "status IN ('Pending','In Progress','Completed')",
            name=f"ck_{table}_status",
        ),
        sa.CheckConstraint(
            "(status = 'Completed' AND completed_at IS NOT NULL) OR "
            "(status <> 'Completed' AND completed_at IS NULL)",
            name=f"ck_{table}_completed_at",
        ),
        sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="employee"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("role IN ('employee','manager','admin')", name="ck_users_role"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )
        op.create_index("ix_users_role_active", "users", ["role", "is_active"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            *_work_item_columns(),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            *_work_item_constraints("projects"),
        )
        op.create_index("ix_projects_assignee_id", "projects", ["assignee_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            *_work_item_columns(),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            *_work_item_constraints("tasks"),
        )
        op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"])
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])

    if "completion_requests" not in existing_tables:
        op.create_table(
            "completion_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_item_kind", sa.String(length=20), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("requester_id", sa.Integer(), nullable=True),
            sa.Column("evidence", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("reviewer_id", sa.Integer(), nullable=True),
            sa.Column("feedback", sa.Text(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "status IN ('pending','approved','rejected')",
                name="ck_completion_requests_status",
            ),
            sa.CheckConstraint(
                "work_item_kind IN ('task','project')",
                name="ck_completion_requests_kind",
            ),
            sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_completion_requests_requester_id", "completion_requests", ["requester_id"])
        op.create_index(
            "ix_completion_requests_item", "completion_requests", ["work_item_kind", "work_item_id"]
        )
        op.create_index(
            "ix_completion_requests_kind_status", "completion_requests", ["work_item_kind", "status"]
        )
        op.create_index(
            "uq_completion_requests_one_pending",
            "completion_requests",
            ["work_item_kind", "work_item_id"],
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("event", sa.String(length=50), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("ix_notifications_recipient_read", "notifications", ["recipient_id", "is_read"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "notifications" in existing_tables:
        op.drop_index("ix_notifications_recipient_read", table_name="notifications")
        op.drop_index("ix_notifications_recipient_id", table_name="notifications")
        op.drop_table("notifications")

    if "completion_requests" in existing_tables:
        op.drop_index("uq_completion_requests_one_pending", table_name="completion_requests")
        op.drop_index("ix_completion_requests_kind_status", table_name="completion_requests")
        op.drop_index("ix_completion_requests_item", table_name="completion_requests")
        op.drop_index("ix_completion_requests_requester_id", table_name="completion_requests")
        op.drop_table("completion_requests")

    if "tasks" in existing_tables:
        op.drop_index("ix_tasks_project_id", table_name="tasks")
        op.drop_index("ix_tasks_assignee_id", table_name="tasks")
        op.drop_table("tasks")

    if "projects" in existing_tables:
        op.drop_index("ix_projects_assignee_id", table_name="projects")
        op.drop_table("projects")

    if "users" in existing_tables:
        op.drop_index("ix_users_role_active", table_name="users")
        op.drop_table("users")
