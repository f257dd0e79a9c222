"""create_workflow_tables

Create crew directory and project workflow tables:
crew_members, projects, project_roles, project_crew_assignments,
project_tasks, project_task_assignments.

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def _archive_columns():
    return [
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_by", sa.String(length=100), nullable=True),
    ]


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "crew_members" not in existing_tables:
        op.create_table(
            "crew_members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("photo_url", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_archive_columns(),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_crew_members_is_archived", "crew_members", ["is_archived"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("template_id", sa.String(length=64), nullable=True),
            sa.Column("template_snapshot", sa.JSON(), nullable=False),
            sa.Column("current_phase_order", sa.Integer(), nullable=True),
            sa.Column("current_step_order", sa.Integer(), nullable=True),
            sa.Column("task_load_version", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("tasks_loaded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("updated_by", sa.String(length=100), nullable=True),
            *_archive_columns(),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint("status IN ('active','completed','archived')", name="ck_project_status"),
            sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_project_dates"),
        )
        op.create_index("ix_projects_is_archived", "projects", ["is_archived"])

    if "project_roles" not in existing_tables:
        op.create_table(
            "project_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.String(length=64), nullable=False),
            sa.Column("role_name", sa.String(length=200), nullable=False),
            sa.Column("department_name", sa.String(length=200), nullable=True),
            sa.Column("is_filled", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "role_id", name="uq_project_roles_project_role"),
        )
        op.create_index("ix_project_roles_project_id", "project_roles", ["project_id"])

    if "project_crew_assignments" not in existing_tables:
        op.create_table(
            "project_crew_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("project_role_id", sa.Integer(), nullable=False),
            sa.Column("crew_id", sa.Integer(), nullable=False),
            sa.Column("assigned_by", sa.String(length=100), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_role_id"], ["project_roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["crew_id"], ["crew_members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "project_id", "project_role_id", "crew_id", name="uq_project_crew_assignment",
            ),
        )
        op.create_index("ix_project_crew_assignments_project_id", "project_crew_assignments", ["project_id"])
        op.create_index(
            "ix_project_crew_assignments_project_role_id", "project_crew_assignments", ["project_role_id"],
        )
        op.create_index("ix_project_crew_assignments_crew_id", "project_crew_assignments", ["crew_id"])

    if "project_tasks" not in existing_tables:
        op.create_table(
            "project_tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("template_task_id", sa.String(length=64), nullable=True),
            sa.Column("task_name", sa.String(length=300), nullable=False),
            sa.Column("task_description", sa.Text(), nullable=True),
            sa.Column("phase_name", sa.String(length=200), nullable=False),
            sa.Column("phase_order", sa.Integer(), nullable=False),
            sa.Column("step_name", sa.String(length=200), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("task_order", sa.Integer(), nullable=False),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("actual_hours", sa.Float(), nullable=True),
            sa.Column("parent_task_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("category", sa.String(length=20), nullable=True),
            sa.Column("checklist_items", sa.JSON(), nullable=False),
            sa.Column("escalation_reason", sa.Text(), nullable=True),
            sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_manually_escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("file_attachments", sa.JSON(), nullable=False),
            sa.Column("comments", sa.JSON(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_loaded", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("updated_by", sa.String(length=100), nullable=True),
            *_archive_columns(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_task_id"], ["project_tasks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('pending','ongoing','completed','escalated')",
                name="ck_project_task_status",
            ),
            sa.CheckConstraint(
                "category IS NULL OR category IN ('monitor','coordinate','execute')",
                name="ck_project_task_category",
            ),
            sa.CheckConstraint(
                "completed_at IS NULL OR started_at IS NOT NULL",
                name="ck_project_task_completed_started",
            ),
        )
        op.create_index("ix_project_tasks_project_id", "project_tasks", ["project_id"])
        op.create_index("ix_project_tasks_parent_task_id", "project_tasks", ["parent_task_id"])
        op.create_index("ix_project_tasks_is_loaded", "project_tasks", ["is_loaded"])
        op.create_index("ix_project_tasks_is_archived", "project_tasks", ["is_archived"])
        op.create_index(
            "uq_project_task_position",
            "project_tasks",
            ["project_id", "phase_order", "step_order", "task_order"],
            unique=True,
            postgresql_where=sa.text("is_archived IS FALSE"),
            sqlite_where=sa.text("is_archived = 0"),
        )

    if "project_task_assignments" not in existing_tables:
        op.create_table(
            "project_task_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("project_task_id", sa.Integer(), nullable=False),
            sa.Column("project_role_id", sa.Integer(), nullable=False),
            sa.Column("crew_id", sa.Integer(), nullable=False),
            sa.Column("assigned_by", sa.String(length=100), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_task_id"], ["project_tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_role_id"], ["project_roles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["crew_id"], ["crew_members.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "project_task_id", "project_role_id", "crew_id", name="uq_project_task_assignment",
            ),
        )
        op.create_index("ix_project_task_assignments_project_id", "project_task_assignments", ["project_id"])
        op.create_index(
            "ix_project_task_assignments_project_task_id", "project_task_assignments", ["project_task_id"],
        )
        op.create_index("ix_project_task_assignments_crew_id", "project_task_assignments", ["crew_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "project_task_assignments",
        "project_tasks",
        "project_crew_assignments",
        "project_roles",
        "projects",
        "crew_members",
    ):
        if table in existing_tables:
            op.drop_table(table)
