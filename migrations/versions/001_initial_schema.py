"""Initial schema: profiles, tasks, applications.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- profiles (auth + saved location) ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("name", sa.VARCHAR(), nullable=False),
        sa.Column("key_hash", sa.VARCHAR(), nullable=False),
        sa.Column("key_fingerprint", sa.VARCHAR(), nullable=False),
        sa.Column("latitude", sa.FLOAT(), nullable=True),
        sa.Column("longitude", sa.FLOAT(), nullable=True),
        sa.Column("address", sa.VARCHAR(), nullable=True),
        sa.Column("city", sa.VARCHAR(), nullable=True),
        sa.Column("postal_code", sa.VARCHAR(), nullable=True),
        sa.Column("country", sa.VARCHAR(), nullable=True),
        sa.Column("location_updated_at", sa.DATETIME(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_key_fingerprint", "profiles", ["key_fingerprint"])

    # --- tasks ---
    op.create_table(
        "tasks",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("author_id", sa.VARCHAR(), nullable=False),
        sa.Column("helper_id", sa.VARCHAR(), nullable=True),
        sa.Column("title", sa.VARCHAR(), nullable=False),
        sa.Column("description", sa.VARCHAR(), nullable=False),
        sa.Column("category", sa.VARCHAR(), nullable=False, server_default="other"),
        sa.Column("tags", sa.VARCHAR(), nullable=True),
        sa.Column("priority", sa.VARCHAR(), nullable=False, server_default="medium"),
        sa.Column("budget", sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column("currency", sa.VARCHAR(), nullable=False, server_default="EUR"),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="open"),
        sa.Column("latitude", sa.FLOAT(), nullable=False),
        sa.Column("longitude", sa.FLOAT(), nullable=False),
        sa.Column("address", sa.VARCHAR(), nullable=True),
        sa.Column("city", sa.VARCHAR(), nullable=True),
        sa.Column("postal_code", sa.VARCHAR(), nullable=True),
        sa.Column("country", sa.VARCHAR(), nullable=True),
        sa.Column("deadline", sa.DATETIME(), nullable=True),
        sa.Column("estimated_duration", sa.VARCHAR(), nullable=True),
        sa.Column("is_urgent", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("is_featured", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("application_count", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.Column("assigned_at", sa.DATETIME(), nullable=True),
        sa.Column("started_at", sa.DATETIME(), nullable=True),
        sa.Column("completed_at", sa.DATETIME(), nullable=True),
        sa.Column("cancelled_at", sa.DATETIME(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["author_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["helper_id"], ["profiles.id"]),
    )
    op.create_index("ix_tasks_author_id", "tasks", ["author_id"])
    op.create_index("ix_tasks_helper_id", "tasks", ["helper_id"])
    op.create_index("ix_tasks_category", "tasks", ["category"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_deadline", "tasks", ["deadline"])
    op.create_index("ix_tasks_created_at", "tasks", ["created_at"])
    op.create_index("ix_tasks_status_created_at", "tasks", ["status", "created_at"])
    op.create_index("ix_tasks_status_lat_lng", "tasks", ["status", "latitude", "longitude"])

    # --- applications ---
    op.create_table(
        "applications",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("helper_id", sa.VARCHAR(), nullable=False),
        sa.Column("message", sa.VARCHAR(), nullable=True),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("decided_at", sa.DATETIME(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["helper_id"], ["profiles.id"]),
    )
    op.create_index("ix_applications_helper_id", "applications", ["helper_id"])
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index(
        "ix_applications_task_helper", "applications", ["task_id", "helper_id"], unique=True
    )
    op.create_index("ix_applications_task_created_at", "applications", ["task_id", "created_at"])


def downgrade() -> None:
    op.drop_table("applications")
    op.drop_table("tasks")
    op.drop_table("profiles")
