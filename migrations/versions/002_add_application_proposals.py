"""Add proposed budget and duration to applications.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "applications",
        sa.Column("proposed_budget", sa.NUMERIC(precision=10, scale=2), nullable=True),
    )
    op.add_column("applications", sa.Column("proposed_duration", sa.VARCHAR(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("applications") as batch:
        batch.drop_column("proposed_duration")
        batch.drop_column("proposed_budget")
