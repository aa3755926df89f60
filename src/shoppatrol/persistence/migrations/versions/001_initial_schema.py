"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create patrol run and scanned item tables."""

    # Patrol runs table
    op.create_table(
        "patrol_runs",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("label", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PROCESSING"),
        sa.Column("targets", sa.JSON(), nullable=False),
        sa.Column("summary", sa.JSON(), nullable=False),
        sa.Column("checkpoint", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patrol_runs_mode", "patrol_runs", ["mode"])
    op.create_index("ix_patrol_runs_status", "patrol_runs", ["status"])
    op.create_index("ix_patrol_runs_created_at", "patrol_runs", ["created_at"])
    op.create_index("ix_patrol_run_mode_status", "patrol_runs", ["mode", "status"])

    # Scanned items table
    op.create_table(
        "scanned_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("item_key", sa.String(length=1000), nullable=False),
        sa.Column("target_url", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("image_url", sa.String(length=2000), nullable=True),
        sa.Column("canonical_url", sa.String(length=2000), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("source_item_id", sa.String(length=200), nullable=True),
        sa.Column("risk_level", sa.String(length=20), nullable=False),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("raw_backend_label", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["patrol_runs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("run_id", "item_key", name="uq_scanned_item_run_key"),
    )
    op.create_index("ix_scanned_items_run_id", "scanned_items", ["run_id"])
    op.create_index("ix_scanned_items_risk_level", "scanned_items", ["risk_level"])
    op.create_index("ix_scanned_item_run_risk", "scanned_items", ["run_id", "risk_level"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("scanned_items")
    op.drop_table("patrol_runs")
