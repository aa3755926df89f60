"""
SQLAlchemy ORM models for ShopPatrol.

Defines the database schema:
- PatrolRuns: One row per patrol run, with targets, summary and checkpoint
- ScannedItems: Stored results of a run, unique per (run, item_key)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
        list[dict[str, Any]]: JSON,
    }


# =============================================================================
# Mixins
# =============================================================================


class TimestampMixin:
    """Mixin providing created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        default=None,
        onupdate=datetime.utcnow,
        nullable=True,
    )


def _new_run_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Patrol Run Model
# =============================================================================


class PatrolRunRow(Base, TimestampMixin):
    """Persisted state of a single or fleet patrol run."""

    __tablename__ = "patrol_runs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_run_id)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # PROCESSING, PAUSED, COMPLETED, ERROR
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PROCESSING",
        index=True,
    )

    # [{url, status, item_count, error_message}]
    targets: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # {total, high_risk_count, critical_count}
    summary: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Checkpoint for resume
    checkpoint: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    items: Mapped[list["ScannedItemRow"]] = relationship(
        "ScannedItemRow",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="ScannedItemRow.id",
    )

    __table_args__ = (
        Index("ix_patrol_run_mode_status", "mode", "status"),
    )

    def __repr__(self) -> str:
        return f"<PatrolRunRow(id='{self.id}', mode='{self.mode}', status='{self.status}')>"


# =============================================================================
# Scanned Item Model
# =============================================================================


class ScannedItemRow(Base):
    """One classified product stored against a run."""

    __tablename__ = "scanned_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("patrol_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    target_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    # Product
    name: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    canonical_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    source_item_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Assessment
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_backend_label: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    run: Mapped["PatrolRunRow"] = relationship("PatrolRunRow", back_populates="items")

    __table_args__ = (
        UniqueConstraint("run_id", "item_key", name="uq_scanned_item_run_key"),
        Index("ix_scanned_item_run_risk", "run_id", "risk_level"),
    )

    def __repr__(self) -> str:
        return f"<ScannedItemRow(id={self.id}, run_id='{self.run_id}', risk='{self.risk_level}')>"
