"""
Repository pattern for database operations.

Provides CRUD for patrol runs plus the union-append and in-place replace
operations on their stored items.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .models import PatrolRunRow, ScannedItemRow

# Run columns a caller may change through ``apply_changes``
RUN_FIELDS = frozenset({"label", "status", "targets", "summary", "checkpoint", "error_message"})

# Item columns rewritten when an item is replaced
ASSESSMENT_FIELDS = ("risk_level", "is_critical", "reason", "raw_backend_label")


# =============================================================================
# Patrol Run Repository
# =============================================================================


class PatrolRunRepository:
    """Repository for PatrolRunRow and ScannedItemRow operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        mode: str,
        label: str = "",
        targets: list[dict[str, Any]] | None = None,
        status: str = "PROCESSING",
        summary: dict[str, Any] | None = None,
        checkpoint: dict[str, Any] | None = None,
    ) -> PatrolRunRow:
        """Create a new patrol run."""
        run = PatrolRunRow(
            mode=mode,
            label=label,
            targets=targets or [],
            status=status,
            summary=summary or {},
            checkpoint=checkpoint,
        )
        self.session.add(run)
        self.session.flush()
        return run

    def get_by_id(self, run_id: str) -> PatrolRunRow | None:
        """Get run by ID."""
        return self.session.get(PatrolRunRow, run_id)

    def list_runs(
        self,
        mode: str | None = None,
        status: str | None = None,
        limit: int = 20,
    ) -> Sequence[PatrolRunRow]:
        """Get recent runs, newest first."""
        stmt = select(PatrolRunRow)

        if mode is not None:
            stmt = stmt.where(PatrolRunRow.mode == mode)
        if status is not None:
            stmt = stmt.where(PatrolRunRow.status == status)

        stmt = stmt.order_by(PatrolRunRow.created_at.desc(), PatrolRunRow.id)
        stmt = stmt.limit(limit)

        return self.session.execute(stmt).scalars().all()

    def apply_changes(self, run_id: str, changes: dict[str, Any]) -> PatrolRunRow | None:
        """Overwrite run columns with ``changes``.

        Raises:
            ValueError: If ``changes`` names a column that is not updatable
        """
        unknown = set(changes) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")

        run = self.get_by_id(run_id)
        if not run:
            return None

        for key, value in changes.items():
            setattr(run, key, value)
        self.session.flush()
        return run

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(ScannedItemRow)
        return sqlite_insert(ScannedItemRow)

    def union_items(self, run_id: str, rows: Iterable[dict[str, Any]]) -> int:
        """Append items, ignoring any whose ``item_key`` is already stored.

        Returns:
            Number of rows actually inserted
        """
        values = [{**row, "run_id": run_id} for row in rows]
        if not values:
            return 0

        # One statement per row keeps conflict handling per item
        inserted = 0
        for value in values:
            stmt = self._insert().values(**value).on_conflict_do_nothing(
                index_elements=["run_id", "item_key"],
            )
            result = self.session.execute(stmt)
            inserted += max(result.rowcount or 0, 0)
        return inserted

    def replace_items(self, run_id: str, rows: Iterable[dict[str, Any]]) -> int:
        """Rewrite the assessment of stored items; missing items are appended."""
        replaced = 0
        missing: list[dict[str, Any]] = []

        for row in rows:
            stmt = (
                update(ScannedItemRow)
                .where(
                    ScannedItemRow.run_id == run_id,
                    ScannedItemRow.item_key == row["item_key"],
                )
                .values(**{k: row[k] for k in ASSESSMENT_FIELDS if k in row})
            )
            result = self.session.execute(stmt)
            if result.rowcount:
                replaced += 1
            else:
                missing.append(row)

        if missing:
            replaced += self.union_items(run_id, missing)
        return replaced

    def get_items(self, run_id: str) -> Sequence[ScannedItemRow]:
        """Get stored items of a run in insertion order."""
        stmt = (
            select(ScannedItemRow)
            .where(ScannedItemRow.run_id == run_id)
            .order_by(ScannedItemRow.id)
        )
        return self.session.execute(stmt).scalars().all()

    def count_items(self, run_id: str) -> int:
        stmt = select(func.count(ScannedItemRow.id)).where(ScannedItemRow.run_id == run_id)
        return self.session.execute(stmt).scalar_one()
