"""
Session persistence gateway.

Controllers talk to storage only through ``SessionStore``. The SQL
implementation keeps one transaction per call, so a checkpoint and the items
it covers are written together or not at all.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, AsyncIterator, Generator, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shoppatrol.core.records import (
    PatrolMode,
    PatrolRun,
    PatrolTarget,
    RunStatus,
    RunSummary,
    ScannedItem,
)

from .models import PatrolRunRow, ScannedItemRow
from .repo import PatrolRunRepository

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Storage could not be read or written."""

    def __init__(self, message: str, run_id: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.run_id = run_id
        self.cause = cause


# =============================================================================
# Conversions
# =============================================================================


def _plain(value: Any) -> Any:
    """Turn domain values into JSON/column-ready values."""
    if isinstance(value, (RunStatus, PatrolMode)):
        return value.value
    if isinstance(value, RunSummary):
        return value.to_dict()
    if isinstance(value, list):
        return [t.to_dict() if isinstance(t, PatrolTarget) else t for t in value]
    return value


def item_to_row(item: ScannedItem) -> dict[str, Any]:
    data = item.to_dict()
    data["item_key"] = item.item_key
    return data


def row_to_item(row: ScannedItemRow) -> ScannedItem:
    return ScannedItem.from_dict({
        "name": row.name,
        "image_url": row.image_url,
        "canonical_url": row.canonical_url,
        "price": row.price,
        "source_item_id": row.source_item_id,
        "target_url": row.target_url,
        "risk_level": row.risk_level,
        "reason": row.reason,
        "raw_backend_label": row.raw_backend_label,
    })


def row_to_run(row: PatrolRunRow, items: Iterable[ScannedItemRow] = ()) -> PatrolRun:
    return PatrolRun(
        id=row.id,
        mode=PatrolMode(row.mode),
        label=row.label,
        targets=[PatrolTarget.from_dict(t) for t in row.targets or []],
        status=RunStatus(row.status),
        summary=RunSummary.from_dict(row.summary),
        checkpoint=dict(row.checkpoint or {}),
        items=[row_to_item(i) for i in items],
        error_message=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# =============================================================================
# Store interface
# =============================================================================


class SessionStore(ABC):
    """Create, update and read patrol runs in external storage."""

    @abstractmethod
    def create(self, run: PatrolRun) -> str:
        """Persist a new run (and its items) and return its id."""
        ...

    @abstractmethod
    def update(
        self,
        run_id: str,
        changes: dict[str, Any],
        union_items: Iterable[ScannedItem] = (),
        replace_items: Iterable[ScannedItem] = (),
    ) -> None:
        """Apply run changes and item writes in one step.

        ``union_items`` are appended unless their ``item_key`` is already
        stored; ``replace_items`` overwrite the stored assessment.
        """
        ...

    @abstractmethod
    def get(self, run_id: str, include_items: bool = True) -> PatrolRun | None:
        ...

    @abstractmethod
    def list_runs(
        self,
        mode: PatrolMode | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[PatrolRun]:
        """Runs without their items, newest first."""
        ...

    async def watch(
        self,
        mode: PatrolMode | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
        interval: float = 2.0,
        max_polls: int | None = None,
    ) -> AsyncIterator[list[PatrolRun]]:
        """Poll ``list_runs`` and yield the listing whenever it changes."""
        last: tuple | None = None
        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            runs = self.list_runs(mode=mode, status=status, limit=limit)
            fingerprint = tuple(
                (r.id, r.status.value, r.updated_at, r.summary.total) for r in runs
            )
            if fingerprint != last:
                last = fingerprint
                yield runs
            if max_polls is None or polls < max_polls:
                await asyncio.sleep(interval)


# =============================================================================
# SQL implementation
# =============================================================================


class SqlSessionStore(SessionStore):
    """SessionStore backed by the SQLAlchemy models."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, url: str, echo: bool = False, pool_size: int = 5) -> "SqlSessionStore":
        from .db import make_session_factory

        return cls(make_session_factory(url, echo=echo, pool_size=pool_size))

    @contextmanager
    def _session(self, run_id: str | None = None) -> Generator[PatrolRunRepository, None, None]:
        session = self._session_factory()
        try:
            yield PatrolRunRepository(session)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Storage error: {e}", run_id=run_id, cause=e) from e
        finally:
            session.close()

    def create(self, run: PatrolRun) -> str:
        with self._session() as repo:
            row = repo.create(
                mode=run.mode.value,
                label=run.label,
                targets=[t.to_dict() for t in run.targets],
                status=run.status.value,
                summary=run.summary.to_dict(),
                checkpoint=run.checkpoint or None,
            )
            if run.items:
                repo.union_items(row.id, [item_to_row(i) for i in run.items])
            run_id = row.id
        logger.debug(f"Created {run.mode.value} run {run_id}")
        return run_id

    def update(
        self,
        run_id: str,
        changes: dict[str, Any],
        union_items: Iterable[ScannedItem] = (),
        replace_items: Iterable[ScannedItem] = (),
    ) -> None:
        with self._session(run_id) as repo:
            row = repo.apply_changes(run_id, {k: _plain(v) for k, v in changes.items()})
            if row is None:
                raise PersistenceError(f"Run not found: {run_id}", run_id=run_id)
            union_rows = [item_to_row(i) for i in union_items]
            if union_rows:
                repo.union_items(run_id, union_rows)
            replace_rows = [item_to_row(i) for i in replace_items]
            if replace_rows:
                repo.replace_items(run_id, replace_rows)

    def get(self, run_id: str, include_items: bool = True) -> PatrolRun | None:
        with self._session(run_id) as repo:
            row = repo.get_by_id(run_id)
            if row is None:
                return None
            items = repo.get_items(run_id) if include_items else ()
            return row_to_run(row, items)

    def list_runs(
        self,
        mode: PatrolMode | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[PatrolRun]:
        with self._session() as repo:
            rows = repo.list_runs(
                mode=mode.value if mode else None,
                status=status.value if status else None,
                limit=limit,
            )
            return [row_to_run(r) for r in rows]

    def count_items(self, run_id: str) -> int:
        with self._session(run_id) as repo:
            return repo.count_items(run_id)
