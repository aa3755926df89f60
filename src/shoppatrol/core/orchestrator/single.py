"""
Single-target patrol controller.

Drives one shop through ``IDLE → CHECKING → READY → RUNNING ⇄ PAUSED →
COMPLETED``. Results are flushed to the session store at every page
boundary and whenever the run stops, together with the checkpoint they
belong to.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from shoppatrol.core.backends.base import FetchError
from shoppatrol.core.backends.catalog import CatalogPage
from shoppatrol.core.backends.credentials import CredentialPool
from shoppatrol.core.config.models import SessionConfig
from shoppatrol.core.logging import get_contextual_logger
from shoppatrol.core.records import (
    PatrolMode,
    PatrolRun,
    PatrolTarget,
    RiskLevel,
    RunStatus,
    ScannedItem,
    TargetStatus,
)
from shoppatrol.core.report.results import ResultSet
from shoppatrol.persistence.gateway import PersistenceError, SessionStore

from .cancellation import CancellationToken
from .progress import ProgressSnapshot, ProgressTracker
from .runner import Classifier, PageFetcher, ScanCursor, ScanOutcome, TargetScan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


class ControllerState(str, Enum):
    IDLE = "IDLE"
    CHECKING = "CHECKING"
    READY = "READY"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class ControllerStateError(Exception):
    """Operation is not valid in the controller's current state."""
    pass


class SinglePatrolController:
    """Scans one target and keeps its result set."""

    def __init__(
        self,
        config: SessionConfig,
        *,
        fetcher: PageFetcher,
        classifier: Classifier,
        pool: CredentialPool,
        store: SessionStore | None = None,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.classifier = classifier
        self.pool = pool
        self.store = store
        self.on_progress = on_progress

        self.state = ControllerState.IDLE
        self.target: str | None = None
        self.total_count = 0
        self.results = ResultSet()
        self.cursor = ScanCursor()
        self.run_id: str | None = None
        self.persistence_degraded = False
        self.last_error: str | None = None

        self._probe: CatalogPage | None = None
        self._token: CancellationToken | None = None
        self._pending: list[ScannedItem] = []
        self._tracker = ProgressTracker(clock)
        self._sleep = sleep or asyncio.sleep
        self._log = get_contextual_logger("single")

    def __repr__(self) -> str:
        return f"<SinglePatrolController(state={self.state.value}, target={self.target!r})>"

    @property
    def batch_size(self) -> int:
        return min(len(self.pool) * self.config.batch_multiplier, self.config.batch_size_cap)

    @property
    def processed_count(self) -> int:
        return len(self.results)

    def _require(self, *states: ControllerState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise ControllerStateError(f"Controller is {self.state.value}; expected {allowed}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def inspect(self, target: str) -> int:
        """Probe page 1 to learn the target's item count.

        Raises:
            FetchError: If the probe fails; the controller returns to IDLE
        """
        self._require(ControllerState.IDLE)
        self.target = target.strip()
        self._log = self._log.with_context(target=self.target)
        self.state = ControllerState.CHECKING

        try:
            page = await self.fetcher.fetch_page(self.target, 1)
        except FetchError as e:
            self.state = ControllerState.IDLE
            self.last_error = str(e)
            self._log.warning(f"Probe failed: {e}")
            raise

        self._probe = page
        self.total_count = 0 if page.is_empty else page.total_count
        self.state = ControllerState.READY
        self._log.info(f"Target has {self.total_count} items")
        return self.total_count

    async def start(self, token: CancellationToken | None = None) -> ControllerState:
        """Run (or continue) the scan until it completes, stops or fails.

        Returns:
            The state the controller ended in
        """
        self._require(ControllerState.READY, ControllerState.PAUSED)
        assert self.target is not None

        self._token = token or CancellationToken()
        self.state = ControllerState.RUNNING
        self.last_error = None

        if self.run_id is None:
            self._create_run()
        else:
            self._flush(RunStatus.PROCESSING)

        self._tracker.begin(self.processed_count)
        scan = TargetScan(
            self.target,
            fetcher=self.fetcher,
            classifier=self.classifier,
            pool=self.pool,
            batch_size=self.batch_size,
            max_pages=self.config.max_pages,
            max_consecutive_failures=self.config.max_consecutive_page_failures,
            batch_pause=self.config.batch_pause_ms / 1000.0,
            cursor=ScanCursor(self.cursor.page, self.cursor.page_offset),
            processed=self.processed_count,
            total_count=self.total_count or None,
            first_page=self._probe,
            on_batch=self._on_batch,
            on_page=self._on_page,
            run_id=self.run_id,
            sleep=self._sleep,
        )
        self._probe = None

        try:
            outcome = await scan.run(self._token)
        except Exception as e:
            self.state = ControllerState.IDLE
            self.last_error = str(e)
            self._log.exception("Scan crashed")
            self._flush(RunStatus.ERROR, error_message=str(e))
            raise

        self.cursor = scan.cursor
        if scan.total_count:
            self.total_count = scan.total_count

        if outcome == ScanOutcome.STOPPED:
            self.state = ControllerState.PAUSED
            self._flush(RunStatus.PAUSED)
            self._log.info(
                f"Paused at page {self.cursor.page} offset {self.cursor.page_offset} "
                f"({self.processed_count} items)"
            )
        elif outcome == ScanOutcome.FAILED:
            self.state = ControllerState.IDLE
            self.last_error = scan.error_message
            self._flush(RunStatus.ERROR, error_message=scan.error_message)
            self._log.error(f"Target failed: {scan.error_message}")
        else:
            self.state = ControllerState.COMPLETED
            self._flush(RunStatus.COMPLETED)
            summary = self.results.summary()
            self._log.info(
                f"Completed: {summary.total} items, {summary.high_risk_count} high risk, "
                f"{summary.critical_count} critical"
            )

        self._emit()
        return self.state

    def pause(self) -> None:
        """Ask the running scan to stop at the next batch or page boundary."""
        self._require(ControllerState.RUNNING)
        assert self._token is not None
        self._token.cancel("pause requested")

    def finish(self) -> PatrolRun:
        """Write the final state to storage and reset to IDLE.

        Returns:
            The run as it was stored
        """
        self._require(ControllerState.PAUSED, ControllerState.COMPLETED)
        status = RunStatus.COMPLETED if self.state == ControllerState.COMPLETED else RunStatus.PAUSED
        self._flush(status)
        run = self.snapshot(status)

        self.state = ControllerState.IDLE
        self.target = None
        self.total_count = 0
        self.results = ResultSet()
        self.cursor = ScanCursor()
        self.run_id = None
        self._pending = []
        return run

    async def retry_failed(self, token: CancellationToken | None = None) -> int:
        """Reclassify ERROR items in place; pages are not refetched.

        Returns:
            Number of items that came back with a real verdict
        """
        self._require(ControllerState.PAUSED, ControllerState.COMPLETED)
        token = token or CancellationToken()
        indexes = self.results.failed_indexes()
        if not indexes:
            return 0

        self._log.info(f"Retrying {len(indexes)} failed items")
        replaced: list[ScannedItem] = []
        for start in range(0, len(indexes), self.batch_size):
            if token.cancelled:
                break
            chunk = indexes[start : start + self.batch_size]
            assessments = await asyncio.gather(
                *(self.classifier.classify(self.results[i].product, self.pool) for i in chunk)
            )
            for index, assessment in zip(chunk, assessments):
                item = self.results[index].with_assessment(assessment)
                self.results.replace(index, item)
                replaced.append(item)

        if replaced and self.run_id is not None:
            self._store_call(
                lambda: self.store.update(
                    self.run_id,
                    {"summary": self.results.summary()},
                    replace_items=replaced,
                )
            )

        recovered = sum(1 for item in replaced if item.risk_level != RiskLevel.ERROR)
        self._log.info(f"Recovered {recovered} of {len(replaced)} retried items")
        self._emit()
        return recovered

    @classmethod
    def resume(
        cls,
        run_id: str,
        *,
        config: SessionConfig,
        fetcher: PageFetcher,
        classifier: Classifier,
        pool: CredentialPool,
        store: SessionStore,
        **kwargs: Any,
    ) -> "SinglePatrolController":
        """Rebuild a controller from a stored run.

        Raises:
            ControllerStateError: If the run is missing or not a single run
            PersistenceError: If storage cannot be read
        """
        run = store.get(run_id)
        if run is None:
            raise ControllerStateError(f"Run not found: {run_id}")
        if run.mode != PatrolMode.SINGLE:
            raise ControllerStateError(f"Run {run_id} is a {run.mode.value} run")

        controller = cls(
            config,
            fetcher=fetcher,
            classifier=classifier,
            pool=pool,
            store=store,
            **kwargs,
        )
        controller.run_id = run.id
        controller.target = run.targets[0].url if run.targets else run.label
        controller.results = ResultSet(run.items)
        controller.cursor = ScanCursor.from_dict(run.checkpoint)
        controller.total_count = int(run.checkpoint.get("total_count") or 0)
        controller.state = (
            ControllerState.COMPLETED if run.status == RunStatus.COMPLETED else ControllerState.PAUSED
        )
        controller._log = controller._log.with_context(target=controller.target, run_id=run.id)
        controller._log.info(
            f"Resumed at page {controller.cursor.page} offset {controller.cursor.page_offset} "
            f"with {len(run.items)} stored items"
        )
        return controller

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def progress(self) -> ProgressSnapshot:
        return self._tracker.snapshot(
            self.processed_count,
            self.total_count,
            page=self.cursor.page,
            target=self.target,
        )

    def _emit(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.progress())

    def snapshot(self, status: RunStatus | None = None) -> PatrolRun:
        """In-memory view of the run."""
        return PatrolRun(
            id=self.run_id,
            mode=PatrolMode.SINGLE,
            label=self.target or "",
            targets=[self._target_record()],
            status=status or self._run_status(),
            summary=self.results.summary(),
            checkpoint=self._checkpoint(),
            items=self.results.items,
            error_message=self.last_error,
        )

    # -------------------------------------------------------------------------
    # Scan hooks
    # -------------------------------------------------------------------------

    def _on_batch(self, scan: TargetScan, items: list[ScannedItem]) -> None:
        self.results.append(items)
        self._pending.extend(items)
        self.cursor = ScanCursor(scan.cursor.page, scan.cursor.page_offset)
        if scan.total_count:
            self.total_count = scan.total_count
        self._emit()

    def _on_page(self, scan: TargetScan) -> None:
        self.cursor = ScanCursor(scan.cursor.page, scan.cursor.page_offset)
        self._flush(RunStatus.PROCESSING)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _run_status(self) -> RunStatus:
        return {
            ControllerState.PAUSED: RunStatus.PAUSED,
            ControllerState.COMPLETED: RunStatus.COMPLETED,
        }.get(self.state, RunStatus.PROCESSING)

    def _target_record(self) -> PatrolTarget:
        if self.state == ControllerState.COMPLETED:
            status = TargetStatus.COMPLETED
        elif self.last_error and self.state == ControllerState.IDLE:
            status = TargetStatus.ERROR
        elif self.state == ControllerState.RUNNING:
            status = TargetStatus.PROCESSING
        else:
            status = TargetStatus.WAITING
        return PatrolTarget(
            url=self.target or "",
            status=status,
            item_count=self.processed_count,
            error_message=self.last_error,
        )

    def _checkpoint(self) -> dict[str, Any]:
        return {**self.cursor.to_dict(), "total_count": self.total_count}

    def _create_run(self) -> None:
        if self.store is None:
            return
        run = self.snapshot(RunStatus.PROCESSING)
        run.items = []

        def create() -> None:
            self.run_id = self.store.create(run)

        if self._store_call(create):
            self._log = self._log.with_context(run_id=self.run_id)
            self._log.info(f"Created run {self.run_id}")

    def _flush(self, status: RunStatus, error_message: str | None = None) -> None:
        """Write summary, checkpoint and pending items in one update."""
        if self.store is None or self.run_id is None:
            self._pending = []
            return

        changes: dict[str, Any] = {
            "status": status,
            "summary": self.results.summary(),
            "checkpoint": self._checkpoint(),
            "targets": [self._target_record()],
            "error_message": error_message,
        }
        items, self._pending = self._pending, []
        ok = self._store_call(
            lambda: self.store.update(self.run_id, changes, union_items=items)
        )
        if not ok:
            # Keep them for the next flush
            self._pending = items + self._pending

    def _store_call(self, fn: Callable[[], Any]) -> bool:
        try:
            fn()
            return True
        except PersistenceError as e:
            self.persistence_degraded = True
            self._log.warning(f"Persistence failed, continuing in memory: {e}")
            return False
