"""
Fleet patrol controller.

Runs the shared scan loop over an ordered list of targets. The run record
in the session store is the source of truth: state is written every few
pages and at every target transition, and a stopped or crashed run picks up
at the same target and page from whatever was last written.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from shoppatrol.core.backends.credentials import CredentialPool
from shoppatrol.core.config.loader import ConfigError
from shoppatrol.core.config.models import SessionConfig
from shoppatrol.core.logging import get_contextual_logger
from shoppatrol.core.records import (
    PatrolMode,
    PatrolRun,
    PatrolTarget,
    RunStatus,
    ScannedItem,
    TargetStatus,
)
from shoppatrol.persistence.gateway import PersistenceError, SessionStore

from .cancellation import CancellationToken
from .progress import ProgressSnapshot, ProgressTracker
from .runner import Classifier, PageFetcher, ScanCursor, ScanOutcome, TargetScan
from .single import ControllerStateError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


def parse_target_urls(source: str | Iterable[str]) -> list[str]:
    """Keep trimmed lines that start with ``http``."""
    lines = source.splitlines() if isinstance(source, str) else source
    return [line.strip() for line in lines if line.strip().startswith("http")]


class FleetPatrolController:
    """Scans a list of targets under one persisted run."""

    def __init__(
        self,
        config: SessionConfig,
        run: PatrolRun,
        *,
        fetcher: PageFetcher,
        classifier: Classifier,
        pool: CredentialPool,
        store: SessionStore,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config
        self.run_record = run
        self.fetcher = fetcher
        self.classifier = classifier
        self.pool = pool
        self.store = store
        self.on_progress = on_progress
        self.persistence_degraded = False

        self._running = False
        self._token: CancellationToken | None = None
        self._pending: list[ScannedItem] = []
        self._current_index: int | None = None
        self._tracker = ProgressTracker(clock)
        self._sleep = sleep or asyncio.sleep
        self._log = get_contextual_logger("fleet", run_id=run.id)

    def __repr__(self) -> str:
        return f"<FleetPatrolController(run_id={self.run_id!r}, status={self.status.value})>"

    @property
    def run_id(self) -> str | None:
        return self.run_record.id

    @property
    def status(self) -> RunStatus:
        return self.run_record.status

    @property
    def targets(self) -> list[PatrolTarget]:
        return self.run_record.targets

    @property
    def batch_size(self) -> int:
        return min(len(self.pool) * self.config.batch_multiplier, self.config.batch_size_cap)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        urls: str | Iterable[str],
        *,
        config: SessionConfig,
        fetcher: PageFetcher,
        classifier: Classifier,
        pool: CredentialPool,
        store: SessionStore,
        label: str | None = None,
        **kwargs: Any,
    ) -> "FleetPatrolController":
        """Create a fleet run record for ``urls``.

        Raises:
            ConfigError: If no usable URL is given
        """
        targets = parse_target_urls(urls)
        if not targets:
            raise ConfigError("No target URLs given; each line must start with http")

        run = PatrolRun(
            mode=PatrolMode.FLEET,
            label=label or f"Fleet patrol ({len(targets)} shops)",
            targets=[PatrolTarget(url=url) for url in targets],
            status=RunStatus.PROCESSING,
        )
        controller = cls(
            config,
            run,
            fetcher=fetcher,
            classifier=classifier,
            pool=pool,
            store=store,
            **kwargs,
        )

        def create() -> None:
            run.id = store.create(run)

        if controller._store_call(create):
            controller._log = controller._log.with_context(run_id=run.id)
            controller._log.info(f"Created fleet run {run.id} with {len(targets)} targets")
        return controller

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
    ) -> "FleetPatrolController":
        """Reload a fleet run; interrupted targets go back to WAITING.

        Raises:
            ControllerStateError: If the run is missing or not a fleet run
            PersistenceError: If storage cannot be read
        """
        run = store.get(run_id, include_items=False)
        if run is None:
            raise ControllerStateError(f"Run not found: {run_id}")
        if run.mode != PatrolMode.FLEET:
            raise ControllerStateError(f"Run {run_id} is a {run.mode.value} run")

        for target in run.targets:
            if target.status == TargetStatus.PROCESSING:
                target.status = TargetStatus.WAITING

        controller = cls(
            config,
            run,
            fetcher=fetcher,
            classifier=classifier,
            pool=pool,
            store=store,
            **kwargs,
        )
        remaining = sum(1 for t in run.targets if t.status == TargetStatus.WAITING)
        controller._log.info(f"Resumed fleet run with {remaining} targets remaining")
        return controller

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def pause(self) -> None:
        """Ask the running loop to stop at the next batch or page boundary."""
        if not self._running or self._token is None:
            raise ControllerStateError("Fleet run is not running")
        self._token.cancel("pause requested")

    def retry_target(self, index: int) -> PatrolTarget:
        """Put an ERROR target back in the queue for the next ``run()``.

        The target continues from where it failed rather than from page 1.
        """
        if self._running:
            raise ControllerStateError("Cannot retry a target while the run is active")
        try:
            target = self.targets[index]
        except IndexError:
            raise ControllerStateError(f"No target at index {index}") from None
        if target.status != TargetStatus.ERROR:
            raise ControllerStateError(
                f"Target {index} is {target.status.value}; only ERROR targets can be retried"
            )

        target.status = TargetStatus.WAITING
        target.error_message = None
        if self.run_record.status == RunStatus.COMPLETED:
            self.run_record.status = RunStatus.PAUSED
        self._flush()
        self._log.info(f"Target {index} re-queued: {target.url}")
        return target

    async def run(self, token: CancellationToken | None = None) -> RunStatus:
        """Process every WAITING target in order.

        Returns:
            PAUSED if stopped, otherwise COMPLETED

        Raises:
            Exception: Anything escaping the loop itself; the run is stored as ERROR
        """
        if self._running:
            raise ControllerStateError("Fleet run is already running")

        self._running = True
        self._token = token or CancellationToken()
        self.run_record.status = RunStatus.PROCESSING
        self.run_record.error_message = None
        self._flush()

        stopped = False
        scanned_any = False
        try:
            for index, target in enumerate(self.targets):
                if target.status in (TargetStatus.COMPLETED, TargetStatus.ERROR):
                    continue
                if self._token.cancelled:
                    stopped = True
                    break

                if scanned_any and self.config.target_pause_ms > 0:
                    await self._sleep(self.config.target_pause_ms / 1000.0)
                scanned_any = True

                outcome = await self._scan_target(index, target)
                if outcome == ScanOutcome.STOPPED:
                    stopped = True
                    break
        except Exception as e:
            self.run_record.status = RunStatus.ERROR
            self.run_record.error_message = str(e)
            self._log.exception("Fleet loop crashed")
            self._flush()
            raise
        finally:
            self._running = False
            self._current_index = None

        if stopped:
            self.run_record.status = RunStatus.PAUSED
            self._log.info("Fleet run paused")
        else:
            self.run_record.status = RunStatus.COMPLETED
            self.run_record.checkpoint = {}
            failed = sum(1 for t in self.targets if t.status == TargetStatus.ERROR)
            summary = self.run_record.summary
            self._log.info(
                f"Fleet run completed: {summary.total} items, {summary.high_risk_count} high risk, "
                f"{summary.critical_count} critical, {failed} targets failed"
            )
        self._flush()
        return self.run_record.status

    # -------------------------------------------------------------------------
    # Per-target scan
    # -------------------------------------------------------------------------

    def _start_cursor(self, index: int, target: PatrolTarget) -> ScanCursor | None:
        checkpoint = self.run_record.checkpoint
        if checkpoint.get("target_index") == index:
            return ScanCursor.from_dict(checkpoint)
        if target.checkpoint:
            return ScanCursor.from_dict(target.checkpoint)
        return None

    async def _scan_target(self, index: int, target: PatrolTarget) -> ScanOutcome:
        assert self._token is not None
        cursor = self._start_cursor(index, target)
        if cursor is None:
            cursor = ScanCursor()
            target.item_count = 0

        log = self._log.with_context(target=target.url)
        self._current_index = index
        target.status = TargetStatus.PROCESSING
        target.error_message = None
        target.checkpoint = {}
        self.run_record.checkpoint = {"target_index": index, **cursor.to_dict()}
        self._flush()
        log.info(f"Target {index + 1}/{len(self.targets)} from page {cursor.page}")

        self._tracker.begin(target.item_count)
        scan = TargetScan(
            target.url,
            fetcher=self.fetcher,
            classifier=self.classifier,
            pool=self.pool,
            batch_size=self.batch_size,
            max_pages=self.config.fleet_max_pages,
            max_consecutive_failures=self.config.max_consecutive_page_failures,
            batch_pause=self.config.batch_pause_ms / 1000.0,
            cursor=cursor,
            processed=target.item_count,
            on_batch=self._on_batch,
            on_page=self._on_page,
            run_id=self.run_id,
            sleep=self._sleep,
        )

        try:
            outcome = await scan.run(self._token)
        except Exception as e:
            log.exception(f"Target {index} failed")
            self._mark_error(target, scan, str(e), scan.cursor)
            return ScanOutcome.FAILED

        target.item_count = scan.processed

        if outcome == ScanOutcome.STOPPED:
            self.run_record.checkpoint = {"target_index": index, **scan.cursor.to_dict()}
            self._flush()
        elif outcome == ScanOutcome.FAILED:
            log.error(f"Target {index} failed: {scan.error_message}")
            self._mark_error(
                target,
                scan,
                scan.error_message or "page fetch failures",
                scan.failure_cursor or scan.cursor,
            )
        else:
            target.status = TargetStatus.COMPLETED
            self.run_record.checkpoint = {}
            self._flush()
            log.info(f"Target {index} completed with {target.item_count} items")
        return outcome

    def _mark_error(
        self,
        target: PatrolTarget,
        scan: TargetScan,
        message: str,
        cursor: ScanCursor,
    ) -> None:
        target.status = TargetStatus.ERROR
        target.error_message = message
        target.item_count = scan.processed
        target.checkpoint = cursor.to_dict()
        self.run_record.checkpoint = {}
        self._flush()

    def _on_batch(self, scan: TargetScan, items: list[ScannedItem]) -> None:
        self.run_record.summary.add(items)
        if self._current_index is not None:
            self.targets[self._current_index].item_count = scan.processed
        if self.config.store_all_items:
            self._pending.extend(items)
        else:
            self._pending.extend(item for item in items if item.is_risk_bearing)
        self._emit(scan)

    def _on_page(self, scan: TargetScan) -> None:
        if scan.pages_done % self.config.checkpoint_every_pages != 0:
            return
        self.run_record.checkpoint = {"target_index": self._current_index, **scan.cursor.to_dict()}
        self._flush()

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def _emit(self, scan: TargetScan) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            self._tracker.snapshot(
                scan.processed,
                scan.total_count or 0,
                page=scan.cursor.page,
                target=scan.target,
                target_index=self._current_index,
                targets_total=len(self.targets),
            )
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _flush(self) -> None:
        """Write the run record plus pending items in one update."""
        if self.run_id is None:
            self._pending = []
            return

        run = self.run_record
        changes: dict[str, Any] = {
            "status": run.status,
            "targets": [t.to_dict() for t in run.targets],
            "summary": run.summary,
            "checkpoint": dict(run.checkpoint),
            "error_message": run.error_message,
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
