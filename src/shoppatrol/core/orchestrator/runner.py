"""
Shared page/batch scanning loop.

Coordinates the per-target workflow used by both controllers:
fetch page → split into batches → classify concurrently → hand results back.

The loop owns pagination, termination and cooperative stopping. What to do
with results (accumulate, checkpoint, persist) is left to the hooks the
controller passes in.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from shoppatrol.core.backends.base import FetchError
from shoppatrol.core.backends.catalog import CatalogPage
from shoppatrol.core.backends.credentials import CredentialPool
from shoppatrol.core.logging import get_contextual_logger
from shoppatrol.core.records import ProductRecord, RiskAssessment, ScannedItem

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def fetch_page(self, target: str, page: int) -> CatalogPage: ...


class Classifier(Protocol):
    async def classify(
        self, product: ProductRecord, pool: CredentialPool, attempt: int = 0
    ) -> RiskAssessment: ...


class ScanOutcome(str, Enum):
    """How a target scan ended."""

    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


@dataclass
class ScanCursor:
    """Resume position: the page to fetch and how much of it is consumed."""

    page: int = 1
    page_offset: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"page": self.page, "page_offset": self.page_offset}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ScanCursor":
        data = data or {}
        return cls(
            page=max(1, int(data.get("page") or 1)),
            page_offset=max(0, int(data.get("page_offset") or 0)),
        )


@dataclass
class ScanStats:
    """Statistics for one target scan."""

    pages_fetched: int = 0
    pages_skipped: int = 0
    batches: int = 0
    items: int = 0

    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pages_fetched": self.pages_fetched,
            "pages_skipped": self.pages_skipped,
            "batches": self.batches,
            "items": self.items,
            "duration_seconds": self.duration_seconds,
        }


BatchHook = Callable[["TargetScan", list[ScannedItem]], None]
PageHook = Callable[["TargetScan"], None]


async def classify_batch(
    classifier: Classifier,
    pool: CredentialPool,
    products: list[ProductRecord],
    target: str,
) -> list[ScannedItem]:
    """Classify a batch concurrently; results keep the input order."""
    assessments = await asyncio.gather(
        *(classifier.classify(product, pool) for product in products)
    )
    return [
        ScannedItem(product=product, assessment=assessment, target_url=target)
        for product, assessment in zip(products, assessments)
    ]


class TargetScan:
    """Paginates one target, classifying each page in bounded batches.

    The loop ends when a page comes back empty, when ``processed`` reaches
    the catalog's total count, or when the page cap is passed. A failed page
    fetch is skipped; ``max_consecutive_failures`` skips in a row fail the
    whole target.
    """

    def __init__(
        self,
        target: str,
        *,
        fetcher: PageFetcher,
        classifier: Classifier,
        pool: CredentialPool,
        batch_size: int,
        max_pages: int,
        max_consecutive_failures: int = 3,
        batch_pause: float = 0.0,
        cursor: ScanCursor | None = None,
        processed: int = 0,
        total_count: int | None = None,
        first_page: CatalogPage | None = None,
        on_batch: BatchHook | None = None,
        on_page: PageHook | None = None,
        run_id: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.target = target
        self.fetcher = fetcher
        self.classifier = classifier
        self.pool = pool
        self.batch_size = batch_size
        self.max_pages = max_pages
        self.max_consecutive_failures = max_consecutive_failures
        self.batch_pause = batch_pause
        self.cursor = cursor or ScanCursor()
        self.processed = processed
        self.total_count = total_count
        self.on_batch = on_batch
        self.on_page = on_page
        self.stats = ScanStats()
        self.error_message: str | None = None
        # Cursor where the current run of failed pages began
        self.failure_cursor: ScanCursor | None = None
        self._first_page = first_page
        self._sleep = sleep or asyncio.sleep
        self._log = get_contextual_logger("orchestrator", target=target, run_id=run_id)

    @property
    def pages_done(self) -> int:
        """Pages fully consumed or skipped in this scan."""
        return self.stats.pages_fetched + self.stats.pages_skipped

    async def run(self, token: CancellationToken | None = None) -> ScanOutcome:
        token = token or CancellationToken()
        consecutive_failures = 0

        try:
            while self.cursor.page <= self.max_pages:
                if token.cancelled:
                    return ScanOutcome.STOPPED

                page_number = self.cursor.page
                try:
                    page = await self._load_page(page_number)
                except FetchError as e:
                    if consecutive_failures == 0:
                        self.failure_cursor = ScanCursor(page_number, 0)
                    consecutive_failures += 1
                    self.stats.pages_skipped += 1
                    self.stats.errors.append(f"page {page_number}: {e}")
                    self._log.warning(
                        f"Skipping page {page_number} ({consecutive_failures} in a row): {e}",
                        extra={"page": page_number},
                    )
                    if consecutive_failures >= self.max_consecutive_failures:
                        self.error_message = (
                            f"{consecutive_failures} consecutive page failures, last: {e}"
                        )
                        return ScanOutcome.FAILED
                    self._advance_page()
                    continue

                consecutive_failures = 0
                self.failure_cursor = None
                self.stats.pages_fetched += 1

                if page.is_empty:
                    self._log.debug(f"Page {page_number} is empty, end of catalog")
                    return ScanOutcome.COMPLETED

                if self.total_count is None or page.total_count > self.total_count:
                    self.total_count = page.total_count

                stopped = await self._consume(page, token)
                if stopped:
                    return ScanOutcome.STOPPED

                self._log.debug(
                    f"Page {page_number}: {len(page.products)} items, processed={self.processed}",
                    extra={"page": page_number},
                )
                self._advance_page()

                if self.total_count and self.processed >= self.total_count:
                    return ScanOutcome.COMPLETED

            self._log.info(f"Reached page cap ({self.max_pages})")
            return ScanOutcome.COMPLETED
        finally:
            self.stats.finished_at = datetime.utcnow()

    async def _load_page(self, page_number: int) -> CatalogPage:
        if self._first_page is not None and self._first_page.page == page_number:
            page, self._first_page = self._first_page, None
            return page
        self._first_page = None
        return await self.fetcher.fetch_page(self.target, page_number)

    async def _consume(self, page: CatalogPage, token: CancellationToken) -> bool:
        """Classify the rest of a page. Returns True if stopped part-way."""
        products = page.products
        while self.cursor.page_offset < len(products):
            if token.cancelled:
                return True

            start = self.cursor.page_offset
            batch = products[start : start + self.batch_size]
            items = await classify_batch(self.classifier, self.pool, batch, self.target)

            self.cursor.page_offset += len(batch)
            self.processed += len(items)
            self.stats.batches += 1
            self.stats.items += len(items)

            if self.on_batch is not None:
                self.on_batch(self, items)

            if self.batch_pause > 0:
                await self._sleep(self.batch_pause)
        return False

    def _advance_page(self) -> None:
        self.cursor = ScanCursor(page=self.cursor.page + 1, page_offset=0)
        if self.on_page is not None:
            self.on_page(self)
