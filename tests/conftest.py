"""Shared fixtures: stub backends, a temp-file store and a fast session config."""

from __future__ import annotations

import asyncio
import random
from typing import Callable

import pytest

from shoppatrol.core.backends import CatalogPage, CredentialPool, FetchError
from shoppatrol.core.config import SessionConfig
from shoppatrol.core.records import ProductRecord, RiskAssessment, RiskLevel
from shoppatrol.persistence.gateway import SqlSessionStore

PAGE_SIZE = 30


def make_products(count: int, prefix: str = "item") -> list[ProductRecord]:
    return [
        ProductRecord(
            name=f"{prefix}-{i:03d}",
            image_url=f"https://img.example/{prefix}/{i}.jpg",
            canonical_url=f"https://item.example/{prefix}/{i}",
            price=1000.0 + i,
            source_item_id=f"{prefix}:{i}",
        )
        for i in range(count)
    ]


async def no_sleep(_seconds: float) -> None:
    return None


class StubFetcher:
    """Serves a fixed catalog per target, 30 items per page."""

    def __init__(
        self,
        catalogs: dict[str, list[ProductRecord]],
        *,
        reported_totals: dict[str, int] | None = None,
        fail_pages: set[tuple[str, int]] | None = None,
        crash_targets: set[str] | None = None,
    ) -> None:
        self.catalogs = catalogs
        self.reported_totals = reported_totals or {}
        self.fail_pages = fail_pages or set()
        self.crash_targets = crash_targets or set()
        self.calls: list[tuple[str, int]] = []

    async def fetch_page(self, target: str, page: int) -> CatalogPage:
        self.calls.append((target, page))
        if target in self.crash_targets:
            raise RuntimeError(f"catalog exploded for {target}")
        if (target, page) in self.fail_pages:
            raise FetchError(f"page {page} unavailable", url=target, status_code=503)

        products = self.catalogs.get(target, [])
        start = (page - 1) * PAGE_SIZE
        chunk = products[start : start + PAGE_SIZE]
        return CatalogPage(
            products=chunk,
            total_count=self.reported_totals.get(target, len(products)),
            page_count=(len(products) + PAGE_SIZE - 1) // PAGE_SIZE,
            page=page,
        )


Verdict = Callable[[ProductRecord], RiskAssessment]


def low_verdict(product: ProductRecord) -> RiskAssessment:
    return RiskAssessment.judged(RiskLevel.LOW, reason="looks fine", raw_backend_label="low")


def high_verdict(product: ProductRecord) -> RiskAssessment:
    return RiskAssessment.judged(RiskLevel.HIGH, reason="brand logo", raw_backend_label="high")


class StubClassifier:
    """Returns verdicts from a function and records concurrency."""

    def __init__(
        self,
        verdict: Verdict = low_verdict,
        *,
        on_call: Callable[[int], None] | None = None,
    ) -> None:
        self.verdict = verdict
        self.on_call = on_call
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def classify(self, product, pool, attempt: int = 0) -> RiskAssessment:
        self.calls.append(product.name)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return self.verdict(product)
        finally:
            self.in_flight -= 1


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        credentials=["key-a", "key-b"],
        catalog_auth_token="app-id",
        backoff_base_ms=0,
        backoff_jitter_ms=0,
        batch_pause_ms=0,
        target_pause_ms=0,
    )


@pytest.fixture
def pool() -> CredentialPool:
    return CredentialPool(["key-a", "key-b"], rng=random.Random(7))


@pytest.fixture
def store(tmp_path) -> SqlSessionStore:
    return SqlSessionStore.from_url(f"sqlite:///{tmp_path / 'patrol.db'}")
