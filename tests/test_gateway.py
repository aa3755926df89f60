"""Tests for the SQL session store."""

import time

import pytest

from shoppatrol.core.records import (
    PatrolMode,
    PatrolRun,
    PatrolTarget,
    ProductRecord,
    RiskAssessment,
    RiskLevel,
    RunStatus,
    RunSummary,
    ScannedItem,
)
from shoppatrol.persistence.gateway import PersistenceError

SHOP = "https://www.rakuten.co.jp/shop-a/"


def _item(code: str, level: RiskLevel = RiskLevel.HIGH) -> ScannedItem:
    if level == RiskLevel.ERROR:
        assessment = RiskAssessment.error("timeout")
    else:
        assessment = RiskAssessment.judged(level, reason=f"reason {code}")
    return ScannedItem(
        product=ProductRecord(name=f"Item {code}", source_item_id=code, price=100.0),
        assessment=assessment,
        target_url=SHOP,
    )


def _run(mode=PatrolMode.SINGLE, **kwargs) -> PatrolRun:
    return PatrolRun(mode=mode, label=SHOP, targets=[PatrolTarget(url=SHOP)], **kwargs)


def test_create_and_get(store):
    run_id = store.create(_run(items=[_item("1"), _item("2", RiskLevel.LOW)]))

    run = store.get(run_id)

    assert run.id == run_id
    assert run.mode == PatrolMode.SINGLE
    assert run.status == RunStatus.PROCESSING
    assert run.targets == [PatrolTarget(url=SHOP)]
    assert [i.product.name for i in run.items] == ["Item 1", "Item 2"]
    assert run.items[0] == _item("1")
    assert store.get(run_id, include_items=False).items == []


def test_get_missing_run(store):
    assert store.get("does-not-exist") is None


def test_update_unions_items(store):
    run_id = store.create(_run())

    store.update(run_id, {"status": RunStatus.PROCESSING}, union_items=[_item("1"), _item("2")])
    store.update(
        run_id,
        {"status": RunStatus.PAUSED, "checkpoint": {"page": 2, "page_offset": 0}},
        union_items=[_item("2"), _item("3")],
    )

    run = store.get(run_id)
    assert run.status == RunStatus.PAUSED
    assert run.checkpoint == {"page": 2, "page_offset": 0}
    assert [i.product.source_item_id for i in run.items] == ["1", "2", "3"]
    assert store.count_items(run_id) == 3


def test_update_replaces_assessments(store):
    run_id = store.create(_run(items=[_item("1", RiskLevel.ERROR), _item("2")]))

    fixed = _item("1", RiskLevel.CRITICAL)
    store.update(
        run_id,
        {"summary": RunSummary(total=2, high_risk_count=2, critical_count=1)},
        replace_items=[fixed],
    )

    run = store.get(run_id)
    assert run.items[0].risk_level == RiskLevel.CRITICAL
    assert run.items[0].is_critical
    assert run.summary == RunSummary(total=2, high_risk_count=2, critical_count=1)
    assert len(run.items) == 2


def test_update_missing_run_raises(store):
    with pytest.raises(PersistenceError):
        store.update("does-not-exist", {"status": RunStatus.PAUSED})


def test_update_rejects_unknown_fields(store):
    run_id = store.create(_run())
    with pytest.raises(ValueError):
        store.update(run_id, {"mode": "FLEET"})


def test_list_runs_newest_first_with_filters(store):
    first = store.create(_run())
    time.sleep(0.01)
    second = store.create(_run(mode=PatrolMode.FLEET))
    time.sleep(0.01)
    third = store.create(_run(status=RunStatus.COMPLETED))

    assert [r.id for r in store.list_runs()] == [third, second, first]
    assert [r.id for r in store.list_runs(mode=PatrolMode.FLEET)] == [second]
    assert [r.id for r in store.list_runs(status=RunStatus.COMPLETED)] == [third]
    assert len(store.list_runs(limit=2)) == 2


async def test_watch_yields_on_change(store):
    run_id = store.create(_run())
    seen = []

    async for runs in store.watch(interval=0, max_polls=3):
        seen.append([(r.id, r.status) for r in runs])
        if len(seen) == 1:
            store.update(run_id, {"status": RunStatus.PAUSED})

    assert seen == [
        [(run_id, RunStatus.PROCESSING)],
        [(run_id, RunStatus.PAUSED)],
    ]


def test_open_store_uses_configured_pool_size(tmp_path, monkeypatch):
    from shoppatrol.cli.context import open_store
    from shoppatrol.core.config import AppConfig, DatabaseConfig
    from shoppatrol.persistence import db

    seen = []
    create = db.create_db_engine

    def recording_create(url, echo=False, pool_size=5):
        seen.append(pool_size)
        return create(url, echo=echo, pool_size=pool_size)

    monkeypatch.setattr(db, "create_db_engine", recording_create)
    config = AppConfig(
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'pooled.db'}", pool_size=12)
    )

    store = open_store(config)

    assert seen == [12]
    assert store.list_runs() == []
