"""Tests for the fleet patrol controller."""

import pytest

from shoppatrol.core.config import ConfigError
from shoppatrol.core.orchestrator import (
    CancellationToken,
    ControllerStateError,
    FleetPatrolController,
    parse_target_urls,
)
from shoppatrol.core.records import RiskAssessment, RiskLevel, RunStatus, TargetStatus

from .conftest import StubClassifier, StubFetcher, high_verdict, make_products, no_sleep

SHOP_A = "https://www.rakuten.co.jp/shop-a/"
SHOP_B = "https://www.rakuten.co.jp/shop-b/"
SHOP_C = "https://www.rakuten.co.jp/shop-c/"


class Crash(BaseException):
    """Stands in for the process dying mid-batch."""


def _create(session_config, pool, store, fetcher, classifier, urls=(SHOP_A, SHOP_B)):
    return FleetPatrolController.create(
        "\n".join(urls),
        config=session_config,
        fetcher=fetcher,
        classifier=classifier,
        pool=pool,
        store=store,
        sleep=no_sleep,
    )


def _resume(session_config, pool, store, run_id, fetcher, classifier):
    return FleetPatrolController.resume(
        run_id,
        config=session_config,
        fetcher=fetcher,
        classifier=classifier,
        pool=pool,
        store=store,
        sleep=no_sleep,
    )


def _alternating(product):
    index = int(product.name.rsplit("-", 1)[1])
    if index % 2 == 0:
        return RiskAssessment.judged(RiskLevel.HIGH, reason="logo")
    return RiskAssessment.judged(RiskLevel.LOW)


def test_parse_target_urls():
    text = f"  {SHOP_A}  \n\nnot a url\n# comment\n{SHOP_B}\n"
    assert parse_target_urls(text) == [SHOP_A, SHOP_B]


def test_create_requires_targets(session_config, pool, store):
    with pytest.raises(ConfigError):
        _create(session_config, pool, store, StubFetcher({}), StubClassifier(), urls=["nope"])


async def test_runs_every_target(session_config, pool, store):
    fetcher = StubFetcher({SHOP_A: make_products(40, "a"), SHOP_B: make_products(25, "b")})
    controller = _create(session_config, pool, store, fetcher, StubClassifier(high_verdict))

    assert controller.run_record.label == "Fleet patrol (2 shops)"
    assert await controller.run() == RunStatus.COMPLETED

    stored = store.get(controller.run_id)
    assert stored.status == RunStatus.COMPLETED
    assert [t.status for t in stored.targets] == [TargetStatus.COMPLETED] * 2
    assert [t.item_count for t in stored.targets] == [40, 25]
    assert stored.summary.total == 65
    assert stored.summary.high_risk_count == 65
    assert stored.checkpoint == {}


async def test_only_risk_bearing_items_stored(session_config, pool, store):
    fetcher = StubFetcher({SHOP_A: make_products(20, "a")})
    controller = _create(
        session_config, pool, store, fetcher, StubClassifier(_alternating), urls=[SHOP_A]
    )

    await controller.run()

    stored = store.get(controller.run_id)
    assert stored.summary.total == 20
    assert len(stored.items) == 10
    assert all(i.risk_level == RiskLevel.HIGH for i in stored.items)


async def test_store_all_items(session_config, pool, store):
    session_config.store_all_items = True
    fetcher = StubFetcher({SHOP_A: make_products(20, "a")})
    controller = _create(
        session_config, pool, store, fetcher, StubClassifier(_alternating), urls=[SHOP_A]
    )

    await controller.run()

    assert store.count_items(controller.run_id) == 20


async def test_failing_targets_do_not_stop_the_fleet(session_config, pool, store):
    fetcher = StubFetcher(
        {SHOP_A: make_products(10, "a"), SHOP_B: make_products(10, "b"), SHOP_C: make_products(70, "c")},
        crash_targets={SHOP_A},
        fail_pages={(SHOP_C, 1), (SHOP_C, 2), (SHOP_C, 3)},
    )
    controller = _create(
        session_config, pool, store, fetcher, StubClassifier(), urls=[SHOP_A, SHOP_B, SHOP_C]
    )

    assert await controller.run() == RunStatus.COMPLETED

    stored = store.get(controller.run_id)
    a, b, c = stored.targets
    assert a.status == TargetStatus.ERROR
    assert "catalog exploded" in a.error_message
    assert b.status == TargetStatus.COMPLETED
    assert c.status == TargetStatus.ERROR
    assert c.checkpoint == {"page": 1, "page_offset": 0}


async def test_stop_and_resume_loses_nothing(session_config, pool, store):
    catalogs = {SHOP_A: make_products(100, "a"), SHOP_B: make_products(100, "b")}
    token = CancellationToken()
    first_classifier = StubClassifier(high_verdict, on_call=lambda n: n == 50 and token.cancel())
    controller = _create(session_config, pool, store, StubFetcher(catalogs), first_classifier)

    assert await controller.run(token) == RunStatus.PAUSED

    stored = store.get(controller.run_id)
    assert stored.status == RunStatus.PAUSED
    assert stored.checkpoint == {"target_index": 0, "page": 2, "page_offset": 24}
    assert stored.summary.total == 54
    assert len(stored.items) == 54

    # Resuming and stopping straight away changes nothing
    idle = _resume(session_config, pool, store, controller.run_id, StubFetcher(catalogs), StubClassifier())
    cancelled = CancellationToken()
    cancelled.cancel()
    assert await idle.run(cancelled) == RunStatus.PAUSED
    assert store.get(controller.run_id).checkpoint == stored.checkpoint

    classifier = StubClassifier(high_verdict)
    resumed = _resume(session_config, pool, store, controller.run_id, StubFetcher(catalogs), classifier)
    assert await resumed.run() == RunStatus.COMPLETED

    final = store.get(controller.run_id)
    assert len(classifier.calls) == 146
    assert final.summary.total == 200
    assert len(final.items) == 200
    assert [t.item_count for t in final.targets] == [100, 100]


async def test_crash_resumes_from_last_checkpoint(session_config, pool, store):
    session_config.checkpoint_every_pages = 1
    catalogs = {SHOP_A: make_products(100, "a")}

    def crash_at(n):
        if n == 50:
            raise Crash()

    controller = _create(
        session_config,
        pool,
        store,
        StubFetcher(catalogs),
        StubClassifier(high_verdict, on_call=crash_at),
        urls=[SHOP_A],
    )
    with pytest.raises(Crash):
        await controller.run()

    stored = store.get(controller.run_id)
    assert stored.status == RunStatus.PROCESSING
    assert stored.checkpoint == {"target_index": 0, "page": 2, "page_offset": 0}
    assert stored.summary.total == 30

    classifier = StubClassifier(high_verdict)
    resumed = _resume(session_config, pool, store, controller.run_id, StubFetcher(catalogs), classifier)
    assert resumed.targets[0].status == TargetStatus.WAITING
    assert await resumed.run() == RunStatus.COMPLETED

    final = store.get(controller.run_id)
    assert len(classifier.calls) == 70
    assert final.summary.total == 100
    assert len(final.items) == 100


async def test_retry_target_continues_where_it_failed(session_config, pool, store):
    fetcher = StubFetcher(
        {SHOP_A: make_products(100, "a")},
        fail_pages={(SHOP_A, 2), (SHOP_A, 3), (SHOP_A, 4)},
    )
    classifier = StubClassifier(high_verdict)
    controller = _create(session_config, pool, store, fetcher, classifier, urls=[SHOP_A])

    assert await controller.run() == RunStatus.COMPLETED
    target = controller.targets[0]
    assert target.status == TargetStatus.ERROR
    assert target.item_count == 30
    assert target.checkpoint == {"page": 2, "page_offset": 0}

    with pytest.raises(ControllerStateError):
        controller.retry_target(1)

    controller.retry_target(0)
    assert controller.status == RunStatus.PAUSED
    assert store.get(controller.run_id).targets[0].status == TargetStatus.WAITING

    fetcher.fail_pages.clear()
    assert await controller.run() == RunStatus.COMPLETED

    final = store.get(controller.run_id)
    assert final.targets[0].status == TargetStatus.COMPLETED
    assert final.targets[0].item_count == 100
    assert final.summary.total == 100
    assert len(classifier.calls) == 100
    assert len(final.items) == 100


async def test_retry_target_rejects_healthy_targets(session_config, pool, store):
    fetcher = StubFetcher({SHOP_A: make_products(5, "a")})
    controller = _create(session_config, pool, store, fetcher, StubClassifier(), urls=[SHOP_A])
    await controller.run()

    with pytest.raises(ControllerStateError):
        controller.retry_target(0)


def test_resume_rejects_single_runs(session_config, pool, store):
    from shoppatrol.core.records import PatrolMode, PatrolRun

    run_id = store.create(PatrolRun(mode=PatrolMode.SINGLE, label=SHOP_A))
    with pytest.raises(ControllerStateError):
        _resume(session_config, pool, store, run_id, StubFetcher({}), StubClassifier())
