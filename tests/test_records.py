"""Tests for domain records."""

import pytest

from shoppatrol.core.records import (
    MAX_REASON_LENGTH,
    PatrolTarget,
    ProductRecord,
    RiskAssessment,
    RiskLevel,
    RunSummary,
    ScannedItem,
    TargetStatus,
)


def _item(level: RiskLevel, name: str = "thing") -> ScannedItem:
    return ScannedItem(
        product=ProductRecord(name=name, source_item_id=f"id-{name}"),
        assessment=RiskAssessment.judged(level, is_critical=level == RiskLevel.CRITICAL),
        target_url="https://www.rakuten.co.jp/shop-a/",
    )


class TestRiskAssessment:
    def test_inconsistent_critical_flag_rejected(self):
        with pytest.raises(ValueError):
            RiskAssessment(risk_level=RiskLevel.HIGH, is_critical=True)
        with pytest.raises(ValueError):
            RiskAssessment(risk_level=RiskLevel.CRITICAL, is_critical=False)

    def test_backend_critical_flag_promotes_tier(self):
        assessment = RiskAssessment.judged(RiskLevel.MEDIUM, is_critical=True, reason="counterfeit")
        assert assessment.risk_level == RiskLevel.CRITICAL
        assert assessment.is_critical

    def test_error_is_never_promoted(self):
        assessment = RiskAssessment.judged(RiskLevel.ERROR, is_critical=True)
        assert assessment.risk_level == RiskLevel.ERROR
        assert not assessment.is_critical
        assert assessment.is_retriable

    def test_reason_is_bounded(self):
        assessment = RiskAssessment.judged(RiskLevel.LOW, reason="x" * 500)
        assert len(assessment.reason) == MAX_REASON_LENGTH


class TestScannedItem:
    def test_item_key_prefers_source_id(self):
        item = _item(RiskLevel.LOW, name="bag")
        assert item.item_key == "https://www.rakuten.co.jp/shop-a/|id-bag"

    def test_item_key_falls_back_to_name(self):
        item = ScannedItem(
            product=ProductRecord(name="bag"),
            assessment=RiskAssessment.judged(RiskLevel.LOW),
            target_url="t",
        )
        assert item.item_key == "t|bag"

    def test_risk_bearing(self):
        assert not _item(RiskLevel.NONE).is_risk_bearing
        assert not _item(RiskLevel.LOW).is_risk_bearing
        assert _item(RiskLevel.MEDIUM).is_risk_bearing
        assert _item(RiskLevel.ERROR).is_risk_bearing

    def test_dict_round_trip(self):
        item = _item(RiskLevel.CRITICAL, name="watch")
        restored = ScannedItem.from_dict(item.to_dict())
        assert restored == item


def test_summary_counts_high_and_critical():
    summary = RunSummary()
    summary.add([
        _item(RiskLevel.LOW, "a"),
        _item(RiskLevel.HIGH, "b"),
        _item(RiskLevel.CRITICAL, "c"),
        _item(RiskLevel.ERROR, "d"),
    ])
    assert summary.total == 4
    assert summary.high_risk_count == 2
    assert summary.critical_count == 1


def test_target_round_trip_keeps_checkpoint():
    target = PatrolTarget(
        url="https://www.rakuten.co.jp/shop-a/",
        status=TargetStatus.ERROR,
        item_count=12,
        error_message="boom",
        checkpoint={"page": 3, "page_offset": 0},
    )
    assert PatrolTarget.from_dict(target.to_dict()) == target
