"""
Domain records for patrol runs.

Products come out of the catalog fetcher, assessments out of the risk
classifier, and the two are joined into scanned items that make up a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


MAX_REASON_LENGTH = 200


# =============================================================================
# Enums
# =============================================================================


class RiskLevel(str, Enum):
    """Canonical risk tiers."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"


# Tiers that do not make an item risk-bearing
LOW_TIERS = frozenset({RiskLevel.NONE, RiskLevel.LOW})
HIGH_TIERS = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})


class TargetStatus(str, Enum):
    """Lifecycle of one patrol target."""

    WAITING = "WAITING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class RunStatus(str, Enum):
    """Lifecycle of a persisted patrol run."""

    PROCESSING = "PROCESSING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class PatrolMode(str, Enum):
    SINGLE = "SINGLE"
    FLEET = "FLEET"


# =============================================================================
# Products and assessments
# =============================================================================


@dataclass(frozen=True)
class ProductRecord:
    """One catalog listing under review."""

    name: str
    image_url: str | None = None
    canonical_url: str | None = None
    price: float | None = None
    source_item_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "image_url": self.image_url,
            "canonical_url": self.canonical_url,
            "price": self.price,
            "source_item_id": self.source_item_id,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Output of one classification.

    ``is_critical`` is true exactly when ``risk_level`` is CRITICAL; an
    ERROR assessment is a failure placeholder that can be retried.
    """

    risk_level: RiskLevel
    is_critical: bool = False
    reason: str = ""
    raw_backend_label: str = ""

    def __post_init__(self) -> None:
        if self.is_critical != (self.risk_level == RiskLevel.CRITICAL):
            raise ValueError(
                f"is_critical={self.is_critical} is inconsistent with risk_level={self.risk_level.value}"
            )
        if len(self.reason) > MAX_REASON_LENGTH:
            object.__setattr__(self, "reason", self.reason[: MAX_REASON_LENGTH - 1] + "…")

    @classmethod
    def judged(
        cls,
        risk_level: RiskLevel,
        *,
        is_critical: bool = False,
        reason: str = "",
        raw_backend_label: str = "",
    ) -> "RiskAssessment":
        """Build an assessment from a backend verdict.

        A backend that flags an item critical promotes it to CRITICAL
        regardless of the tier it named.
        """
        if is_critical and risk_level != RiskLevel.ERROR:
            risk_level = RiskLevel.CRITICAL
        return cls(
            risk_level=risk_level,
            is_critical=risk_level == RiskLevel.CRITICAL,
            reason=reason,
            raw_backend_label=raw_backend_label,
        )

    @classmethod
    def error(cls, reason: str, raw_backend_label: str = "") -> "RiskAssessment":
        return cls(
            risk_level=RiskLevel.ERROR,
            reason=reason,
            raw_backend_label=raw_backend_label,
        )

    @property
    def is_retriable(self) -> bool:
        return self.risk_level == RiskLevel.ERROR


# =============================================================================
# Scanned items
# =============================================================================


@dataclass(frozen=True)
class ScannedItem:
    """A product joined with its assessment and the target it came from."""

    product: ProductRecord
    assessment: RiskAssessment
    target_url: str

    @property
    def risk_level(self) -> RiskLevel:
        return self.assessment.risk_level

    @property
    def is_critical(self) -> bool:
        return self.assessment.is_critical

    @property
    def is_risk_bearing(self) -> bool:
        return self.assessment.risk_level not in LOW_TIERS

    @property
    def item_key(self) -> str:
        """Stable identity used to deduplicate stored items within a run."""
        ident = self.product.source_item_id or self.product.canonical_url or self.product.name
        return f"{self.target_url}|{ident}"

    def with_assessment(self, assessment: RiskAssessment) -> "ScannedItem":
        return replace(self, assessment=assessment)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.product.to_dict(),
            "target_url": self.target_url,
            "risk_level": self.assessment.risk_level.value,
            "is_critical": self.assessment.is_critical,
            "reason": self.assessment.reason,
            "raw_backend_label": self.assessment.raw_backend_label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScannedItem":
        level = RiskLevel(data.get("risk_level", RiskLevel.ERROR.value))
        return cls(
            product=ProductRecord(
                name=data.get("name") or "",
                image_url=data.get("image_url"),
                canonical_url=data.get("canonical_url"),
                price=data.get("price"),
                source_item_id=data.get("source_item_id"),
            ),
            assessment=RiskAssessment(
                risk_level=level,
                is_critical=level == RiskLevel.CRITICAL,
                reason=data.get("reason") or "",
                raw_backend_label=data.get("raw_backend_label") or "",
            ),
            target_url=data.get("target_url") or "",
        )


# =============================================================================
# Targets and runs
# =============================================================================


@dataclass
class PatrolTarget:
    """One catalog root to scan."""

    url: str
    status: TargetStatus = TargetStatus.WAITING
    item_count: int = 0
    error_message: str | None = None
    # Where to pick up again after an ERROR, used by target retries
    checkpoint: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status.value,
            "item_count": self.item_count,
            "error_message": self.error_message,
            "checkpoint": dict(self.checkpoint),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatrolTarget":
        return cls(
            url=data["url"],
            status=TargetStatus(data.get("status", TargetStatus.WAITING.value)),
            item_count=int(data.get("item_count") or 0),
            error_message=data.get("error_message"),
            checkpoint=dict(data.get("checkpoint") or {}),
        )


@dataclass
class RunSummary:
    """Headline counts for a run."""

    total: int = 0
    high_risk_count: int = 0
    critical_count: int = 0

    def add(self, items: list[ScannedItem]) -> None:
        """Fold a batch of freshly scanned items into the counts."""
        self.total += len(items)
        self.high_risk_count += sum(1 for i in items if i.risk_level in HIGH_TIERS)
        self.critical_count += sum(1 for i in items if i.is_critical)

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "high_risk_count": self.high_risk_count,
            "critical_count": self.critical_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RunSummary":
        data = data or {}
        return cls(
            total=int(data.get("total") or 0),
            high_risk_count=int(data.get("high_risk_count") or 0),
            critical_count=int(data.get("critical_count") or 0),
        )


@dataclass
class PatrolRun:
    """The unit of persistence and resumability."""

    mode: PatrolMode
    label: str
    targets: list[PatrolTarget] = field(default_factory=list)
    status: RunStatus = RunStatus.PROCESSING
    summary: RunSummary = field(default_factory=RunSummary)
    checkpoint: dict[str, Any] = field(default_factory=dict)
    items: list[ScannedItem] = field(default_factory=list)
    error_message: str | None = None
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def completed_targets(self) -> list[PatrolTarget]:
        return [t for t in self.targets if t.status == TargetStatus.COMPLETED]
