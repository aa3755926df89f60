"""
Progress and ETA tracking.

Throughput is measured over the current session only, so a resumed run
does not count items processed before the restart as instantaneous work.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a run's progress."""

    processed: int
    total: int
    page: int = 1
    throughput: float = 0.0  # items per second
    eta_seconds: float | None = None
    target: str | None = None
    target_index: int | None = None
    targets_total: int | None = None

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(100.0, self.processed * 100.0 / self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "total": self.total,
            "page": self.page,
            "percent": round(self.percent, 1),
            "throughput": round(self.throughput, 3),
            "eta_seconds": self.eta_seconds,
            "target": self.target,
            "target_index": self.target_index,
            "targets_total": self.targets_total,
        }


class ProgressTracker:
    """Computes throughput and ETA from an injectable monotonic clock."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._started_at: float | None = None
        self._baseline = 0

    def begin(self, processed: int = 0) -> None:
        """Start a measuring session at ``processed`` items."""
        self._started_at = self._clock()
        self._baseline = processed

    def throughput(self, processed: int) -> float:
        if self._started_at is None:
            return 0.0
        elapsed = self._clock() - self._started_at
        done = processed - self._baseline
        if elapsed <= 0 or done <= 0:
            return 0.0
        return done / elapsed

    def eta(self, processed: int, total: int) -> float | None:
        """Seconds remaining as ``(total - processed) / throughput``."""
        rate = self.throughput(processed)
        if rate <= 0:
            return None
        return max(0, total - processed) / rate

    def snapshot(self, processed: int, total: int, **context: Any) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=processed,
            total=total,
            throughput=self.throughput(processed),
            eta_seconds=self.eta(processed, total),
            **context,
        )
