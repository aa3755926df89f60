"""
Result aggregation and CSV export.

The result set is append-only; the one sanctioned mutation is replacing an
ERROR entry in place when failed items are retried.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, Iterator

from shoppatrol.core.records import RiskLevel, RunSummary, ScannedItem

CSV_HEADER = ("Name", "Risk", "Reason", "URL")
BOM = "﻿"


class ResultSet:
    """Ordered, append-only collection of scanned items."""

    def __init__(self, items: Iterable[ScannedItem] = ()) -> None:
        self._items: list[ScannedItem] = list(items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ScannedItem]:
        return iter(self._items)

    def __getitem__(self, index: int) -> ScannedItem:
        return self._items[index]

    @property
    def items(self) -> list[ScannedItem]:
        return list(self._items)

    def append(self, items: Iterable[ScannedItem]) -> list[ScannedItem]:
        """Append a batch and return it."""
        batch = list(items)
        self._items.extend(batch)
        return batch

    def replace(self, index: int, item: ScannedItem) -> None:
        """Replace an ERROR entry with its reclassified version.

        Raises:
            ValueError: If the entry at ``index`` is not an ERROR
        """
        current = self._items[index]
        if current.risk_level != RiskLevel.ERROR:
            raise ValueError(f"Item {index} is {current.risk_level.value}, only ERROR items can be replaced")
        self._items[index] = item

    def summary(self) -> RunSummary:
        summary = RunSummary()
        summary.add(self._items)
        return summary

    def risk_bearing(self) -> list[ScannedItem]:
        return [item for item in self._items if item.is_risk_bearing]

    def failed_indexes(self) -> list[int]:
        return [i for i, item in enumerate(self._items) if item.risk_level == RiskLevel.ERROR]


# =============================================================================
# CSV
# =============================================================================


def to_csv(items: Iterable[ScannedItem]) -> str:
    """Render items as a BOM-prefixed CSV document.

    Every field is quoted; embedded quotes are doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(CSV_HEADER)
    for item in items:
        writer.writerow([
            item.product.name,
            item.risk_level.value,
            item.assessment.reason,
            item.product.canonical_url or "",
        ])
    return BOM + buffer.getvalue()


def write_csv(items: Iterable[ScannedItem], path: Path) -> int:
    """Write items to ``path`` and return the number of rows written."""
    rows = list(items)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_csv(rows), encoding="utf-8", newline="")
    return len(rows)


def read_csv(source: str | Path) -> list[dict[str, str]]:
    """Parse an export back into rows keyed by header.

    Accepts the CSV text itself or a path to a file.
    """
    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8")
    else:
        text = source
    text = text.removeprefix(BOM)
    return list(csv.DictReader(io.StringIO(text, newline="")))
