"""
Cooperative cancellation.

Run loops poll the token between batches and between pages only; an
in-flight batch always completes before the loop stops.
"""

from __future__ import annotations


class CancellationToken:
    """Flag a caller sets to ask a running loop to stop."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def __repr__(self) -> str:
        return f"<CancellationToken(cancelled={self._cancelled})>"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def reset(self) -> None:
        self._cancelled = False
        self.reason = None
