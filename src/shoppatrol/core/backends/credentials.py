"""
Credential pool for the classification backend.

Each logical item starts at a random credential and shifts by one on every
retry, which spreads load across quotas and keeps a retry from landing on
the key that just got rate limited.
"""

from __future__ import annotations

import random
from typing import Iterable, Sequence

from shoppatrol.core.config.loader import ConfigError
from shoppatrol.core.config.models import clean_credential


class CredentialPool:
    """Non-empty, read-only sequence of interchangeable API credentials."""

    def __init__(self, credentials: Iterable[str], rng: random.Random | None = None) -> None:
        cleaned = tuple(c for c in (clean_credential(raw) for raw in credentials) if c)
        if not cleaned:
            raise ConfigError("Credential pool is empty; configure at least one API key")
        self._credentials: tuple[str, ...] = cleaned
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._credentials)

    def __repr__(self) -> str:
        return f"<CredentialPool(size={len(self)})>"

    @property
    def credentials(self) -> Sequence[str]:
        return self._credentials

    def random_start(self) -> int:
        """Fresh random starting index for one logical item."""
        return self._rng.randrange(len(self._credentials))

    def select(self, attempt: int = 0, start: int | None = None) -> str:
        """Pick the credential for ``attempt``, shifted from ``start``."""
        if start is None:
            start = self.random_start()
        return self._credentials[(start + attempt) % len(self._credentials)]
