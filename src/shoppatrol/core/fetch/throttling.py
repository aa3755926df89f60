"""
Rate limiting for catalog requests.

Catalog APIs meter requests per application id, so consecutive requests to
the same host are spaced by a minimum interval with a little jitter.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import defaultdict
from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    min_interval_ms: int = 1000
    jitter_ms: int = 100


class RateLimiter:
    """Per-host minimum-interval limiter.

    Async-safe: requests to one host are serialized through a lock while the
    spacing is enforced, then released to run concurrently.
    """

    def __init__(self, config: RateLimitConfig | None = None):
        self.config = config or RateLimitConfig()
        self._last_request: dict[str, float] = defaultdict(float)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def _interval(self) -> float:
        if self.config.min_interval_ms <= 0:
            return 0.0
        jitter = random.randint(0, self.config.jitter_ms) if self.config.jitter_ms else 0
        return (self.config.min_interval_ms + jitter) / 1000.0

    async def acquire(self, url: str) -> None:
        """Block until it is polite to send the next request to this host."""
        host = self._get_host(url)

        async with self._locks[host]:
            interval = self._interval()
            if interval > 0:
                elapsed = time.monotonic() - self._last_request[host]
                if elapsed < interval:
                    await asyncio.sleep(interval - elapsed)
            self._last_request[host] = time.monotonic()
