"""
Retry utilities with tenacity.

Builds bounded retry loops with exponential backoff plus jitter for the
catalog and classification clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

logger = logging.getLogger(__name__)


DEFAULT_RETRY_LIMIT = 3
DEFAULT_BASE_WAIT = 0.5  # seconds
DEFAULT_JITTER = 0.5  # seconds
DEFAULT_MAX_WAIT = 30  # seconds

SleepFn = Callable[[float], Awaitable[Any]]


class RetryConfig:
    """Configuration for retry behavior.

    ``limit`` counts retries, so a call makes at most ``limit + 1`` attempts.
    The wait before retry ``n`` (0-based) is ``base * 2**n`` plus a uniform
    jitter in ``[0, jitter]``.
    """

    def __init__(
        self,
        limit: int = DEFAULT_RETRY_LIMIT,
        base_wait: float = DEFAULT_BASE_WAIT,
        jitter: float = DEFAULT_JITTER,
        max_wait: float = DEFAULT_MAX_WAIT,
        retry_exceptions: tuple[type[BaseException], ...] | None = None,
        sleep: SleepFn | None = None,
    ):
        """Initialize retry configuration.

        Args:
            limit: Retries after the first attempt
            base_wait: Backoff base in seconds
            jitter: Upper bound of the random jitter in seconds
            max_wait: Cap on the exponential component
            retry_exceptions: Exception types to retry on
            sleep: Awaitable sleep, injectable for tests
        """
        self.limit = limit
        self.base_wait = base_wait
        self.jitter = jitter
        self.max_wait = max_wait
        self.retry_exceptions = retry_exceptions or (Exception,)
        self.sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self.limit + 1


def backoff_wait(config: RetryConfig, offset: int = 0) -> Any:
    """Tenacity wait strategy for ``base * 2**(offset + n) + jitter``.

    ``offset`` lets a caller that already spent attempts elsewhere continue
    the same backoff curve.
    """
    exponential = wait_exponential(
        multiplier=config.base_wait * (2 ** offset),
        exp_base=2,
        min=0,
        max=config.max_wait,
    )
    if config.jitter > 0:
        return exponential + wait_random(0, config.jitter)
    return exponential


def wait_retry_after(fallback: Any, max_wait: float) -> Any:
    """Prefer a server's ``retry_after`` hint over ``fallback`` when one came back."""

    def _wait(retry_state: Any) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None and outcome.failed else None
        hint = getattr(exc, "retry_after", None)
        if hint:
            return min(float(hint), max_wait)
        return fallback(retry_state)

    return _wait


def build_retrying(
    config: RetryConfig,
    *,
    offset: int = 0,
    log_level: int = logging.WARNING,
) -> AsyncRetrying:
    """Create an AsyncRetrying loop for the remaining attempt budget.

    Args:
        config: Retry configuration
        offset: Attempts already spent before this loop starts
        log_level: Level for the before-sleep log line

    Returns:
        AsyncRetrying that re-raises the last exception on exhaustion
    """
    remaining = max(1, config.max_attempts - offset)
    return AsyncRetrying(
        stop=stop_after_attempt(remaining),
        wait=wait_retry_after(backoff_wait(config, offset), config.max_wait),
        retry=retry_if_exception_type(config.retry_exceptions),
        before_sleep=before_sleep_log(logger, log_level),
        sleep=config.sleep,
        reraise=True,
    )
