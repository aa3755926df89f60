"""Fetch utilities - throttling and retries."""

from .throttling import RateLimitConfig, RateLimiter
from .retries import RetryConfig, backoff_wait, build_retrying

__all__ = [
    "RateLimitConfig",
    "RateLimiter",
    "RetryConfig",
    "backoff_wait",
    "build_retrying",
]
