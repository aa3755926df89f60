"""
Backend base classes and errors.

Defines the shared HTTP client lifecycle and the error taxonomy used by the
catalog and classification backends.
"""

from __future__ import annotations

from typing import Any

import httpx

USER_AGENT = "shoppatrol/0.1 (+https://github.com/shoppatrol/shoppatrol)"


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ApiBackend:
    """Base class owning an ``httpx.AsyncClient``.

    A client passed in by the caller is shared and never closed here; one
    created lazily is owned and closed by ``close()``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def name(self) -> str:
        return type(self).__name__

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                limits=httpx.Limits(
                    max_connections=100,
                    max_keepalive_connections=20,
                ),
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiBackend":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


# =============================================================================
# Errors
# =============================================================================


class BackendError(Exception):
    """Base exception for backend errors."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.cause = cause


class FetchError(BackendError):
    """Catalog page could not be fetched or understood."""
    pass


class RateLimitError(FetchError):
    """Catalog API answered 429; carries the server's Retry-After hint."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, url, status_code=429)
        self.retry_after = retry_after


class ClassifierError(BackendError):
    """Classification request failed in a way retrying will not fix."""
    pass


class TransientClassifierError(ClassifierError):
    """Classification failed with 429, 5xx, a timeout or a transport error."""
    pass
