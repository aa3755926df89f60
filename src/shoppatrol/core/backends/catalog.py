"""
Catalog page fetcher.

Fetches one page of a shop's listings from the catalog search API and
normalizes the known response shapes into ``ProductRecord`` objects:

- Ichiba search, format version 1: ``{"Items": [{"Item": {...}}], "count", "pageCount"}``
- Ichiba search, format version 2: ``{"Items": [{...}], "count", "pageCount"}``
- Patrol proxy: ``{"products": [{"productName", ...}], "count", "pageCount"}``

An empty product list is the end-of-data signal; anything unrecognizable is
a ``FetchError``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from shoppatrol.core.fetch.retries import RetryConfig, build_retrying
from shoppatrol.core.fetch.throttling import RateLimiter
from shoppatrol.core.records import ProductRecord

from .base import ApiBackend, FetchError, RateLimitError, is_retryable_status

logger = logging.getLogger(__name__)

# Image tiers in order of preference
IMAGE_TIERS = ("mediumImageUrls", "smallImageUrls")

# Path segments that are not shop codes
NON_SHOP_SEGMENTS = frozenset({"gold"})


class TransientFetchError(FetchError):
    """Fetch failure worth retrying (429, 5xx, transport)."""
    pass


@dataclass
class CatalogPage:
    """One normalized page of catalog results."""

    products: list[ProductRecord] = field(default_factory=list)
    total_count: int = 0
    page_count: int | None = None
    page: int = 1

    @property
    def is_empty(self) -> bool:
        return not self.products


# =============================================================================
# Normalization
# =============================================================================


def extract_shop_code(target: str) -> str:
    """Reduce a storefront URL to its shop code; bare codes pass through.

    ``https://www.rakuten.co.jp/shop-a/`` and
    ``https://www.rakuten.co.jp/gold/shop-a/`` both give ``shop-a``.
    """
    target = target.strip()
    if "://" not in target:
        return target.strip("/")

    parsed = urlparse(target)
    parts = [p for p in parsed.path.split("/") if p]
    for part in parts:
        if part not in NON_SHOP_SEGMENTS:
            return part
    return target


def _first_image(item: dict[str, Any]) -> str | None:
    for tier in IMAGE_TIERS:
        entries = item.get(tier) or []
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if isinstance(entry, dict):
                url = entry.get("imageUrl")
            else:
                url = entry
            if isinstance(url, str) and url:
                return url
    return None


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _normalize_ichiba_item(wrapper: Any) -> ProductRecord | None:
    item = wrapper.get("Item", wrapper) if isinstance(wrapper, dict) else None
    if not isinstance(item, dict):
        return None
    name = item.get("itemName")
    if not name:
        return None
    return ProductRecord(
        name=str(name),
        image_url=_first_image(item),
        canonical_url=_as_str(item.get("itemUrl")),
        price=_as_float(item.get("itemPrice")),
        source_item_id=_as_str(item.get("itemCode")),
    )


def _normalize_proxy_product(product: Any) -> ProductRecord | None:
    if not isinstance(product, dict):
        return None
    name = product.get("productName") or product.get("name")
    if not name:
        return None
    image_url = product.get("imageUrl") or _first_image(product)
    return ProductRecord(
        name=str(name),
        image_url=_as_str(image_url),
        canonical_url=_as_str(product.get("itemUrl") or product.get("url")),
        price=_as_float(product.get("price")),
        source_item_id=_as_str(product.get("itemCode") or product.get("id")),
    )


def normalize_catalog_payload(payload: Any, page: int = 1) -> CatalogPage:
    """Map any known catalog response shape onto a ``CatalogPage``.

    Raises:
        FetchError: If the payload matches no known shape, or every entry
            on a non-empty page lacks a product name
    """
    if not isinstance(payload, dict):
        raise FetchError(f"Unexpected catalog payload type: {type(payload).__name__}")

    if "Items" in payload:
        raw_items = payload["Items"]
        normalizer = _normalize_ichiba_item
    elif "products" in payload:
        raw_items = payload["products"]
        normalizer = _normalize_proxy_product
    else:
        raise FetchError(
            f"Unrecognized catalog response shape (keys: {sorted(payload)[:8]})"
        )

    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise FetchError("Catalog item list is not an array")

    products: list[ProductRecord] = []
    for raw in raw_items:
        product = normalizer(raw)
        if product is None:
            logger.warning("Skipping catalog entry without a product name on page %d", page)
            continue
        products.append(product)

    if raw_items and not products:
        raise FetchError(f"None of the {len(raw_items)} catalog entries on page {page} had a product name")

    total = payload.get("count", payload.get("totalCount", payload.get("hits")))
    page_count = payload.get("pageCount")

    return CatalogPage(
        products=products,
        total_count=int(total or 0),
        page_count=int(page_count) if page_count is not None else None,
        page=page,
    )


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(
            body.get("error_description")
            or body.get("error")
            or body.get("message")
            or f"HTTP {response.status_code}"
        )
    return f"HTTP {response.status_code}"


# =============================================================================
# Fetcher
# =============================================================================


class CatalogFetcher(ApiBackend):
    """Fetches and normalizes one page of a shop's catalog."""

    def __init__(
        self,
        auth_token: str,
        *,
        endpoint: str,
        page_size: int = 30,
        timeout: float = 30.0,
        retry: RetryConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.auth_token = auth_token
        self.endpoint = endpoint
        self.page_size = page_size
        self.retry = copy.copy(retry or RetryConfig(limit=2))
        self.retry.retry_exceptions = (TransientFetchError, RateLimitError)
        self.rate_limiter = rate_limiter

    @classmethod
    def from_config(cls, config: Any, client: httpx.AsyncClient | None = None) -> "CatalogFetcher":
        """Build from a ``SessionConfig``."""
        from shoppatrol.core.fetch.throttling import RateLimitConfig

        return cls(
            config.catalog_auth_token,
            endpoint=config.catalog_url,
            page_size=config.page_size,
            timeout=config.catalog_timeout_ms / 1000.0,
            retry=RetryConfig(
                limit=config.catalog_retry_limit,
                base_wait=config.backoff_base_ms / 1000.0,
                jitter=config.backoff_jitter_ms / 1000.0,
            ),
            rate_limiter=RateLimiter(RateLimitConfig(min_interval_ms=config.catalog_min_interval_ms)),
            client=client,
        )

    async def fetch_page(self, target: str, page: int) -> CatalogPage:
        """Fetch one page of a target's listings.

        Args:
            target: Shop URL or shop code
            page: 1-based page number

        Returns:
            CatalogPage; ``products`` is empty past the last page

        Raises:
            FetchError: On network failure, non-2xx status or unknown shape
        """
        params = {
            "applicationId": self.auth_token,
            "shopCode": extract_shop_code(target),
            "page": str(page),
            "hits": str(self.page_size),
        }

        async for attempt in build_retrying(self.retry):
            with attempt:
                payload = await self._request(params)
                return normalize_catalog_payload(payload, page=page)

        raise FetchError("Catalog retry loop ended without a result", url=self.endpoint)

    async def _request(self, params: dict[str, str]) -> Any:
        client = await self._ensure_client()

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(self.endpoint)

        try:
            response = await client.get(self.endpoint, params=params)
        except httpx.TransportError as e:
            raise TransientFetchError(
                f"Catalog transport error: {e}",
                url=self.endpoint,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                f"Catalog request failed: {e}",
                url=self.endpoint,
                cause=e,
            ) from e

        if response.status_code == 429:
            retry_after = _retry_after(response)
            raise RateLimitError(
                f"Catalog API rate limited: {_error_description(response)}",
                url=self.endpoint,
                retry_after=retry_after,
            )

        if is_retryable_status(response.status_code):
            raise TransientFetchError(
                f"Catalog API {response.status_code}: {_error_description(response)}",
                url=self.endpoint,
                status_code=response.status_code,
            )

        if not response.is_success:
            raise FetchError(
                f"Catalog API {response.status_code}: {_error_description(response)}",
                url=self.endpoint,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                "Catalog API returned a non-JSON body",
                url=self.endpoint,
                status_code=response.status_code,
                cause=e,
            ) from e
