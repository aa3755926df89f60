"""Tests for catalog normalization and the page fetcher."""

import httpx
import pytest

from shoppatrol.core.backends import (
    CatalogFetcher,
    FetchError,
    RateLimitError,
    extract_shop_code,
    normalize_catalog_payload,
)
from shoppatrol.core.fetch.retries import RetryConfig

from .conftest import no_sleep

ENDPOINT = "http://catalog.test/search"


@pytest.mark.parametrize(
    "target, expected",
    [
        ("https://www.rakuten.co.jp/shop-a/", "shop-a"),
        ("https://www.rakuten.co.jp/gold/shop-a/", "shop-a"),
        ("https://www.rakuten.co.jp/shop-a/item/123", "shop-a"),
        (" shop-b/ ", "shop-b"),
    ],
)
def test_extract_shop_code(target, expected):
    assert extract_shop_code(target) == expected


class TestNormalize:
    def test_wrapped_items(self):
        payload = {
            "count": 2,
            "pageCount": 1,
            "Items": [
                {"Item": {
                    "itemName": "Tote",
                    "itemUrl": "https://item/1",
                    "itemPrice": 3980,
                    "itemCode": "shop-a:1",
                    "mediumImageUrls": [{"imageUrl": "https://img/m1.jpg"}],
                    "smallImageUrls": [{"imageUrl": "https://img/s1.jpg"}],
                }},
                {"Item": {"itemName": "Cap", "smallImageUrls": [{"imageUrl": "https://img/s2.jpg"}]}},
            ],
        }
        page = normalize_catalog_payload(payload, page=1)

        assert page.total_count == 2
        assert page.page_count == 1
        tote, cap = page.products
        assert tote.name == "Tote"
        assert tote.image_url == "https://img/m1.jpg"
        assert tote.price == 3980.0
        assert tote.source_item_id == "shop-a:1"
        assert cap.image_url == "https://img/s2.jpg"

    def test_flat_items(self):
        payload = {"count": 1, "Items": [{"itemName": "Wallet", "mediumImageUrls": ["https://img/w.jpg"]}]}
        page = normalize_catalog_payload(payload)
        assert [p.name for p in page.products] == ["Wallet"]
        assert page.products[0].image_url == "https://img/w.jpg"
        assert page.page_count is None

    def test_proxy_products(self):
        payload = {"count": 1, "products": [{"productName": "Scarf", "imageUrl": "https://img/x.jpg"}]}
        page = normalize_catalog_payload(payload)
        assert page.products[0].name == "Scarf"
        assert page.products[0].image_url == "https://img/x.jpg"

    def test_missing_image_is_none(self):
        page = normalize_catalog_payload({"Items": [{"itemName": "Plain"}]})
        assert page.products[0].image_url is None

    def test_empty_items_is_end_of_data(self):
        page = normalize_catalog_payload({"count": 40, "Items": []}, page=3)
        assert page.is_empty
        assert page.total_count == 40

    def test_entries_without_name_are_skipped(self):
        page = normalize_catalog_payload({"Items": [{"itemName": ""}, {"itemName": "Ok"}]})
        assert [p.name for p in page.products] == ["Ok"]

    def test_page_of_nameless_entries_raises(self):
        with pytest.raises(FetchError):
            normalize_catalog_payload({"count": 60, "Items": [{"itemName": ""}, {"Item": {"itemPrice": 100}}]}, page=2)

    @pytest.mark.parametrize("payload", [[], {"error": "nope"}, {"Items": "x"}])
    def test_unknown_shape_raises(self, payload):
        with pytest.raises(FetchError):
            normalize_catalog_payload(payload)


def _fetcher(handler) -> CatalogFetcher:
    return CatalogFetcher(
        "app-id",
        endpoint=ENDPOINT,
        retry=RetryConfig(limit=2, base_wait=0, jitter=0, sleep=no_sleep),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestFetchPage:
    async def test_query_parameters(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 0, "Items": []})

        page = await _fetcher(handler).fetch_page("https://www.rakuten.co.jp/gold/shop-a/", 3)

        assert page.is_empty
        assert page.page == 3
        params = seen[0].url.params
        assert params["applicationId"] == "app-id"
        assert params["shopCode"] == "shop-a"
        assert params["page"] == "3"
        assert params["hits"] == "30"

    async def test_server_errors_are_retried(self):
        statuses = [503, 502]

        def handler(request):
            if statuses:
                return httpx.Response(statuses.pop(0))
            return httpx.Response(200, json={"count": 1, "Items": [{"itemName": "Tote"}]})

        page = await _fetcher(handler).fetch_page("shop-a", 1)

        assert [p.name for p in page.products] == ["Tote"]

    async def test_retry_exhaustion_raises(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(FetchError) as exc_info:
            await _fetcher(handler).fetch_page("shop-a", 1)
        assert exc_info.value.status_code == 500

    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error_description": "wrong shop"})

        with pytest.raises(FetchError, match="wrong shop"):
            await _fetcher(handler).fetch_page("shop-a", 1)
        assert len(calls) == 1

    async def test_non_json_body_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html></html>")

        with pytest.raises(FetchError):
            await _fetcher(handler).fetch_page("shop-a", 1)

    async def test_rate_limit_honors_retry_after(self):
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        responses = [httpx.Response(429, headers={"Retry-After": "2"})]

        def handler(request):
            if responses:
                return responses.pop(0)
            return httpx.Response(200, json={"count": 1, "Items": [{"itemName": "Tote"}]})

        fetcher = CatalogFetcher(
            "app-id",
            endpoint=ENDPOINT,
            retry=RetryConfig(limit=2, base_wait=0, jitter=0, sleep=record_sleep),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        page = await fetcher.fetch_page("shop-a", 1)

        assert [p.name for p in page.products] == ["Tote"]
        assert sleeps == [2.0]

    async def test_rate_limit_exhaustion_is_a_fetch_error(self):
        def handler(request):
            return httpx.Response(429)

        with pytest.raises(RateLimitError) as exc_info:
            await _fetcher(handler).fetch_page("shop-a", 1)
        assert isinstance(exc_info.value, FetchError)
        assert exc_info.value.retry_after is None

    async def test_redirect_loop_is_a_fetch_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(302, headers={"Location": str(request.url)})

        fetcher = CatalogFetcher(
            "app-id",
            endpoint=ENDPOINT,
            retry=RetryConfig(limit=2, base_wait=0, jitter=0, sleep=no_sleep),
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(handler), follow_redirects=True, max_redirects=3
            ),
        )
        with pytest.raises(FetchError, match="redirect"):
            await fetcher.fetch_page("shop-a", 1)
        assert len(calls) == 4
