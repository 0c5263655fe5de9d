import json
from decimal import Decimal

import httpx
import pytest

from app.core.catalog_client import CatalogClient, CatalogError, parse_variant_id


def make_client(handler, max_retries=2) -> CatalogClient:
    return CatalogClient(
        store_url="https://shop.example.com/",
        consumer_key="ck_test",
        consumer_secret="cs_test",
        rate_limit_rps=0,
        max_retries=max_retries,
        initial_delay=0,
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
@pytest.mark.parametrize("variant_id, expected", [
    ("12", (12, None)),
    ("12:34", (12, 34)),
    (" 7 ", (7, None)),
])
def test_parse_variant_id(variant_id, expected):
    assert parse_variant_id(variant_id) == expected


@pytest.mark.unit
@pytest.mark.parametrize("variant_id", ["", "abc", "1:2:3", "1:", "-1"])
def test_parse_variant_id_rejects(variant_id):
    with pytest.raises(ValueError):
        parse_variant_id(variant_id)


@pytest.mark.unit
def test_requires_credentials():
    with pytest.raises(ValueError):
        CatalogClient(store_url="https://shop.example.com", consumer_key="", consumer_secret="x")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_sends_regular_price_only():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 1})

    client = make_client(handler)
    await client.update_variant_price("10", Decimal("9"))
    await client.update_variant_price("10:22", Decimal("19.5"))
    await client.close()

    assert [r.method for r in requests] == ["PATCH", "PATCH"]
    assert requests[0].url.path == "/wp-json/wc/v3/products/10"
    assert requests[1].url.path == "/wp-json/wc/v3/products/10/variations/22"
    assert json.loads(requests[0].content) == {"regular_price": "9.00"}
    assert json.loads(requests[1].content) == {"regular_price": "19.50"}
    assert requests[0].headers["authorization"].startswith("Basic ")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retries_rate_limited_requests():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={})

    client = make_client(handler)
    assert await client.update_variant_price("10", Decimal("5")) is True
    await client.close()
    assert len(calls) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_exhausted_retries_raise_retryable_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="maintenance")

    client = make_client(handler, max_retries=2)
    with pytest.raises(CatalogError) as exc:
        await client.update_variant_price("10", Decimal("5"))
    await client.close()

    assert len(calls) == 3
    assert exc.value.retryable
    assert exc.value.status_code == 503


@pytest.mark.unit
@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

    client = make_client(handler)
    with pytest.raises(CatalogError) as exc:
        await client.update_variant_price("10", Decimal("5"))
    await client.close()

    assert len(calls) == 1
    assert not exc.value.retryable
    assert exc.value.status_code == 404


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_errors_are_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={})

    client = make_client(handler, max_retries=2)
    assert await client.update_variant_price("10", Decimal("5"))
    await client.close()
    assert len(calls) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_variants_reads_simple_and_variations():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/wp-json/wc/v3/products":
            assert request.url.params["include"] == "10,11"
            return httpx.Response(200, json=[
                {"id": 10, "name": "Mug", "sku": "MUG", "regular_price": "12.50"},
                {"id": 11, "name": "Cap", "sku": "", "regular_price": ""},
            ])
        if path == "/wp-json/wc/v3/products/20":
            return httpx.Response(200, json={"id": 20, "name": "Shirt"})
        if path == "/wp-json/wc/v3/products/20/variations":
            return httpx.Response(200, json=[
                {
                    "id": 21,
                    "sku": "SHIRT-M-RED",
                    "regular_price": "30",
                    "attributes": [{"name": "Size", "option": "M"}, {"name": "Color", "option": "Red"}]
                },
            ])
        if path == "/wp-json/wc/v3/products/30":
            return httpx.Response(404, json={})
        return httpx.Response(500)

    client = make_client(handler)
    variants = await client.get_variants(["10", "11", "20:21", "30:31", "bogus"])
    await client.close()

    by_id = {v.variant_id: v for v in variants}
    assert set(by_id) == {"10", "11", "20:21"}
    assert by_id["10"].price == Decimal("12.50")
    assert by_id["10"].sku == "MUG"
    assert by_id["11"].price is None
    assert by_id["11"].sku is None
    assert by_id["20:21"].product_title == "Shirt"
    assert by_id["20:21"].variant_title == "M / Red"
    assert by_id["20:21"].price == Decimal("30")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_expand_products_follows_variation_pages():
    pages = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/wp-json/wc/v3/products":
            assert request.url.params["include"] == "10,20,99"
            return httpx.Response(200, json=[
                {"id": 10, "type": "simple", "name": "Mug", "sku": "MUG", "regular_price": "12.50"},
                {"id": 20, "type": "variable", "name": "Shirt", "regular_price": ""},
            ])
        if path == "/wp-json/wc/v3/products/20/variations":
            page = int(request.url.params["page"])
            pages.append(page)
            count = 100 if page == 1 else 2
            start = (page - 1) * 100
            return httpx.Response(200, json=[
                {"id": 1000 + start + i, "sku": "", "regular_price": "30"} for i in range(count)
            ])
        return httpx.Response(500)

    client = make_client(handler)
    variants = await client.expand_products(["10", "20", "99", "bogus", "10"])
    await client.close()

    assert pages == [1, 2]
    assert len(variants) == 103
    assert variants[0].variant_id == "10"
    assert variants[0].price == Decimal("12.50")
    assert variants[1].variant_id == "20:1000"
    assert variants[-1].variant_id == "20:1101"
    assert all(v.product_title == "Shirt" for v in variants[1:])
