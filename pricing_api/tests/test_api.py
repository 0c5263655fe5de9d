"""
HTTP tests for the v1 price and schedule routes.

The schedule service is swapped in through FastAPI dependency overrides so
requests run against fakeredis and the in-memory catalog.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from app.core.catalog_client import CatalogError
from app.core.plan_limits import PlanTier
from app.deps import get_schedule_service
from app.main import app

from conftest import OTHER_TENANT, TENANT

ADJUSTMENT = {"direction": "decrease", "amount_kind": "percentage", "percentage": 10, "rounding": "nearest_whole"}


@pytest_asyncio.fixture
async def client(service):
    app.dependency_overrides[get_schedule_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


def schedules_url(tenant_id=TENANT) -> str:
    return f"/api/v1/tenants/{tenant_id}/schedules"


def submission(mode="now", **window):
    return {
        "items": [{"variant_id": "101"}, {"variant_id": "102"}],
        "adjustment": ADJUSTMENT,
        "schedule": {"mode": mode, **window}
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_preview(client, catalog):
    response = await client.post(
        f"/api/v1/tenants/{TENANT}/prices/preview",
        json={"items": [{"variant_id": "101"}, {"variant_id": "103:7"}], "adjustment": ADJUSTMENT}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["item_count"] == 2
    assert [float(i["new_price"]) for i in body["items"]] == [9.0, 23.0]
    assert catalog.updates == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_preview_rejects_incomplete_adjustment(client):
    response = await client.post(
        f"/api/v1/tenants/{TENANT}/prices/preview",
        json={"items": [{"variant_id": "101"}], "adjustment": {"direction": "decrease", "amount_kind": "percentage"}}
    )
    assert response.status_code == 422


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_now_and_read_back(client):
    response = await client.post(schedules_url(), json=submission())
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "done"

    listing = (await client.get(schedules_url())).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == created["id"]

    detail = await client.get(f"{schedules_url()}/{created['id']}")
    assert detail.status_code == 200
    assert detail.json()["schedule"]["item_count"] == 2
    assert detail.json()["items"][0]["sku"] == "SKU-101"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_other_tenant_gets_404(client):
    created = (await client.post(schedules_url(), json=submission())).json()

    response = await client.get(f"{schedules_url(OTHER_TENANT)}/{created['id']}")
    assert response.status_code == 404


@pytest.mark.unit
@pytest.mark.asyncio
async def test_validation_failure_names_rule(client):
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    response = await client.post(schedules_url(), json=submission("later", run_at=past))

    assert response.status_code == 422
    assert response.json()["detail"]["rule"] == "run_at_not_future"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_plan_denial_is_403(client, plans):
    plans.plans[TENANT] = PlanTier.FREE
    future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    response = await client.post(schedules_url(), json=submission("later", run_at=future))

    assert response.status_code == 403
    assert response.json()["detail"]["limit"] == "scheduling"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_idempotency_key_header(client):
    future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    headers = {"Idempotency-Key": "promo-42"}

    first = await client.post(schedules_url(), json=submission("later", run_at=future), headers=headers)
    assert first.status_code == 201
    assert first.json()["status"] == "pending"

    second = await client.post(schedules_url(), json=submission("later", run_at=future), headers=headers)
    assert second.status_code == 409
    assert second.json()["detail"]["schedule_id"] == first.json()["id"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_of_done_schedule_conflicts(client):
    created = (await client.post(schedules_url(), json=submission())).json()

    response = await client.post(f"{schedules_url()}/{created['id']}/retry")
    assert response.status_code == 409


@pytest.mark.unit
@pytest.mark.asyncio
async def test_catalog_failure_is_502(client, catalog):
    async def unavailable(variant_ids):
        raise CatalogError("HTTP 503 after 4 retries", status_code=503, retryable=True)

    catalog.get_variants = unavailable
    response = await client.post(
        f"/api/v1/tenants/{TENANT}/prices/preview",
        json={"items": [{"variant_id": "101"}], "adjustment": ADJUSTMENT}
    )
    assert response.status_code == 502


@pytest.mark.unit
@pytest.mark.asyncio
async def test_preview_by_product(client):
    response = await client.post(
        f"/api/v1/tenants/{TENANT}/prices/preview",
        json={"items": [{"product_id": "103"}], "adjustment": ADJUSTMENT}
    )

    assert response.status_code == 200
    assert [i["variant_id"] for i in response.json()["items"]] == ["103:7"]


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("item", [{}, {"variant_id": "101", "product_id": "101"}])
async def test_item_needs_exactly_one_target(client, item):
    response = await client.post(
        f"/api/v1/tenants/{TENANT}/prices/preview",
        json={"items": [item], "adjustment": ADJUSTMENT}
    )
    assert response.status_code == 422


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_plan(client, plans):
    plans.plans[TENANT] = PlanTier.FREE
    response = await client.get(f"/api/v1/tenants/{TENANT}/plan")

    assert response.status_code == 200
    assert response.json() == {
        "tenant_id": TENANT,
        "plan": "free",
        "max_items": 3,
        "allow_increase": False,
        "allow_scheduling": False
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_tenant_is_404(client):
    assert (await client.get(schedules_url("unknown-shop"))).status_code == 404
    assert (await client.get("/api/v1/tenants/unknown-shop/plan")).status_code == 404
