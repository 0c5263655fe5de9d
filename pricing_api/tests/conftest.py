"""
Pytest configuration for the Price Schedule API.

Provides fixtures for:
- An isolated fakeredis server per test
- In-memory catalog and plan collaborators
- Store, executor and service wired together
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set

import fakeredis
import pytest

from app.config import Settings
from app.core.catalog_client import CatalogError, VariantInfo
from app.core.plan_limits import PlanTier
from app.core.plans import TenantNotFound
from app.core.schedule_service import ScheduleService
from app.core.schedule_store import ScheduleStore
from app.core.scheduler import ScheduleExecutor

TENANT = "demo-shop"
OTHER_TENANT = "other-shop"


class FakeCatalog:
    """In-memory catalog: variant prices, products and injectable failures."""

    def __init__(self, prices: Dict[str, Decimal], products: Optional[Dict[str, List[str]]] = None):
        self.prices = dict(prices)
        # product id -> variant ids
        self.products = dict(products or {})
        self.titles = {vid: f"Product {vid}" for vid in prices}
        self.failing: Set[str] = set()
        self.updates: List[tuple] = []
        self.closed = 0

    async def get_variants(self, variant_ids: Sequence[str]) -> List[VariantInfo]:
        return [
            VariantInfo(
                variant_id=vid,
                product_title=self.titles[vid],
                sku=f"SKU-{vid}",
                price=self.prices[vid]
            )
            for vid in variant_ids if vid in self.prices
        ]

    async def expand_products(self, product_ids: Sequence[str]) -> List[VariantInfo]:
        variant_ids = [vid for pid in product_ids for vid in self.products.get(pid, [])]
        return await self.get_variants(variant_ids)

    async def update_variant_price(self, variant_id: str, price: Decimal) -> bool:
        self.updates.append((variant_id, price))
        if variant_id in self.failing:
            raise CatalogError("HTTP 503 after 4 retries", status_code=503, retryable=True)
        self.prices[variant_id] = price
        return True

    async def close(self):
        self.closed += 1


class FakePlanProvider:
    """Plans by tenant id; mutable so tests can simulate a downgrade."""

    def __init__(self, plans: Optional[Dict[str, PlanTier]] = None):
        self.plans = plans or {}

    async def get_plan(self, tenant_id: str) -> PlanTier:
        if tenant_id not in self.plans:
            raise TenantNotFound(f"Tenant '{tenant_id}' not found")
        return self.plans[tenant_id]


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 11, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        scheduler_poll_interval=0.05,
        scheduler_batch_size=10,
        item_concurrency=2,
        stall_timeout_seconds=600,
        free_max_items=3,
        plus_max_items=10,
        pro_max_items=None,
    )


@pytest.fixture
def redis_client():
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis_client) -> ScheduleStore:
    return ScheduleStore(redis_client)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog({
        "101": Decimal("10.40"),
        "102": Decimal("10.60"),
        "103:7": Decimal("25.00"),
    }, products={
        "101": ["101"],
        "103": ["103:7"],
    })


@pytest.fixture
def plans() -> FakePlanProvider:
    return FakePlanProvider({
        TENANT: PlanTier.PLUS,
        OTHER_TENANT: PlanTier.PRO,
    })


@pytest.fixture
def executor(store, catalog, plans, test_settings) -> ScheduleExecutor:
    return ScheduleExecutor(
        store=store,
        catalog_factory=lambda tenant_id: catalog,
        plan_provider=plans,
        settings=test_settings
    )


@pytest.fixture
def service(store, executor, catalog, plans, test_settings) -> ScheduleService:
    return ScheduleService(
        store=store,
        executor=executor,
        catalog_factory=lambda tenant_id: catalog,
        plan_provider=plans,
        idempotency_ttl=test_settings.idempotency_ttl_seconds
    )
