"""
Dependency wiring shared by the API and the scheduler worker.
"""

from typing import Dict, Optional
import redis.asyncio as aioredis

from app.config import get_settings, get_all_tenants, generate_tenant_id, validate_tenant_config
from app.core.catalog_client import CatalogClient
from app.core.plans import ConfigPlanProvider, TenantNotFound
from app.core.schedule_service import ScheduleService
from app.core.schedule_store import ScheduleStore
from app.core.scheduler import ScheduleExecutor


_redis_client: Optional[aioredis.Redis] = None
_executor: Optional[ScheduleExecutor] = None


async def get_redis() -> aioredis.Redis:
    """Get Redis client (singleton) with lazy connection."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=1.0,
            socket_timeout=3.0,
            retry_on_timeout=True,
            health_check_interval=30
        )
    return _redis_client


async def close_redis():
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def get_tenant_by_id(tenant_id: str) -> Dict:
    """
    Get tenant configuration by tenant_id.

    Raises:
        TenantNotFound: If no configured shop slugs to tenant_id.
    """
    for shop_name, tenant_config in get_all_tenants().items():
        if generate_tenant_id(shop_name) == tenant_id:
            return {
                "name": shop_name,
                "id": tenant_id,
                **tenant_config
            }

    raise TenantNotFound(f"Tenant '{tenant_id}' not found")


def get_catalog_client_for_tenant(tenant_id: str) -> CatalogClient:
    """
    Create a CatalogClient for a tenant's shop.

    Raises:
        TenantNotFound: If tenant not found.
        ValueError: If the shop config is incomplete.
    """
    tenant = get_tenant_by_id(tenant_id)

    is_valid, error = validate_tenant_config(tenant)
    if not is_valid:
        raise ValueError(f"Tenant '{tenant_id}' misconfigured: {error}")

    settings = get_settings()
    return CatalogClient(
        store_url=tenant["store_url"],
        consumer_key=tenant["consumer_key"],
        consumer_secret=tenant["consumer_secret"],
        rate_limit_rps=settings.catalog_rate_limit_rps,
        timeout=settings.catalog_timeout,
        max_retries=settings.catalog_max_retries,
        initial_delay=settings.catalog_initial_delay,
        backoff_factor=settings.catalog_backoff_factor
    )


async def get_executor() -> ScheduleExecutor:
    """Get the process-wide schedule executor."""
    global _executor
    if _executor is None:
        redis = await get_redis()
        _executor = ScheduleExecutor(
            store=ScheduleStore(redis),
            catalog_factory=get_catalog_client_for_tenant,
            plan_provider=ConfigPlanProvider(),
            settings=get_settings()
        )
    return _executor


async def get_schedule_service() -> ScheduleService:
    """FastAPI dependency for the schedule service."""
    executor = await get_executor()
    return ScheduleService(
        store=executor.store,
        executor=executor,
        catalog_factory=get_catalog_client_for_tenant,
        plan_provider=executor.plan_provider,
        idempotency_ttl=get_settings().idempotency_ttl_seconds
    )
