"""
Plan lookup for tenants.
"""

import logging
from typing import Optional

from app.config import get_all_tenants, generate_tenant_id
from app.core.plan_limits import PlanTier, resolve_plan_tier

logger = logging.getLogger(__name__)


class TenantNotFound(Exception):
    """No tenant is configured under the given id."""
    pass


class ConfigPlanProvider:
    """
    Reads a tenant's plan from the tenants config file.

    The file is read on every call so a plan change made between submission
    and execution is seen by the executor.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path

    async def get_plan(self, tenant_id: str) -> PlanTier:
        for name, config in get_all_tenants(self.config_path).items():
            if generate_tenant_id(name) == tenant_id:
                return resolve_plan_tier(config.get("plan"))

        logger.warning(f"Plan lookup for unknown tenant {tenant_id}")
        raise TenantNotFound(f"Tenant '{tenant_id}' not found")
