"""
Main API router for v1.
"""

from fastapi import APIRouter
from app.api.v1 import plans, prices, schedules

router = APIRouter()

router.include_router(prices.router, prefix="/tenants/{tenant_id}/prices", tags=["prices"])
router.include_router(schedules.router, prefix="/tenants/{tenant_id}/schedules", tags=["schedules"])
router.include_router(plans.router, prefix="/tenants/{tenant_id}/plan", tags=["plans"])
