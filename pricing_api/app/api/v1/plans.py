"""
Tenant plan endpoint.
"""

from fastapi import APIRouter, Depends

from app.api.v1.errors import to_http_error
from app.core.schedule_service import ScheduleService
from app.deps import get_schedule_service
from app.schemas.plans import PlanResponse

router = APIRouter()


@router.get("", response_model=PlanResponse)
async def get_plan(
    tenant_id: str,
    service: ScheduleService = Depends(get_schedule_service)
):
    """The tenant's plan tier and its limits (max selectable items, increase, scheduling)."""
    try:
        return await service.get_plan(tenant_id)
    except Exception as e:
        raise to_http_error(e)
