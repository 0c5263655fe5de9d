"""
Price schedule API endpoints.
"""

import logging
from fastapi import APIRouter, Depends, Header, Query, status
from typing import Optional

from app.api.v1.errors import to_http_error
from app.core.schedule_service import ScheduleService
from app.deps import get_schedule_service
from app.schemas.schedules import (
    Schedule, ScheduleCreateRequest, ScheduleDetailResponse, ScheduleListResponse
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=Schedule, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    tenant_id: str,
    request: ScheduleCreateRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: ScheduleService = Depends(get_schedule_service)
):
    """
    Submit a bulk price edit.

    mode=now applies immediately and returns the finished schedule (done or
    failed). mode=later returns a pending schedule.
    """
    logger.info(
        f"Schedule submission for tenant {tenant_id}: {len(request.items)} items, "
        f"mode={request.schedule.mode.value}, revert={request.schedule.revert_enabled}"
    )
    try:
        return await service.submit(
            tenant_id,
            request.items,
            request.adjustment,
            request.schedule,
            idempotency_key=idempotency_key
        )
    except Exception as e:
        raise to_http_error(e)


@router.get("", response_model=ScheduleListResponse)
async def list_schedules(
    tenant_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: ScheduleService = Depends(get_schedule_service)
):
    """List schedules, newest first."""
    try:
        items, total = await service.list_schedules(tenant_id, limit)
    except Exception as e:
        raise to_http_error(e)

    return ScheduleListResponse(items=items, total=total)


@router.get("/{schedule_id}", response_model=ScheduleDetailResponse)
async def get_schedule(
    tenant_id: str,
    schedule_id: str,
    service: ScheduleService = Depends(get_schedule_service)
):
    """Get a schedule with its line items."""
    try:
        return await service.get_schedule_details(tenant_id, schedule_id)
    except Exception as e:
        raise to_http_error(e)


@router.post("/{schedule_id}/retry", response_model=Schedule)
async def retry_schedule(
    tenant_id: str,
    schedule_id: str,
    service: ScheduleService = Depends(get_schedule_service)
):
    """Re-trigger a failed apply or revert."""
    try:
        return await service.retry_schedule(tenant_id, schedule_id)
    except Exception as e:
        raise to_http_error(e)
