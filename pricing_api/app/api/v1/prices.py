"""
Price preview API endpoints.
"""

from fastapi import APIRouter, Depends

from app.api.v1.errors import to_http_error
from app.core.schedule_service import ScheduleService
from app.deps import get_schedule_service
from app.schemas.prices import PreviewRequest, PreviewResponse

router = APIRouter()


@router.post("/preview", response_model=PreviewResponse)
async def preview_prices(
    tenant_id: str,
    request: PreviewRequest,
    service: ScheduleService = Depends(get_schedule_service)
):
    """
    Compute new prices for the selected variants. Nothing is saved.
    """
    try:
        items = await service.preview(tenant_id, request.items, request.adjustment)
    except Exception as e:
        raise to_http_error(e)

    return PreviewResponse(item_count=len(items), items=items)
