"""
Translation of core errors to HTTP responses.
"""

import logging
from fastapi import HTTPException, status

from app.core.catalog_client import CatalogError
from app.core.errors import (
    InvalidPrice, InvalidTransition, QuotaDenied, ScheduleConflict, ScheduleNotFound, ScheduleValidationError
)
from app.core.plans import TenantNotFound

logger = logging.getLogger(__name__)


def to_http_error(e: Exception) -> HTTPException:
    """Map a core exception to an HTTPException."""
    if isinstance(e, ScheduleValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "validation_error", "rule": e.rule, "message": e.detail}
        )
    if isinstance(e, InvalidPrice):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "invalid_price", "message": str(e)}
        )
    if isinstance(e, QuotaDenied):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "plan_limit", "limit": e.limit, "message": e.reason}
        )
    if isinstance(e, ScheduleConflict):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "duplicate_submission", "schedule_id": e.schedule_id, "message": str(e)}
        )
    if isinstance(e, InvalidTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "invalid_transition", "message": str(e)}
        )
    if isinstance(e, (ScheduleNotFound, TenantNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CatalogError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Catalog API error: {str(e)}"
        )

    logger.exception(f"Unhandled error: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Internal error: {str(e)}"
    )
