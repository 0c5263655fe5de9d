"""
Price schedule schemas.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List

from app.schemas.prices import AdjustmentSpec, CandidateItem, LineItem, LineItemDetail


class ScheduleMode(str, Enum):
    NOW = "now"
    LATER = "later"


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    REVERTING = "reverting"
    REVERTED = "reverted"
    REVERT_FAILED = "revert_failed"


class ScheduleWindowIn(BaseModel):
    """Raw schedule window as submitted. Times are ISO-8601 strings."""
    mode: ScheduleMode = Field(..., description="now or later")
    run_at: Optional[str] = Field(None, description="Apply time, required for mode=later")
    revert_enabled: bool = Field(False, description="Restore original prices at revert_at")
    revert_at: Optional[str] = Field(None, description="Revert time, required when revert_enabled")
    timezone: str = Field("UTC", description="IANA zone used for times without an offset")

    class Config:
        json_schema_extra = {
            "example": {
                "mode": "later",
                "run_at": "2026-11-27T08:00",
                "revert_enabled": True,
                "revert_at": "2026-11-30T23:59",
                "timezone": "America/New_York"
            }
        }


class ScheduleWindow(BaseModel):
    """Validated schedule window; instants are UTC."""
    mode: ScheduleMode
    run_at: datetime
    revert_enabled: bool = False
    revert_at: Optional[datetime] = None
    timezone: str = "UTC"


class Schedule(BaseModel):
    """Persisted price schedule."""
    id: str
    tenant_id: str
    created_at: datetime
    updated_at: datetime
    window: ScheduleWindow
    adjustment: AdjustmentSpec
    items: List[LineItem]
    status: ScheduleStatus
    last_error: Optional[str] = None
    idempotency_key: Optional[str] = None
    attempts: int = 0


class ScheduleSummary(BaseModel):
    """Schedule row for list views."""
    id: str
    created_at: datetime
    mode: ScheduleMode
    run_at: datetime
    revert_at: Optional[datetime] = None
    status: ScheduleStatus
    item_count: int
    last_error: Optional[str] = None

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleSummary":
        return cls(
            id=schedule.id,
            created_at=schedule.created_at,
            mode=schedule.window.mode,
            run_at=schedule.window.run_at,
            revert_at=schedule.window.revert_at if schedule.window.revert_enabled else None,
            status=schedule.status,
            item_count=len(schedule.items),
            last_error=schedule.last_error
        )


class ScheduleCreateRequest(BaseModel):
    """Bulk edit submission."""
    items: List[CandidateItem]
    adjustment: AdjustmentSpec
    schedule: ScheduleWindowIn


class ScheduleListResponse(BaseModel):
    """List of schedules for a tenant, newest first."""
    items: List[ScheduleSummary]
    total: int


class ScheduleDetailResponse(BaseModel):
    """Schedule with catalog-enriched line items."""
    schedule: ScheduleSummary
    adjustment: AdjustmentSpec
    items: List[LineItemDetail]
