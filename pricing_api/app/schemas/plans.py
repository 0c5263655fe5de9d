"""
Plan schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional


class PlanResponse(BaseModel):
    """A tenant's plan tier and the limits it carries."""
    tenant_id: str
    plan: str = Field(..., description="free, plus or pro")
    max_items: Optional[int] = Field(None, description="Items per bulk edit; null means unlimited")
    allow_increase: bool
    allow_scheduling: bool
