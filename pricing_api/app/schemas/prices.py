"""
Price adjustment and line item schemas.
"""

from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List


class Direction(str, Enum):
    """Direction of a bulk price adjustment."""
    INCREASE = "increase"
    DECREASE = "decrease"


class AmountKind(str, Enum):
    """How the adjustment amount is expressed."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class RoundingPolicy(str, Enum):
    """Rounding applied after the raw adjustment."""
    NONE = "none"
    NEAREST_WHOLE = "nearest_whole"
    DOWN_WHOLE = "down_whole"
    UP_TO_POINT_99 = "up_99"


class AdjustmentSpec(BaseModel):
    """Bulk price adjustment (increase/decrease by percentage or fixed amount)."""
    direction: Direction = Field(..., description="Increase or decrease prices")
    amount_kind: AmountKind = Field(..., description="percentage or fixed")
    percentage: Optional[Decimal] = Field(None, ge=0, description="Required when amount_kind=percentage")
    fixed_amount: Optional[Decimal] = Field(None, ge=0, description="Required when amount_kind=fixed")
    rounding: RoundingPolicy = Field(default=RoundingPolicy.NONE, description="Rounding policy")

    @model_validator(mode='after')
    def validate_amount(self):
        """Require the amount that matches amount_kind."""
        if self.amount_kind == AmountKind.PERCENTAGE and self.percentage is None:
            raise ValueError("percentage is required when amount_kind is 'percentage'")
        if self.amount_kind == AmountKind.FIXED and self.fixed_amount is None:
            raise ValueError("fixed_amount is required when amount_kind is 'fixed'")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "direction": "decrease",
                "amount_kind": "percentage",
                "percentage": 10,
                "rounding": "nearest_whole"
            }
        }


class CandidateItem(BaseModel):
    """
    Variant or product selected for a bulk edit.

    A product_id selects every variant of that product; its prices always
    come from the catalog.
    """
    variant_id: Optional[str] = Field(None, min_length=1, description="Catalog variant id ('123' or '123:456')")
    product_id: Optional[str] = Field(None, min_length=1, description="Product id, expanded to all its variants")
    price: Optional[Decimal] = Field(None, description="Current price; fetched from the catalog when omitted")
    new_price: Optional[Decimal] = Field(None, description="Client-computed price, kept only as an audit echo")

    @model_validator(mode='after')
    def validate_target(self):
        """Exactly one of variant_id and product_id."""
        if (self.variant_id is None) == (self.product_id is None):
            raise ValueError("Provide exactly one of variant_id or product_id")
        return self


class LineItem(BaseModel):
    """One variant's old/new price pair within a schedule."""
    variant_id: str
    old_price: Decimal
    new_price: Decimal
    client_new_price: Optional[Decimal] = None
    result: Optional[str] = None  # applied, reverted, failed
    error: Optional[str] = None


class LineItemDetail(LineItem):
    """Line item enriched with catalog metadata."""
    product_title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None


class PreviewRequest(BaseModel):
    """Price preview request."""
    items: List[CandidateItem]
    adjustment: AdjustmentSpec


class PreviewResponse(BaseModel):
    """Price preview response."""
    item_count: int
    items: List[LineItem]
