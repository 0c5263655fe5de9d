"""
Price calculation for bulk price adjustments.

All arithmetic uses Decimal so that repeated batches never accumulate
binary floating point error.
"""

from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Iterable, List

from app.core.errors import InvalidPrice
from app.schemas.prices import (
    AdjustmentSpec, AmountKind, CandidateItem, Direction, LineItem, RoundingPolicy
)

CENT = Decimal("0.01")
WHOLE = Decimal("1")
POINT_99 = Decimal("0.99")
HUNDRED = Decimal("100")


def to_price(value: Any) -> Decimal:
    """
    Coerce a price to Decimal.

    Floats go through str() so 12.1 becomes Decimal('12.1'), not its binary
    expansion.

    Raises:
        InvalidPrice: If value is not a finite, non-negative number.
    """
    if value is None or isinstance(value, bool):
        raise InvalidPrice(f"Invalid price: {value!r}")

    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidPrice(f"Invalid price: {value!r}")

    if not price.is_finite():
        raise InvalidPrice(f"Price must be finite: {value!r}")
    if price < 0:
        raise InvalidPrice(f"Price must be >= 0: {value!r}")

    return price


def apply_rounding(value: Decimal, policy: RoundingPolicy) -> Decimal:
    """Apply a rounding policy to a non-negative price, returning cents precision."""
    if policy == RoundingPolicy.NEAREST_WHOLE:
        rounded = value.quantize(WHOLE, rounding=ROUND_HALF_UP)
    elif policy == RoundingPolicy.DOWN_WHOLE:
        rounded = value.to_integral_value(rounding=ROUND_FLOOR)
    elif policy == RoundingPolicy.UP_TO_POINT_99:
        # Smallest X.99 that is >= value
        rounded = value.to_integral_value(rounding=ROUND_FLOOR) + POINT_99
        if rounded < value:
            rounded += WHOLE
    else:
        rounded = value

    return rounded.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_new_price(old_price: Any, adjustment: AdjustmentSpec) -> Decimal:
    """
    Calculate new price based on current price and adjustment parameters.

    Args:
        old_price: Current price (>= 0)
        adjustment: Direction, amount and rounding policy

    Returns:
        New price (always >= 0), quantized to cents

    Raises:
        InvalidPrice: If old_price is negative, non-finite or not a number
    """
    old = to_price(old_price)

    if adjustment.amount_kind == AmountKind.PERCENTAGE:
        delta = old * Decimal(str(adjustment.percentage or 0)) / HUNDRED
    else:
        delta = Decimal(str(adjustment.fixed_amount or 0))

    if adjustment.direction == Direction.INCREASE:
        raw = old + delta
    else:
        raw = old - delta

    # Decreasing past zero clamps
    raw = max(Decimal("0"), raw)

    return apply_rounding(raw, adjustment.rounding)


def compute_line_items(candidates: Iterable[CandidateItem], adjustment: AdjustmentSpec) -> List[LineItem]:
    """
    Build line items for priced candidates.

    Every candidate must carry a current price. A client-supplied new_price is
    kept as client_new_price and never used as the target.
    """
    items = []
    for candidate in candidates:
        old = to_price(candidate.price)
        items.append(LineItem(
            variant_id=candidate.variant_id,
            old_price=old,
            new_price=compute_new_price(old, adjustment),
            client_new_price=candidate.new_price
        ))
    return items


def format_price(price: Decimal) -> str:
    """Render a price the way the catalog API expects it ('12.99')."""
    return str(price.quantize(CENT, rounding=ROUND_HALF_UP))
