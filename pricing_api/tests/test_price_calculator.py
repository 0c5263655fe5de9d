from decimal import Decimal

import pytest

from app.core.errors import InvalidPrice
from app.core.price_calculator import (
    apply_rounding, compute_line_items, compute_new_price, format_price, to_price
)
from app.schemas.prices import AdjustmentSpec, CandidateItem, RoundingPolicy


def spec(direction="decrease", kind="percentage", value=10, rounding="none") -> AdjustmentSpec:
    amount = {"percentage": value} if kind == "percentage" else {"fixed_amount": value}
    return AdjustmentSpec(direction=direction, amount_kind=kind, rounding=rounding, **amount)


@pytest.mark.unit
@pytest.mark.parametrize("raw, expected", [
    ("12.10", "12.99"),
    ("12.99", "12.99"),
    ("13.00", "13.99"),
    ("12.995", "13.99"),
    ("0", "0.99"),
])
def test_up_to_point_99(raw, expected):
    assert apply_rounding(Decimal(raw), RoundingPolicy.UP_TO_POINT_99) == Decimal(expected)


@pytest.mark.unit
def test_up_to_point_99_with_zero_adjustment():
    zero = spec(kind="fixed", value=0, rounding="up_99")
    assert compute_new_price("12.10", zero) == Decimal("12.99")
    assert compute_new_price("12.99", zero) == Decimal("12.99")
    assert compute_new_price("13.00", zero) == Decimal("13.99")


@pytest.mark.unit
@pytest.mark.parametrize("raw, expected", [
    ("10.40", "10"),
    ("10.60", "11"),
    ("10.50", "11"),
])
def test_nearest_whole(raw, expected):
    assert apply_rounding(Decimal(raw), RoundingPolicy.NEAREST_WHOLE) == Decimal(expected)


@pytest.mark.unit
def test_down_whole():
    assert apply_rounding(Decimal("10.99"), RoundingPolicy.DOWN_WHOLE) == Decimal("10")


@pytest.mark.unit
def test_percentage_decrease_is_exact():
    # 19.99 * 0.9 = 17.991 -> 17.99, no float drift
    assert compute_new_price("19.99", spec(value=10)) == Decimal("17.99")
    assert compute_new_price(0.1, spec(direction="increase", value=200)) == Decimal("0.30")


@pytest.mark.unit
def test_fixed_increase():
    assert compute_new_price("10", spec(direction="increase", kind="fixed", value="2.5")) == Decimal("12.50")


@pytest.mark.unit
def test_decrease_clamps_at_zero():
    assert compute_new_price("5.00", spec(kind="fixed", value=20)) == Decimal("0")
    assert compute_new_price("5.00", spec(value=150)) == Decimal("0")


@pytest.mark.unit
def test_never_negative_across_inputs():
    specs = [
        spec(direction=d, kind=k, value=v, rounding=r)
        for d in ("increase", "decrease")
        for k in ("percentage", "fixed")
        for v in (0, 1, 50, 100, 1000)
        for r in ("none", "nearest_whole", "down_whole", "up_99")
    ]
    for old in ("0", "0.01", "0.5", "9.99", "1234.56"):
        for s in specs:
            assert compute_new_price(old, s) >= 0


@pytest.mark.unit
def test_compute_is_deterministic():
    s = spec(value="33.3", rounding="nearest_whole")
    assert compute_new_price("47.13", s) == compute_new_price("47.13", s)


@pytest.mark.unit
@pytest.mark.parametrize("bad", [-1, "-0.01", "abc", float("nan"), float("inf"), None, True])
def test_invalid_price(bad):
    with pytest.raises(InvalidPrice):
        compute_new_price(bad, spec())


@pytest.mark.unit
def test_to_price_uses_decimal_text_of_floats():
    assert to_price(12.1) == Decimal("12.1")


@pytest.mark.unit
def test_spec_requires_matching_amount():
    with pytest.raises(ValueError):
        AdjustmentSpec(direction="decrease", amount_kind="percentage", fixed_amount=5)
    with pytest.raises(ValueError):
        AdjustmentSpec(direction="decrease", amount_kind="fixed", percentage=5)


@pytest.mark.unit
def test_line_items_ignore_client_new_price():
    items = compute_line_items(
        [CandidateItem(variant_id="1", price=Decimal("20"), new_price=Decimal("1"))],
        spec(value=50)
    )
    assert items[0].new_price == Decimal("10")
    assert items[0].client_new_price == Decimal("1")


@pytest.mark.unit
def test_format_price():
    assert format_price(Decimal("10")) == "10.00"
    assert format_price(Decimal("12.999")) == "13.00"
