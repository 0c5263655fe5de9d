"""
Plan tiers and the quota/capability gate.

Limits live in a table so new tiers are data, not code.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from app.core.errors import QuotaDenied
from app.schemas.prices import Direction


class PlanTier(str, Enum):
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"


@dataclass(frozen=True)
class PlanLimits:
    max_items: Optional[int]  # None = unlimited
    allow_increase: bool
    allow_scheduling: bool


DEFAULT_PLAN_LIMITS: Dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(max_items=50, allow_increase=False, allow_scheduling=False),
    PlanTier.PLUS: PlanLimits(max_items=500, allow_increase=True, allow_scheduling=True),
    PlanTier.PRO: PlanLimits(max_items=None, allow_increase=True, allow_scheduling=True),
}

# Values for QuotaDecision.limit
LIMIT_MAX_ITEMS = "max_items"
LIMIT_INCREASE = "increase"
LIMIT_SCHEDULING = "scheduling"


@dataclass(frozen=True)
class QuotaRequest:
    item_count: int
    direction: Optional[Direction] = None
    scheduled: bool = False


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    limit: Optional[str] = None
    reason: str = ""


def build_plan_limits(settings) -> Dict[PlanTier, PlanLimits]:
    """Plan table with item ceilings taken from settings."""
    ceilings = {
        PlanTier.FREE: settings.free_max_items,
        PlanTier.PLUS: settings.plus_max_items,
        PlanTier.PRO: settings.pro_max_items,
    }
    return {
        tier: PlanLimits(
            max_items=ceilings[tier],
            allow_increase=limits.allow_increase,
            allow_scheduling=limits.allow_scheduling
        )
        for tier, limits in DEFAULT_PLAN_LIMITS.items()
    }


def resolve_plan_tier(plan_name: Optional[str]) -> PlanTier:
    """
    Map a billing plan name to a tier.

    Matches by substring, so "Pro Monthly" is Pro and "Plus (annual)" is Plus.
    Unknown or empty names are Free.
    """
    name = (plan_name or "free").strip().lower()
    if "pro" in name:
        return PlanTier.PRO
    if "plus" in name:
        return PlanTier.PLUS
    return PlanTier.FREE


def authorize(
    plan: PlanTier,
    request: QuotaRequest,
    limits: Optional[Dict[PlanTier, PlanLimits]] = None
) -> QuotaDecision:
    """
    Check a bulk operation against the plan's limits.

    Capabilities are checked before the item ceiling, so a Free increase is
    denied regardless of item count.
    """
    table = limits or DEFAULT_PLAN_LIMITS
    plan_limits = table[PlanTier(plan)]
    plan_label = PlanTier(plan).value.capitalize()

    if request.direction == Direction.INCREASE and not plan_limits.allow_increase:
        return QuotaDecision(
            allowed=False,
            limit=LIMIT_INCREASE,
            reason=f"The {plan_label} plan only allows price decreases. Upgrade to increase prices."
        )

    if request.scheduled and not plan_limits.allow_scheduling:
        return QuotaDecision(
            allowed=False,
            limit=LIMIT_SCHEDULING,
            reason=f"The {plan_label} plan does not include scheduled price changes."
        )

    if plan_limits.max_items is not None and request.item_count > plan_limits.max_items:
        return QuotaDecision(
            allowed=False,
            limit=LIMIT_MAX_ITEMS,
            reason=(
                f"The {plan_label} plan allows up to {plan_limits.max_items} items per bulk edit "
                f"({request.item_count} requested)."
            )
        )

    return QuotaDecision(allowed=True)


def ensure_authorized(
    plan: PlanTier,
    request: QuotaRequest,
    limits: Optional[Dict[PlanTier, PlanLimits]] = None
) -> None:
    """Like authorize(), but raises QuotaDenied on denial."""
    decision = authorize(plan, request, limits)
    if not decision.allowed:
        raise QuotaDenied(decision.limit, decision.reason)
