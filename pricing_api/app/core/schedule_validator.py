"""
Validation of submitted schedule windows.

Instants are always derived here from the raw submitted strings; nothing
the client computed (e.g. a pre-converted UTC time) is trusted.
"""

from datetime import datetime, timezone
from typing import Dict, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.errors import ScheduleValidationError
from app.core.plan_limits import PlanLimits, PlanTier, QuotaRequest, ensure_authorized
from app.schemas.prices import LineItem
from app.schemas.schedules import ScheduleMode, ScheduleWindow, ScheduleWindowIn


def _resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError: names like "America" resolve to a tzdata directory
        raise ScheduleValidationError("timezone_invalid", f"Unknown timezone: {name}")


def parse_instant(value: str, zone: ZoneInfo, field: str) -> datetime:
    """
    Parse an ISO-8601 string to a UTC instant.

    Strings without an offset are local times in `zone`.

    Raises:
        ScheduleValidationError: '<field>_invalid' if the string does not parse.
    """
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ScheduleValidationError(f"{field}_invalid", f"{field} is not a valid ISO-8601 time: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(timezone.utc)


def validate_schedule(
    window: ScheduleWindowIn,
    items: Sequence[LineItem],
    plan: PlanTier,
    now: Optional[datetime] = None,
    limits: Optional[Dict[PlanTier, PlanLimits]] = None
) -> ScheduleWindow:
    """
    Validate a schedule window and its items.

    Checks run in order and stop at the first failure:
      1. items non-empty
      2. mode=later: run_at present, parseable, strictly in the future
      3. revert enabled: revert_at present, parseable, strictly after run_at
      4. the plan allows scheduling (later mode or a revert)

    Returns:
        The parsed window with UTC instants. For mode=now, run_at is `now`.

    Raises:
        ScheduleValidationError: For checks 1-3, naming the violated rule.
        QuotaDenied: For check 4.
    """
    now = now or datetime.now(timezone.utc)

    if not items:
        raise ScheduleValidationError("items_required", "At least one item is required")

    zone = _resolve_zone(window.timezone)

    if window.mode == ScheduleMode.LATER:
        if not window.run_at:
            raise ScheduleValidationError("run_at_required", "run_at is required when mode is 'later'")
        run_at = parse_instant(window.run_at, zone, "run_at")
        if run_at <= now:
            raise ScheduleValidationError("run_at_not_future", "run_at must be in the future")
    else:
        run_at = now

    revert_at = None
    if window.revert_enabled:
        if not window.revert_at:
            raise ScheduleValidationError("revert_at_required", "revert_at is required when revert is enabled")
        revert_at = parse_instant(window.revert_at, zone, "revert_at")
        if revert_at <= run_at:
            raise ScheduleValidationError("revert_at_not_after_run_at", "revert_at must be after run_at")

    scheduled = window.mode == ScheduleMode.LATER or window.revert_enabled
    if scheduled:
        # Capability only; item ceilings are checked by the caller's full authorization
        ensure_authorized(plan, QuotaRequest(item_count=0, scheduled=True), limits)

    return ScheduleWindow(
        mode=window.mode,
        run_at=run_at,
        revert_enabled=window.revert_enabled,
        revert_at=revert_at,
        timezone=window.timezone or "UTC"
    )
