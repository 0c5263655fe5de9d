"""
Bulk price edit service: preview, submit and inspect price schedules.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from app.core.catalog_client import CatalogClient, CatalogError
from app.core.errors import InvalidTransition, ScheduleValidationError
from app.core.plan_limits import PlanLimits, PlanTier, QuotaRequest, ensure_authorized
from app.core.price_calculator import compute_line_items
from app.core.schedule_store import ScheduleStore
from app.core.schedule_validator import validate_schedule
from app.core.scheduler import PHASE_APPLY, ScheduleExecutor
from app.core.utils import stable_digest
from app.schemas.plans import PlanResponse
from app.schemas.prices import AdjustmentSpec, CandidateItem, LineItem, LineItemDetail
from app.schemas.schedules import (
    Schedule, ScheduleDetailResponse, ScheduleMode, ScheduleStatus, ScheduleSummary, ScheduleWindowIn
)

logger = logging.getLogger(__name__)

# Lifetime of idempotency keys derived from the submission itself
DERIVED_KEY_TTL_SECONDS = 24 * 3600


class ScheduleService:
    """Entry points used by the HTTP layer."""

    def __init__(
        self,
        store: ScheduleStore,
        executor: ScheduleExecutor,
        catalog_factory: Callable[[str], CatalogClient],
        plan_provider,
        plan_limits: Optional[Dict[PlanTier, PlanLimits]] = None,
        idempotency_ttl: int = DERIVED_KEY_TTL_SECONDS
    ):
        self.store = store
        self.executor = executor
        self.catalog_factory = catalog_factory
        self.plan_provider = plan_provider
        self.plan_limits = plan_limits or executor.plan_limits
        self.idempotency_ttl = idempotency_ttl

    async def _price_candidates(self, tenant_id: str, candidates: Sequence[CandidateItem]) -> List[CandidateItem]:
        """
        Expand product selections to their variants, dedupe by variant id and
        fill missing prices from the catalog.
        """
        product_ids = [c.product_id for c in candidates if c.product_id is not None]
        missing = [c.variant_id for c in candidates if c.variant_id is not None and c.price is None]
        if not product_ids and not missing:
            return self._dedupe(candidates)

        client = self.catalog_factory(tenant_id)
        try:
            expanded = await client.expand_products(product_ids) if product_ids else []
            variants = await client.get_variants(missing) if missing else []
        finally:
            await client.close()

        by_product: Dict[str, List[CandidateItem]] = {}
        for variant in expanded:
            if variant.price is None:
                continue
            product_id = variant.variant_id.split(":", 1)[0]
            by_product.setdefault(product_id, []).append(
                CandidateItem(variant_id=variant.variant_id, price=variant.price)
            )

        prices = {v.variant_id: v.price for v in variants}
        priced = []
        for candidate in candidates:
            if candidate.product_id is not None:
                product_id = candidate.product_id.strip()
                if product_id not in by_product:
                    raise ScheduleValidationError(
                        "product_not_found",
                        f"Product {candidate.product_id} was not found or has no priced variants"
                    )
                priced.extend(by_product[product_id])
                continue

            if candidate.price is None:
                price = prices.get(candidate.variant_id)
                if price is None:
                    raise ScheduleValidationError(
                        "variant_not_found",
                        f"Variant {candidate.variant_id} was not found or has no price"
                    )
                candidate = candidate.model_copy(update={"price": price})
            priced.append(candidate)

        return self._dedupe(priced)

    @staticmethod
    def _dedupe(candidates: Sequence[CandidateItem]) -> List[CandidateItem]:
        """Keep the first candidate per variant id."""
        unique = []
        seen = set()
        for candidate in candidates:
            if candidate.variant_id not in seen:
                seen.add(candidate.variant_id)
                unique.append(candidate)
        return unique

    async def get_plan(self, tenant_id: str) -> PlanResponse:
        """
        The tenant's plan and its limits, so callers can show ceilings before
        submitting.

        Raises:
            TenantNotFound: If the tenant is not configured
        """
        tier = await self.plan_provider.get_plan(tenant_id)
        limits = self.plan_limits[tier]
        return PlanResponse(
            tenant_id=tenant_id,
            plan=tier.value,
            max_items=limits.max_items,
            allow_increase=limits.allow_increase,
            allow_scheduling=limits.allow_scheduling
        )

    async def preview(
        self,
        tenant_id: str,
        candidates: Sequence[CandidateItem],
        adjustment: AdjustmentSpec
    ) -> List[LineItem]:
        """Compute new prices for candidates. Nothing is persisted."""
        priced = await self._price_candidates(tenant_id, candidates)
        return compute_line_items(priced, adjustment)

    async def submit(
        self,
        tenant_id: str,
        candidates: Sequence[CandidateItem],
        adjustment: AdjustmentSpec,
        window_in: ScheduleWindowIn,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Schedule:
        """
        Validate and persist a bulk price edit.

        mode=now applies synchronously and stores the result as done/failed.
        mode=later stores a pending schedule for the executor.

        Without an idempotency_key, one is derived from the submission and
        its UTC day; derived keys expire after idempotency_ttl seconds, so
        they only catch retried requests. Caller-supplied keys never expire.

        Raises:
            ScheduleValidationError: Invalid window or items
            QuotaDenied: Plan limits
            ScheduleConflict: Duplicate submission
            InvalidPrice: Bad price input
            TenantNotFound: Unknown tenant
        """
        now = now or datetime.now(timezone.utc)
        plan = await self.plan_provider.get_plan(tenant_id)

        items = await self.preview(tenant_id, candidates, adjustment) if candidates else []
        window = validate_schedule(window_in, items, plan, now, self.plan_limits)

        ensure_authorized(
            plan,
            QuotaRequest(
                item_count=len(items),
                direction=adjustment.direction,
                scheduled=window.mode == ScheduleMode.LATER or window.revert_enabled
            ),
            self.plan_limits
        )

        key_ttl = None
        if not idempotency_key:
            key_ttl = self.idempotency_ttl
            idempotency_key = stable_digest(
                tenant_id,
                now.astimezone(timezone.utc).date().isoformat(),
                [[i.variant_id, str(i.old_price), str(i.new_price)] for i in items],
                adjustment.model_dump(mode="json"),
                window_in.model_dump(mode="json")
            )

        schedule = Schedule(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
            window=window,
            adjustment=adjustment,
            items=items,
            status=ScheduleStatus.PENDING,
            idempotency_key=idempotency_key
        )

        if window.mode == ScheduleMode.NOW:
            # Claim the key before touching prices so a concurrent duplicate
            # gets its conflict without pushing anything
            await self.store.reserve_idempotency_key(tenant_id, idempotency_key, schedule.id, key_ttl)

            logger.info(f"Applying {len(items)} items now for tenant {tenant_id}")
            try:
                applied, error = await self.executor.push_prices(tenant_id, items, PHASE_APPLY)
            except Exception:
                await self.store.release_idempotency_key(tenant_id, idempotency_key, schedule.id)
                raise

            schedule = schedule.model_copy(update={
                "items": applied,
                "status": ScheduleStatus.FAILED if error else ScheduleStatus.DONE,
                "last_error": error,
                "attempts": 1
            })

        await self.store.create(schedule, idempotency_ttl=key_ttl)

        if schedule.status == ScheduleStatus.PENDING:
            # Only reaches a scheduler embedded in this process; standalone
            # workers pick the schedule up on their next poll
            self.executor.wake()

        return schedule

    async def get_schedule(self, tenant_id: str, schedule_id: str) -> Schedule:
        return await self.store.get(tenant_id, schedule_id)

    async def get_schedule_details(self, tenant_id: str, schedule_id: str) -> ScheduleDetailResponse:
        """Schedule with line items enriched by catalog title/SKU (best effort)."""
        schedule = await self.store.get(tenant_id, schedule_id)

        info = {}
        try:
            client = self.catalog_factory(tenant_id)
            try:
                variants = await client.get_variants([i.variant_id for i in schedule.items])
            finally:
                await client.close()
            info = {v.variant_id: v for v in variants}
        except (CatalogError, ValueError) as e:
            logger.warning(f"Schedule {schedule_id}: catalog lookup failed, returning items without metadata: {e}")

        items = []
        for item in schedule.items:
            variant = info.get(item.variant_id)
            items.append(LineItemDetail(
                **item.model_dump(),
                product_title=variant.product_title if variant else None,
                variant_title=variant.variant_title if variant else None,
                sku=variant.sku if variant else None
            ))

        return ScheduleDetailResponse(
            schedule=ScheduleSummary.from_schedule(schedule),
            adjustment=schedule.adjustment,
            items=items
        )

    async def list_schedules(self, tenant_id: str, limit: int = 50) -> Tuple[List[ScheduleSummary], int]:
        """
        Raises:
            TenantNotFound: If the tenant is not configured
        """
        await self.plan_provider.get_plan(tenant_id)
        schedules, total = await self.store.list_for_tenant(tenant_id, limit)
        return [ScheduleSummary.from_schedule(s) for s in schedules], total

    async def retry_schedule(self, tenant_id: str, schedule_id: str) -> Schedule:
        """
        Re-trigger a failed schedule.

        failed -> pending re-runs the apply; revert_failed -> done re-runs the
        revert (its revert_at is already past, so the next tick picks it up).

        Raises:
            InvalidTransition: If the schedule is not in a failed state
        """
        schedule = await self.store.get(tenant_id, schedule_id)

        if schedule.status == ScheduleStatus.FAILED:
            target = ScheduleStatus.PENDING
        elif schedule.status == ScheduleStatus.REVERT_FAILED:
            target = ScheduleStatus.DONE
        else:
            raise InvalidTransition(f"Only failed schedules can be retried (status is {schedule.status.value})")

        updated = await self.store.transition(
            schedule_id, schedule.status, target, error=schedule.last_error
        )
        logger.info(f"Schedule {schedule_id} re-triggered: {schedule.status.value} -> {target.value}")
        self.executor.wake()
        return updated
