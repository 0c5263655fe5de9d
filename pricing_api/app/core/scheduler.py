"""
Schedule executor: finds due schedules and applies or reverts them.

Lifecycle:
    pending -> running -> done | failed
    done -> reverting -> reverted | revert_failed   (revert configured)

Each step starts with a compare-and-swap in the store. A worker that loses
the swap drops the schedule, so any number of workers may poll at once.
Items that were applied before a failure are never rolled back; the
schedule's last_error says so.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from app.core.catalog_client import CatalogClient, CatalogError
from app.core.errors import StaleTransition
from app.core.plan_limits import PlanLimits, PlanTier, QuotaRequest, authorize, build_plan_limits
from app.core.schedule_store import ScheduleStore
from app.schemas.prices import LineItem
from app.schemas.schedules import Schedule, ScheduleMode, ScheduleStatus

logger = logging.getLogger(__name__)

PHASE_APPLY = "apply"
PHASE_REVERT = "revert"

# Failing variants listed in last_error before truncating
MAX_ERRORS_IN_MESSAGE = 10


@dataclass
class ItemResult:
    variant_id: str
    ok: bool
    error: Optional[str] = None


@dataclass
class TickStats:
    done: int = 0
    failed: int = 0
    reverted: int = 0
    revert_failed: int = 0
    skipped: int = 0
    recovered: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def failure_message(results: Sequence[ItemResult], phase: str) -> Optional[str]:
    """Operator-facing summary of failed items, or None if all succeeded."""
    failed = [r for r in results if not r.ok]
    if not failed:
        return None

    succeeded = len(results) - len(failed)
    details = "; ".join(f"{r.variant_id}: {r.error}" for r in failed[:MAX_ERRORS_IN_MESSAGE])
    if len(failed) > MAX_ERRORS_IN_MESSAGE:
        details += f"; and {len(failed) - MAX_ERRORS_IN_MESSAGE} more"

    if phase == PHASE_APPLY:
        return (
            f"{len(failed)} of {len(results)} items failed to apply ({details}). "
            f"{succeeded} item(s) were applied and have not been rolled back."
        )
    return (
        f"{len(failed)} of {len(results)} items failed to revert ({details}). "
        f"{succeeded} item(s) were restored to their original price; the others keep the scheduled price."
    )


class ScheduleExecutor:
    """Drives due schedules through apply and revert."""

    def __init__(
        self,
        store: ScheduleStore,
        catalog_factory: Callable[[str], CatalogClient],
        plan_provider,
        settings,
        plan_limits: Optional[Dict[PlanTier, PlanLimits]] = None
    ):
        """
        Args:
            store: Schedule store
            catalog_factory: Returns a catalog client for a tenant id
            plan_provider: Object with `async get_plan(tenant_id) -> PlanTier`
            settings: Application settings
            plan_limits: Plan table (defaults to one built from settings)
        """
        self.store = store
        self.catalog_factory = catalog_factory
        self.plan_provider = plan_provider
        self.item_concurrency = max(1, settings.item_concurrency)
        self.batch_size = settings.scheduler_batch_size
        self.poll_interval = settings.scheduler_poll_interval
        self.stall_timeout = timedelta(seconds=settings.stall_timeout_seconds)
        self.plan_limits = plan_limits or build_plan_limits(settings)
        self._wake = asyncio.Event()
        self._stop = asyncio.Event()

    async def apply_items(
        self,
        client: CatalogClient,
        items: Sequence[LineItem],
        phase: str,
        on_progress: Optional[Callable[[], Awaitable[None]]] = None
    ) -> List[ItemResult]:
        """
        Push new prices (apply) or original prices (revert) for each item.

        Items are processed concurrently, bounded by item_concurrency.
        on_progress is awaited after every item, whatever its outcome.
        """
        semaphore = asyncio.Semaphore(self.item_concurrency)

        async def push_one(item: LineItem) -> ItemResult:
            price = item.new_price if phase == PHASE_APPLY else item.old_price
            async with semaphore:
                try:
                    await client.update_variant_price(item.variant_id, price)
                    return ItemResult(item.variant_id, True)
                except CatalogError as e:
                    logger.warning(f"{phase} failed for variant {item.variant_id}: {e}")
                    return ItemResult(item.variant_id, False, str(e))
                except Exception as e:
                    logger.exception(f"Unexpected error during {phase} of variant {item.variant_id}")
                    return ItemResult(item.variant_id, False, f"Unexpected error: {e}")

        async def push(item: LineItem) -> ItemResult:
            result = await push_one(item)
            if on_progress is not None:
                await on_progress()
            return result

        return list(await asyncio.gather(*(push(item) for item in items)))

    async def push_prices(
        self,
        tenant_id: str,
        items: Sequence[LineItem],
        phase: str,
        schedule_id: Optional[str] = None
    ) -> Tuple[List[LineItem], Optional[str]]:
        """
        Apply or revert a set of line items for a tenant.

        With schedule_id, the schedule's inflight mark is refreshed after each
        item so recovery on other workers does not take a live run for a stalled
        one.

        Returns:
            (items annotated with per-item result, failure message or None)
        """
        try:
            client = self.catalog_factory(tenant_id)
        except Exception as e:
            logger.error(f"Cannot create catalog client for tenant {tenant_id}: {e}")
            results = [ItemResult(item.variant_id, False, f"Catalog unavailable: {e}") for item in items]
        else:
            try:
                on_progress = (lambda: self._heartbeat(schedule_id)) if schedule_id else None
                results = await self.apply_items(client, items, phase, on_progress)
            finally:
                await client.close()

        ok_label = "applied" if phase == PHASE_APPLY else "reverted"
        annotated = [
            item.model_copy(update={
                "result": ok_label if result.ok else "failed",
                "error": result.error
            })
            for item, result in zip(items, results)
        ]
        return annotated, failure_message(results, phase)

    async def _heartbeat(self, schedule_id: str) -> None:
        try:
            await self.store.heartbeat(schedule_id)
        except Exception as e:
            # A missed heartbeat only risks a later stall verdict
            logger.warning(f"Schedule {schedule_id}: heartbeat failed: {e}")

    async def _finish(
        self,
        schedule: Schedule,
        expected: ScheduleStatus,
        new: ScheduleStatus,
        error: Optional[str] = None,
        items: Optional[Sequence[LineItem]] = None
    ) -> Optional[Schedule]:
        try:
            return await self.store.transition(schedule.id, expected, new, error=error, items=items)
        except StaleTransition as e:
            # Stall recovery or an operator moved it meanwhile
            logger.warning(f"Schedule {schedule.id}: could not record {new.value}: {e}")
            return None

    async def execute_apply(self, schedule: Schedule, now: Optional[datetime] = None) -> Optional[Schedule]:
        """
        Apply a pending schedule.

        Returns:
            The schedule in its final state, or None if another worker owns it.
        """
        try:
            await self.store.transition(schedule.id, ScheduleStatus.PENDING, ScheduleStatus.RUNNING, now=now)
        except StaleTransition:
            logger.info(f"Schedule {schedule.id} already claimed, skipping apply")
            return None

        logger.info(f"Applying schedule {schedule.id} ({len(schedule.items)} items) for tenant {schedule.tenant_id}")

        # The plan may have changed since submission
        try:
            plan = await self.plan_provider.get_plan(schedule.tenant_id)
        except Exception as e:
            logger.error(f"Schedule {schedule.id}: plan lookup failed: {e}")
            return await self._finish(
                schedule, ScheduleStatus.RUNNING, ScheduleStatus.FAILED,
                error=f"Plan lookup failed: {e}"
            )

        decision = authorize(
            plan,
            QuotaRequest(
                item_count=len(schedule.items),
                direction=schedule.adjustment.direction,
                scheduled=schedule.window.mode == ScheduleMode.LATER or schedule.window.revert_enabled
            ),
            self.plan_limits
        )
        if not decision.allowed:
            logger.info(f"Schedule {schedule.id} blocked by plan ({decision.limit})")
            return await self._finish(
                schedule, ScheduleStatus.RUNNING, ScheduleStatus.FAILED,
                error=f"Blocked by plan limits ({decision.limit}): {decision.reason}"
            )

        items, error = await self.push_prices(schedule.tenant_id, schedule.items, PHASE_APPLY, schedule.id)

        if error:
            logger.warning(f"Schedule {schedule.id} failed: {error}")
            return await self._finish(schedule, ScheduleStatus.RUNNING, ScheduleStatus.FAILED, error=error, items=items)

        logger.info(f"Schedule {schedule.id} applied")
        return await self._finish(schedule, ScheduleStatus.RUNNING, ScheduleStatus.DONE, items=items)

    async def execute_revert(self, schedule: Schedule, now: Optional[datetime] = None) -> Optional[Schedule]:
        """
        Restore original prices for a done schedule with revert enabled.

        Returns:
            The schedule in its final state, or None if another worker owns it.
        """
        try:
            await self.store.transition(schedule.id, ScheduleStatus.DONE, ScheduleStatus.REVERTING, now=now)
        except StaleTransition:
            logger.info(f"Schedule {schedule.id} already claimed, skipping revert")
            return None

        logger.info(f"Reverting schedule {schedule.id} ({len(schedule.items)} items) for tenant {schedule.tenant_id}")

        items, error = await self.push_prices(schedule.tenant_id, schedule.items, PHASE_REVERT, schedule.id)

        if error:
            logger.warning(f"Schedule {schedule.id} revert failed: {error}")
            return await self._finish(
                schedule, ScheduleStatus.REVERTING, ScheduleStatus.REVERT_FAILED, error=error, items=items
            )

        logger.info(f"Schedule {schedule.id} reverted")
        return await self._finish(schedule, ScheduleStatus.REVERTING, ScheduleStatus.REVERTED, items=items)

    async def recover_stalled(self, now: Optional[datetime] = None) -> int:
        """
        Fail schedules left running/reverting by a crashed worker.

        A schedule counts as stalled when its worker has not sent a heartbeat
        for stall_timeout. The swap re-checks the mark, so a heartbeat landing
        after the listing keeps the run alive.

        Returns:
            Number of schedules moved to a failed state
        """
        now = now or _utcnow()
        recovered = 0

        cutoff = now - self.stall_timeout

        for schedule in await self.store.list_stalled(cutoff, limit=self.batch_size):
            if schedule.status == ScheduleStatus.RUNNING:
                target = ScheduleStatus.FAILED
                error = "Apply was interrupted before completion; some items may already have the new price."
            else:
                target = ScheduleStatus.REVERT_FAILED
                error = "Revert was interrupted before completion; some items may already be restored."

            try:
                await self.store.transition(
                    schedule.id, schedule.status, target, error=error, stalled_before=cutoff
                )
            except StaleTransition as e:
                logger.info(f"Schedule {schedule.id} not recovered: {e}")
                continue

            logger.warning(f"Schedule {schedule.id} stalled in {schedule.status.value}, marked {target.value}")
            recovered += 1

        return recovered

    async def tick(self, now: Optional[datetime] = None) -> TickStats:
        """Run one scheduling pass: recover stalled, then due applies, then due reverts."""
        now = now or _utcnow()
        stats = TickStats()

        stats.recovered = await self.recover_stalled(now)

        for schedule in await self.store.list_due(now, ScheduleStatus.PENDING, limit=self.batch_size):
            result = await self.execute_apply(schedule, now=now)
            if result is None:
                stats.skipped += 1
            elif result.status == ScheduleStatus.DONE:
                stats.done += 1
            else:
                stats.failed += 1

        for schedule in await self.store.list_due(now, ScheduleStatus.DONE, limit=self.batch_size):
            result = await self.execute_revert(schedule, now=now)
            if result is None:
                stats.skipped += 1
            elif result.status == ScheduleStatus.REVERTED:
                stats.reverted += 1
            else:
                stats.revert_failed += 1

        return stats

    def wake(self) -> None:
        """
        Run the next tick without waiting for the poll interval.

        Only affects run_forever() in this process. A standalone worker sees
        new schedules on its next poll.
        """
        self._wake.set()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()

    async def run_forever(self) -> None:
        """Poll for due schedules until stop() is called."""
        logger.info(f"Scheduler started (poll interval {self.poll_interval}s)")

        while not self._stop.is_set():
            self._wake.clear()
            try:
                stats = await self.tick()
                if stats.done or stats.failed or stats.reverted or stats.revert_failed or stats.recovered:
                    logger.info(f"Scheduler tick: {stats}")
            except Exception:
                logger.exception("Scheduler tick failed")

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler stopped")
