"""
Schedule storage in Redis.

Layout:
    schedule:{id}                              hash with the schedule record
    tenant:{tenant_id}:schedules               zset of ids by created_at
    tenant:{tenant_id}:idempotency:{key}       schedule id for a submission
    schedules:due:apply                        zset of pending ids by run_at
    schedules:due:revert                       zset of done ids by revert_at
    schedules:inflight                         zset of running/reverting ids by last heartbeat

Status changes go through transition(), a WATCH/MULTI compare-and-swap.
It is the only guard against two workers executing the same schedule.
Schedule records are never expired or deleted here; idempotency keys
derived from the submission itself expire (see create).
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from app.core.errors import InvalidTransition, ScheduleConflict, ScheduleNotFound, StaleTransition
from app.schemas.prices import AdjustmentSpec, LineItem
from app.schemas.schedules import Schedule, ScheduleStatus, ScheduleWindow

logger = logging.getLogger(__name__)

APPLY_INDEX = "schedules:due:apply"
REVERT_INDEX = "schedules:due:revert"
INFLIGHT_INDEX = "schedules:inflight"

ALLOWED_TRANSITIONS = {
    (ScheduleStatus.PENDING, ScheduleStatus.RUNNING),
    (ScheduleStatus.RUNNING, ScheduleStatus.DONE),
    (ScheduleStatus.RUNNING, ScheduleStatus.FAILED),
    (ScheduleStatus.DONE, ScheduleStatus.REVERTING),
    (ScheduleStatus.REVERTING, ScheduleStatus.REVERTED),
    (ScheduleStatus.REVERTING, ScheduleStatus.REVERT_FAILED),
    # Operator re-triggers
    (ScheduleStatus.FAILED, ScheduleStatus.PENDING),
    (ScheduleStatus.REVERT_FAILED, ScheduleStatus.DONE),
}

INFLIGHT_STATUSES = (ScheduleStatus.RUNNING, ScheduleStatus.REVERTING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_items(items: Sequence[LineItem]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


class ScheduleStore:
    """Tenant-scoped storage for price schedules."""

    def __init__(self, redis_client: aioredis.Redis):
        """
        Args:
            redis_client: Redis async client (decode_responses=True)
        """
        self.redis = redis_client

    def _key(self, schedule_id: str) -> str:
        return f"schedule:{schedule_id}"

    def _tenant_index(self, tenant_id: str) -> str:
        return f"tenant:{tenant_id}:schedules"

    def _idempotency_key(self, tenant_id: str, key: str) -> str:
        return f"tenant:{tenant_id}:idempotency:{key}"

    def _to_mapping(self, schedule: Schedule) -> Dict[str, str]:
        """Convert Schedule to a flat Redis hash."""
        return {
            "id": schedule.id,
            "tenant_id": schedule.tenant_id,
            "created_at": schedule.created_at.isoformat(),
            "updated_at": schedule.updated_at.isoformat(),
            "status": schedule.status.value,
            "last_error": schedule.last_error or "",
            "window": schedule.window.model_dump_json(),
            "adjustment": schedule.adjustment.model_dump_json(),
            "items": _dump_items(schedule.items),
            "idempotency_key": schedule.idempotency_key or "",
            "attempts": str(schedule.attempts),
        }

    def _from_mapping(self, data: Dict[str, str]) -> Schedule:
        """Convert a Redis hash back to Schedule."""
        return Schedule(
            id=data["id"],
            tenant_id=data["tenant_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            window=ScheduleWindow.model_validate_json(data["window"]),
            adjustment=AdjustmentSpec.model_validate_json(data["adjustment"]),
            items=[LineItem.model_validate(item) for item in json.loads(data["items"])],
            status=ScheduleStatus(data["status"]),
            last_error=data.get("last_error") or None,
            idempotency_key=data.get("idempotency_key") or None,
            attempts=int(data.get("attempts") or 0)
        )

    def _queue_index_updates(
        self,
        pipe,
        schedule_id: str,
        window: ScheduleWindow,
        old: Optional[ScheduleStatus],
        new: ScheduleStatus,
        now: datetime
    ) -> None:
        """Queue due/inflight index changes for a status change inside MULTI."""
        if old == ScheduleStatus.PENDING:
            pipe.zrem(APPLY_INDEX, schedule_id)
        if new == ScheduleStatus.PENDING:
            pipe.zadd(APPLY_INDEX, {schedule_id: window.run_at.timestamp()})

        if old == ScheduleStatus.DONE:
            pipe.zrem(REVERT_INDEX, schedule_id)
        if new == ScheduleStatus.DONE and window.revert_enabled and window.revert_at:
            pipe.zadd(REVERT_INDEX, {schedule_id: window.revert_at.timestamp()})

        if old in INFLIGHT_STATUSES:
            pipe.zrem(INFLIGHT_INDEX, schedule_id)
        if new in INFLIGHT_STATUSES:
            pipe.zadd(INFLIGHT_INDEX, {schedule_id: now.timestamp()})

    async def create(self, schedule: Schedule, idempotency_ttl: Optional[int] = None) -> Schedule:
        """
        Insert a schedule atomically with its indexes.

        A key already reserved for this same schedule (see
        reserve_idempotency_key) is not a conflict. idempotency_ttl expires the
        key after that many seconds; None keeps it forever.

        Raises:
            ScheduleConflict: If the tenant already has a schedule with the
                same idempotency key.
        """
        key = self._key(schedule.id)
        idem_key = None
        if schedule.idempotency_key:
            idem_key = self._idempotency_key(schedule.tenant_id, schedule.idempotency_key)

        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                if idem_key:
                    await pipe.watch(idem_key)
                    existing = await pipe.get(idem_key)
                    if existing and existing != schedule.id:
                        raise ScheduleConflict(schedule.idempotency_key, existing)

                pipe.multi()
                pipe.hset(key, mapping=self._to_mapping(schedule))
                if idem_key:
                    pipe.set(idem_key, schedule.id, ex=idempotency_ttl)
                pipe.zadd(self._tenant_index(schedule.tenant_id), {schedule.id: schedule.created_at.timestamp()})
                self._queue_index_updates(pipe, schedule.id, schedule.window, None, schedule.status, schedule.created_at)
                await pipe.execute()
            except WatchError:
                raise ScheduleConflict(schedule.idempotency_key or "")

        logger.info(f"Created schedule {schedule.id} for tenant {schedule.tenant_id} with status {schedule.status.value}")
        return schedule

    async def find_by_idempotency_key(self, tenant_id: str, key: str) -> Optional[str]:
        """Return the schedule id recorded for an idempotency key, if any."""
        return await self.redis.get(self._idempotency_key(tenant_id, key))

    async def reserve_idempotency_key(
        self,
        tenant_id: str,
        key: str,
        schedule_id: str,
        ttl: Optional[int] = None
    ) -> None:
        """
        Claim an idempotency key for a schedule before it is created.

        Raises:
            ScheduleConflict: If another schedule already holds the key.
        """
        idem_key = self._idempotency_key(tenant_id, key)
        if await self.redis.set(idem_key, schedule_id, nx=True, ex=ttl):
            return

        existing = await self.redis.get(idem_key)
        if existing != schedule_id:
            raise ScheduleConflict(key, existing)

    async def release_idempotency_key(self, tenant_id: str, key: str, schedule_id: str) -> None:
        """Drop a reservation made by reserve_idempotency_key for schedule_id."""
        idem_key = self._idempotency_key(tenant_id, key)
        if await self.redis.get(idem_key) == schedule_id:
            await self.redis.delete(idem_key)

    async def heartbeat(self, schedule_id: str, now: Optional[datetime] = None) -> None:
        """
        Refresh the in-progress mark of a running/reverting schedule.

        No-op once the schedule has left the inflight index.
        """
        now = now or _utcnow()
        await self.redis.zadd(INFLIGHT_INDEX, {schedule_id: now.timestamp()}, xx=True)

    async def load(self, schedule_id: str) -> Optional[Schedule]:
        """Load a schedule by id without a tenant check (executor use only)."""
        data = await self.redis.hgetall(self._key(schedule_id))
        if not data:
            return None
        return self._from_mapping(data)

    async def get(self, tenant_id: str, schedule_id: str) -> Schedule:
        """
        Get a tenant's schedule.

        Raises:
            ScheduleNotFound: If absent or owned by another tenant.
        """
        schedule = await self.load(schedule_id)
        if schedule is None or schedule.tenant_id != tenant_id:
            raise ScheduleNotFound(schedule_id)
        return schedule

    async def _load_many(self, schedule_ids: Sequence[str]) -> List[Schedule]:
        if not schedule_ids:
            return []

        async with self.redis.pipeline(transaction=False) as pipe:
            for schedule_id in schedule_ids:
                pipe.hgetall(self._key(schedule_id))
            rows = await pipe.execute()

        return [self._from_mapping(row) for row in rows if row]

    async def list_for_tenant(self, tenant_id: str, limit: int = 50) -> tuple[List[Schedule], int]:
        """List a tenant's schedules, newest first. Returns (schedules, total)."""
        index = self._tenant_index(tenant_id)
        ids = await self.redis.zrevrange(index, 0, max(limit, 1) - 1)
        total = await self.redis.zcard(index)
        schedules = await self._load_many(ids)
        return [s for s in schedules if s.tenant_id == tenant_id], total

    async def list_due(self, now: datetime, status: ScheduleStatus, limit: int = 100) -> List[Schedule]:
        """
        List schedules due for execution, ordered by due time ascending.

        Args:
            now: Cutoff instant
            status: PENDING for due applies (run_at <= now) or DONE for due
                reverts (revert_at <= now)
            limit: Maximum number of schedules
        """
        if status == ScheduleStatus.PENDING:
            index = APPLY_INDEX
        elif status == ScheduleStatus.DONE:
            index = REVERT_INDEX
        else:
            raise ValueError(f"No due index for status {status.value}")

        ids = await self.redis.zrangebyscore(index, "-inf", now.timestamp(), start=0, num=limit)
        schedules = await self._load_many(ids)
        return [s for s in schedules if s.status == status]

    async def list_stalled(self, before: datetime, limit: int = 100) -> List[Schedule]:
        """List running/reverting schedules that entered that state before `before`."""
        ids = await self.redis.zrangebyscore(INFLIGHT_INDEX, "-inf", before.timestamp(), start=0, num=limit)
        schedules = await self._load_many(ids)
        return [s for s in schedules if s.status in INFLIGHT_STATUSES]

    async def transition(
        self,
        schedule_id: str,
        expected: ScheduleStatus,
        new: ScheduleStatus,
        error: Optional[str] = None,
        items: Optional[Sequence[LineItem]] = None,
        now: Optional[datetime] = None,
        stalled_before: Optional[datetime] = None
    ) -> Schedule:
        """
        Compare-and-swap a schedule's status.

        Args:
            schedule_id: Schedule ID
            expected: Status the caller believes is persisted
            new: Target status
            error: last_error to record (cleared when None)
            items: Replacement line items (per-item results)
            now: Transition time
            stalled_before: Only swap if the inflight mark is older than this;
                a heartbeat landing meanwhile makes the swap stale

        Returns:
            The updated schedule

        Raises:
            InvalidTransition: If expected -> new is not a lifecycle edge
            ScheduleNotFound: If the schedule does not exist
            StaleTransition: If the persisted status differs from expected or
                another writer changed the record concurrently
        """
        expected = ScheduleStatus(expected)
        new = ScheduleStatus(new)
        if (expected, new) not in ALLOWED_TRANSITIONS:
            raise InvalidTransition(f"Cannot move a schedule from {expected.value} to {new.value}")

        now = now or _utcnow()
        key = self._key(schedule_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                if stalled_before is not None:
                    await pipe.watch(key, INFLIGHT_INDEX)
                else:
                    await pipe.watch(key)
                data = await pipe.hgetall(key)
                if not data:
                    raise ScheduleNotFound(schedule_id)

                current = data.get("status")
                if current != expected.value:
                    raise StaleTransition(schedule_id, expected.value, current)

                if stalled_before is not None:
                    mark = await pipe.zscore(INFLIGHT_INDEX, schedule_id)
                    if mark is None or mark > stalled_before.timestamp():
                        raise StaleTransition(schedule_id, expected.value, f"{current} (still active)")

                schedule = self._from_mapping(data)
                updates = {
                    "status": new.value,
                    "last_error": error or "",
                    "updated_at": now.isoformat(),
                }
                attempts = schedule.attempts
                if new in INFLIGHT_STATUSES:
                    attempts += 1
                    updates["attempts"] = str(attempts)
                if items is not None:
                    updates["items"] = _dump_items(items)

                pipe.multi()
                pipe.hset(key, mapping=updates)
                self._queue_index_updates(pipe, schedule_id, schedule.window, expected, new, now)
                await pipe.execute()
            except WatchError:
                raise StaleTransition(schedule_id, expected.value, None)

        logger.debug(f"Schedule {schedule_id}: {expected.value} -> {new.value}")

        return schedule.model_copy(update={
            "status": new,
            "last_error": error,
            "updated_at": now,
            "attempts": attempts,
            "items": list(items) if items is not None else schedule.items,
        })
