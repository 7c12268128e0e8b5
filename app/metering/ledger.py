from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

from app.metering.errors import OperationType
from app.metering.models import Decision, UsageRecord
from app.metering.store import UsageStore
from app.metering.tiers import UNLIMITED, TierCatalog

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_period(now: datetime) -> tuple[datetime, datetime]:
    """Return the [start, end) bounds of the UTC calendar month containing `now`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class UsageLedger:
    """Per-user, per-period usage counters.

    Every read or write for a user runs under that user's lock, so a
    reservation check and the pending-count bump happen as one step. Provider
    calls never run under the lock; a reservation is held as a pending unit
    until `commit` or `rollback_reservation` resolves it.
    """

    def __init__(self, store: UsageStore, catalog: TierCatalog, *, clock: Clock = utc_now):
        self._store = store
        self._catalog = catalog
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}
        self._pending: defaultdict[tuple[str, OperationType], int] = defaultdict(int)

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's lock; the entry is dropped once no caller needs it."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        self._lock_refs[user_id] = self._lock_refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[user_id] -= 1
            if self._lock_refs[user_id] == 0:
                del self._lock_refs[user_id]
                self._locks.pop(user_id, None)

    def held_locks(self) -> int:
        return len(self._locks)

    def _active_record(self, user_id: str) -> UsageRecord:
        now = self._clock()
        latest = self._store.latest_record(user_id)
        if latest is not None and latest.state(now) == "active":
            return latest

        period_start, period_end = month_period(now)
        record = self._store.create_record(
            UsageRecord(user_id=user_id, period_start=period_start, period_end=period_end)
        )
        if latest is not None:
            logger.info(
                "usage_period_rollover user=%s archived_period=%s parsing=%s ai=%s cost=%.4f new_period=%s",
                user_id,
                latest.period_start.isoformat(),
                latest.parsing_count,
                latest.ai_call_count,
                latest.accumulated_cost,
                record.period_start.isoformat(),
            )
        return record

    def _release(self, user_id: str, op_type: OperationType) -> bool:
        key = (user_id, op_type)
        if self._pending[key] <= 0:
            self._pending.pop(key, None)
            return False
        self._pending[key] -= 1
        if self._pending[key] == 0:
            del self._pending[key]
        return True

    def pending(self, user_id: str, op_type: OperationType) -> int:
        return self._pending.get((user_id, op_type), 0)

    async def current_usage(self, user_id: str) -> UsageRecord:
        async with self._user_lock(user_id):
            return self._active_record(user_id)

    async def try_reserve(self, user_id: str, tier_id: str, op_type: OperationType) -> Decision:
        tier = self._catalog.limits_for(tier_id)
        limit = tier.limit_for(op_type)
        async with self._user_lock(user_id):
            record = self._active_record(user_id)
            used = record.count_for(op_type) + self.pending(user_id, op_type)

            if tier.cost_ceiling > 0 and record.accumulated_cost >= tier.cost_ceiling:
                return Decision(allowed=False, remaining=0, limit=limit, used=used, reason="cost_ceiling")

            if limit == UNLIMITED:
                self._pending[(user_id, op_type)] += 1
                return Decision(allowed=True, remaining=UNLIMITED, limit=limit, used=used)

            if used >= limit:
                return Decision(allowed=False, remaining=0, limit=limit, used=used, reason="limit_reached")

            self._pending[(user_id, op_type)] += 1
            return Decision(allowed=True, remaining=limit - used - 1, limit=limit, used=used)

    async def commit(self, user_id: str, op_type: OperationType, cost: float) -> UsageRecord:
        cost = max(0.0, float(cost))
        async with self._user_lock(user_id):
            had_reservation = self._release(user_id, op_type)
            record = self._active_record(user_id)
            updated = self._store.increment(user_id, record.period_start, op_type, cost)
        if not had_reservation:
            logger.warning("usage_commit_without_reservation user=%s op=%s", user_id, op_type)
        logger.info(
            "usage_committed user=%s op=%s cost=%.6f parsing=%s ai=%s total_cost=%.6f",
            user_id,
            op_type,
            cost,
            updated.parsing_count,
            updated.ai_call_count,
            updated.accumulated_cost,
        )
        return updated

    async def rollback_reservation(self, user_id: str, op_type: OperationType) -> None:
        async with self._user_lock(user_id):
            released = self._release(user_id, op_type)
        if released:
            logger.info("usage_reservation_rolled_back user=%s op=%s", user_id, op_type)
        else:
            logger.warning("usage_rollback_without_reservation user=%s op=%s", user_id, op_type)

    def history(self, user_id: str) -> list[UsageRecord]:
        return self._store.history(user_id)

    async def snapshot(self, user_id: str, tier_id: str) -> dict[str, Any]:
        tier = self._catalog.limits_for(tier_id)
        record = await self.current_usage(user_id)
        return {
            "parsing_count": record.parsing_count,
            "ai_call_count": record.ai_call_count,
            "total_cost": round(record.accumulated_cost, 6),
            "tier": tier.tier_id,
            "period_start": record.period_start,
            "period_end": record.period_end,
            "limits": {
                "parsing": tier.parsing_limit_per_period,
                "ai": tier.ai_call_limit_per_period,
                "cost_ceiling": tier.cost_ceiling,
            },
        }
