"""Concurrency guard — bounds in-flight calls per account by tier.

Every admitted slot also schedules an automatic release after a fixed
timeout. That timer is a safety net for handlers that die without releasing;
normal completion must call ``release()``. Explicit release cancels the timer,
and each slot is decremented exactly once whichever path gets there first.

The timer fires whether or not the originating call finished, so a call
running longer than the timeout frees its slot early and the account may be
over-admitted for the rest of that call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from uuid_extensions import uuid7

from src.core.constants import CONCURRENCY_KEY_PREFIX, CONCURRENCY_RELEASE_SECONDS
from src.core.interfaces import BaseCounterStore
from src.core.logging import get_logger
from src.core.types import Limited, Tier
from src.saas.tiers import get_tier_policy

log = get_logger(__name__)


@dataclass(frozen=True)
class ConcurrencySlot:
    """Handle for one admitted call. Untracked slots belong to unlimited tiers."""

    account_id: str
    tracked: bool = True
    slot_id: str = field(default_factory=lambda: str(uuid7()))


class ConcurrencyGuard:
    """Per-account in-flight counter with tier ceilings."""

    def __init__(
        self,
        store: BaseCounterStore,
        release_after_seconds: float = CONCURRENCY_RELEASE_SECONDS,
    ) -> None:
        self._store = store
        self._release_after = release_after_seconds
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._expiring: set[asyncio.Task[None]] = set()

    @staticmethod
    def _key(account_id: str) -> str:
        return f"{CONCURRENCY_KEY_PREFIX}{account_id}"

    async def in_flight(self, account_id: str) -> int:
        return await self._store.get(self._key(account_id))

    async def acquire(self, account_id: str, tier: Tier) -> ConcurrencySlot | None:
        """Reserve a slot, or return None when the tier ceiling is reached."""
        ceiling = get_tier_policy(tier).concurrent_requests
        if tier is Tier.ADMIN or not isinstance(ceiling, Limited):
            return ConcurrencySlot(account_id=account_id, tracked=False)

        key = self._key(account_id)
        count = await self._store.incr(key)
        if count > ceiling.value:
            await self._store.decr(key)
            log.warning(
                "concurrency_limit_reached",
                account_id=account_id,
                tier=tier.name,
                ceiling=ceiling.value,
            )
            return None

        slot = ConcurrencySlot(account_id=account_id)
        loop = asyncio.get_running_loop()
        self._timers[slot.slot_id] = loop.call_later(
            self._release_after, self._schedule_expiry, slot,
        )
        return slot

    def _schedule_expiry(self, slot: ConcurrencySlot) -> None:
        task = asyncio.ensure_future(self._expire(slot))
        self._expiring.add(task)
        task.add_done_callback(self._expiring.discard)

    async def release(self, slot: ConcurrencySlot) -> None:
        """Free the slot on normal completion. Safe to call more than once."""
        if not slot.tracked:
            return
        handle = self._timers.pop(slot.slot_id, None)
        if handle is None:
            return
        handle.cancel()
        await self._store.decr(self._key(slot.account_id))

    async def _expire(self, slot: ConcurrencySlot) -> None:
        if self._timers.pop(slot.slot_id, None) is None:
            return
        log.warning("concurrency_slot_expired", account_id=slot.account_id, slot_id=slot.slot_id)
        await self._store.decr(self._key(slot.account_id))

    def pending_timers(self) -> int:
        return len(self._timers)


class RedisCounterStore(BaseCounterStore):
    """Shared counters so every API instance enforces one ceiling.

    Keys carry a TTL a little above the release timeout so a process that
    dies with slots held cannot pin an account at its ceiling forever.
    """

    def __init__(self, redis_url: str, ttl_seconds: int = int(CONCURRENCY_RELEASE_SECONDS) * 2) -> None:
        self._redis_url = redis_url
        self._ttl = ttl_seconds
        self._redis: aioredis.Redis | None = None

    async def connect(self) -> None:
        """Initialize the Redis connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            log.info("redis_connected")

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            log.info("redis_closed")

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    async def get(self, key: str) -> int:
        r = await self._get_redis()
        raw = await r.get(key)
        return int(raw) if raw is not None else 0

    async def incr(self, key: str) -> int:
        r = await self._get_redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self._ttl)
            value, _ = await pipe.execute()
        return int(value)

    async def decr(self, key: str) -> int:
        r = await self._get_redis()
        value = int(await r.decr(key))
        if value <= 0:
            await r.delete(key)
            return 0
        return value
