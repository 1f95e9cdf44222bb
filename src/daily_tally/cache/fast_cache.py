"""Redis-backed fast cache and replay queue.

Per effective date the cache holds two counters, both only ever changed by
atomic increments:

    {prefix}:{date}:total   INCRBY counter
    {prefix}:{date}:users   hash of name -> HINCRBY counter

Accepted readings are also pushed as JSON onto ``{prefix}:sync_queue`` in the
same MULTI/EXEC as the increments, to be replayed into the backing store.
The claim/ack replay variant moves entries into ``{prefix}:sync_processing``
until the backing store append succeeds.

Keys are never expired here; a new effective date simply starts new keys.
The counters are advisory: amounts are only durable once they are in the
backing store or at least in the queue.

Readings written straight to the backing store while the cache was
unreachable are held per date in process and added to the counters, without
a queue push, once that day exists in the cache again.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..models import DailyAggregate, Reading
from .exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


class FastCache:
    """Atomic per-day counters plus the durable replay queue."""

    def __init__(self, client: aioredis.Redis, key_prefix: str = "tally"):
        self._redis = client
        self.key_prefix = key_prefix
        # date -> name -> amount written to the backing store but not counted here
        self._pending: Dict[str, Dict[str, int]] = {}

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "tally") -> "FastCache":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
        )
        return cls(client, key_prefix=key_prefix)

    # Keys

    def total_key(self, date: str) -> str:
        return f"{self.key_prefix}:{date}:total"

    def users_key(self, date: str) -> str:
        return f"{self.key_prefix}:{date}:users"

    @property
    def queue_key(self) -> str:
        return f"{self.key_prefix}:sync_queue"

    @property
    def processing_key(self) -> str:
        return f"{self.key_prefix}:sync_processing"

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except RedisError as exc:
            raise CacheUnavailableError(f"Fast cache {operation} failed: {exc}") from exc

    # Fallback reconciliation

    def record_fallback(self, reading: Reading) -> None:
        """Remember a reading that bypassed the cache so the counters can catch up."""
        day = self._pending.setdefault(reading.date, {})
        day[reading.name] = day.get(reading.name, 0) + reading.count

    def _restore_pending(self, date: str, counts: Dict[str, int]) -> None:
        day = self._pending.setdefault(date, {})
        for name, amount in counts.items():
            day[name] = day.get(name, 0) + amount

    async def _apply_pending(self) -> None:
        """Add held fallback amounts to the counters of days already in the cache.

        Days the cache has not started keep their amounts until they are
        started, since a read of such a day goes to the backing store anyway.
        Raises RedisError with the amounts put back.
        """
        for date in list(self._pending):
            counts = self._pending.pop(date, None)
            if not counts:
                continue
            try:
                if not await self._redis.exists(self.total_key(date)):
                    self._restore_pending(date, counts)
                    continue
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.incrby(self.total_key(date), sum(counts.values()))
                    for name, amount in counts.items():
                        pipe.hincrby(self.users_key(date), name, amount)
                    await pipe.execute()
            except RedisError:
                self._restore_pending(date, counts)
                raise
            logger.info("Applied %d fallback amount(s) to fast cache counters for %s", len(counts), date)

    # Counters

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self._redis.ping())

    async def commit(self, reading: Reading) -> Tuple[int, int]:
        """Apply ``reading`` to both counters and enqueue it, atomically.

        Held fallback amounts for the same date go into the same transaction
        but not onto the queue. Returns the new (total, user count) as
        reported by the increments themselves, so no follow-up read is needed.
        """
        async with self._guard("commit"):
            await self._apply_pending()
            held = self._pending.pop(reading.date, {})
            amounts = dict(held)
            amounts[reading.name] = amounts.get(reading.name, 0) + reading.count
            others = [name for name in amounts if name != reading.name]
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.incrby(self.total_key(reading.date), sum(amounts.values()))
                    pipe.hincrby(self.users_key(reading.date), reading.name, amounts[reading.name])
                    for name in others:
                        pipe.hincrby(self.users_key(reading.date), name, amounts[name])
                    pipe.rpush(self.queue_key, reading.model_dump_json())
                    results = await pipe.execute()
            except RedisError:
                if held:
                    self._restore_pending(reading.date, held)
                raise
        return int(results[0]), int(results[1])

    async def get_aggregate(self, date: str) -> Optional[DailyAggregate]:
        """Read the counters for ``date``; None when the day has not been started or seeded."""
        async with self._guard("read"):
            await self._apply_pending()
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.get(self.total_key(date))
                pipe.hgetall(self.users_key(date))
                total, users = await pipe.execute()
        if total is None:
            return None
        return DailyAggregate(
            date=date,
            total=int(total),
            user_counts={name: int(value) for name, value in (users or {}).items()},
        )

    async def get_user_count(self, date: str, name: str) -> Optional[int]:
        """Current counter for ``name``; None when the day is not present in the cache."""
        async with self._guard("read"):
            await self._apply_pending()
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.exists(self.total_key(date))
                pipe.hget(self.users_key(date), name)
                exists, value = await pipe.execute()
        if not exists:
            return None
        return int(value) if value is not None else 0

    async def seed(self, aggregate: DailyAggregate) -> None:
        """Overwrite the counters for ``aggregate.date`` with the given values."""
        users: Dict[str, int] = dict(aggregate.user_counts)
        async with self._guard("seed"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self.total_key(aggregate.date), aggregate.total)
                pipe.delete(self.users_key(aggregate.date))
                if users:
                    pipe.hset(self.users_key(aggregate.date), mapping=users)
                await pipe.execute()
        # The backing store totals already include any fallback writes
        self._pending.pop(aggregate.date, None)

    # Replay queue

    async def queue_length(self) -> int:
        async with self._guard("queue length"):
            return int(await self._redis.llen(self.queue_key))

    async def pop_batch(self, count: int) -> List[str]:
        """Remove and return up to ``count`` entries. Popped entries are gone for good."""
        async with self._guard("pop"):
            entries = await self._redis.lpop(self.queue_key, count)
        if entries is None:
            return []
        return entries if isinstance(entries, list) else [entries]

    async def claim_batch(self, count: int) -> List[str]:
        """Move up to ``count`` entries into the processing list and return them.

        Entries already sitting in the processing list belong to a run that
        did not acknowledge them; they are returned first, on their own.
        """
        async with self._guard("claim"):
            pending = await self._redis.lrange(self.processing_key, 0, -1)
            if pending:
                logger.warning("Retrying %d unacknowledged replay entries", len(pending))
                return list(pending)

            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(count):
                    pipe.lmove(self.queue_key, self.processing_key, "LEFT", "RIGHT")
                moved = await pipe.execute()
        return [entry for entry in moved if entry is not None]

    async def ack_claimed(self) -> None:
        """Drop the processing list once its entries are persisted."""
        async with self._guard("ack"):
            await self._redis.delete(self.processing_key)

    async def close(self) -> None:
        await self._redis.aclose()
