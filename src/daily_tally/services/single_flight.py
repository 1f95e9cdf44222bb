"""Time-boxed cache cell with single-flight loading.

One cached value plus its fetch time, and at most one load in flight.
Concurrent callers that find the value stale all await the same load, so a
cold cache hit by N callers produces exactly one upstream call. A failed
load is delivered to every waiter and then forgotten; the next call starts
a fresh load.

The freshness check and the in-flight check-and-set run under an
asyncio.Lock with no suspension point inside. Waiters await the shared task
through asyncio.shield; cancelling one waiter leaves the load running.
update() keeps the original fetch time, so patched values expire on schedule.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlightCache(Generic[T]):
    """A single TTL-bounded value loaded by at most one task at a time."""

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.name = name
        self._value: Optional[T] = None
        self._fetched_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_generation = 0
        self._generation = 0
        self._lock = asyncio.Lock()

        # Metrics counters
        self.hits = 0
        self.loads = 0

    def _is_fresh(self) -> bool:
        return (
            self._fetched_at is not None
            and (self._clock() - self._fetched_at) < self.ttl_seconds
        )

    def peek(self) -> Optional[T]:
        """Return the cached value if it is still fresh, without loading."""
        return self._value if self._is_fresh() else None

    async def get(self) -> T:
        """Return the fresh cached value, or join or start a load."""
        async with self._lock:
            if self._is_fresh():
                self.hits += 1
                return self._value  # type: ignore[return-value]
            task = self._start_or_join()
        return await asyncio.shield(task)

    async def refresh(self) -> T:
        """Load regardless of freshness, joining a load already in flight."""
        async with self._lock:
            task = self._start_or_join()
        return await asyncio.shield(task)

    def _start_or_join(self) -> asyncio.Task:
        # A load started before the last invalidate() may predate a write
        if self._inflight is None or self._inflight_generation != self._generation:
            self.loads += 1
            self._inflight_generation = self._generation
            self._inflight = asyncio.ensure_future(self._load(self._generation))
            logger.debug("%s: starting upstream load", self.name)
        return self._inflight

    async def _load(self, generation: int) -> T:
        try:
            value = await self._loader()
            # An invalidate() during the load means this value may predate a write
            if generation == self._generation:
                self._value = value
                self._fetched_at = self._clock()
            return value
        finally:
            if self._inflight_generation == generation:
                self._inflight = None

    def invalidate(self) -> None:
        """Forget the cached value and its fetch time."""
        self._generation += 1
        self._value = None
        self._fetched_at = None

    def update(self, patch: Callable[[T], T]) -> bool:
        """Apply ``patch`` to the cached value, keeping its fetch time.

        Returns False when there is nothing cached to patch.
        """
        if self._value is None:
            return False
        self._value = patch(self._value)
        return True
