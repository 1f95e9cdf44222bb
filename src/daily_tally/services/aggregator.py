"""Read aggregator: time-boxed, single-flight reads over the backing store.

Holds one cached DailyAggregate for the current effective date and one
cached DynamicSettings, each behind its own SingleFlightCache. This is the
read path whenever the fast cache is absent or unreachable, and the source
of truth for the credit check when the fast cache cannot answer.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from ..cache.exceptions import CacheUnavailableError
from ..cache.fast_cache import FastCache
from ..models import DailyAggregate, DynamicSettings
from ..observability.metrics import record_upstream_fetch
from ..store.base import BackingStore
from ..store.exceptions import StoreError
from .dates import effective_date
from .single_flight import SingleFlightCache

logger = logging.getLogger(__name__)


class ReadAggregator:
    """Cached, deduplicated access to today's aggregate and the settings."""

    def __init__(
        self,
        store: BackingStore,
        tz_name: str,
        default_settings: DynamicSettings,
        aggregate_ttl: float = 5.0,
        settings_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.tz_name = tz_name
        self.default_settings = default_settings
        self._aggregate = SingleFlightCache(
            self._load_aggregate, aggregate_ttl, clock=clock, name="aggregate"
        )
        self._settings = SingleFlightCache(
            store.read_settings, settings_ttl, clock=clock, name="settings"
        )

    # Settings and the day key

    async def settings(self) -> DynamicSettings:
        """Cached settings, or the configured defaults when they cannot be read."""
        try:
            return await self._settings.get()
        except StoreError as e:
            logger.warning("Settings unavailable, using defaults: %s", e)
            return self.default_settings

    async def effective_date(self, now: Optional[datetime] = None) -> str:
        """Current effective date, using the reset hour from settings."""
        current = await self.settings()
        return effective_date(current.reset_hour, self.tz_name, now)

    # Aggregate

    async def _load_aggregate(self) -> DailyAggregate:
        date = await self.effective_date()
        record_upstream_fetch()
        logger.debug("Reading aggregate for %s from backing store", date)
        return await self.store.read_aggregate(date)

    async def _drop_if_rolled_over(self) -> None:
        cached = self._aggregate.peek()
        if cached is not None and cached.date != await self.effective_date():
            logger.info("Effective date moved past %s, dropping cached aggregate", cached.date)
            self._aggregate.invalidate()

    async def get_daily_total(self) -> DailyAggregate:
        """Today's aggregate, served from cache within the TTL.

        Concurrent callers on a cold or stale cache share a single backing
        store read. Failures propagate to every waiter and are not cached.
        """
        await self._drop_if_rolled_over()
        return await self._aggregate.get()

    def peek(self) -> Optional[DailyAggregate]:
        """The cached aggregate if still fresh, without any I/O."""
        return self._aggregate.peek()

    async def refresh(self) -> DailyAggregate:
        """Read through to the backing store and restamp the cache."""
        return await self._aggregate.refresh()

    def invalidate_cache(self) -> None:
        self._aggregate.invalidate()

    def apply_delta(self, date: str, name: str, count: int) -> Optional[DailyAggregate]:
        """Optimistically apply ``count`` to the cached aggregate for ``date``.

        The fetch time is left alone so the patched view is replaced by a
        real read once the TTL runs out. Returns the patched aggregate, or
        None when no fresh aggregate for ``date`` was cached.
        """
        cached = self._aggregate.peek()
        if cached is None or cached.date != date:
            return None
        self._aggregate.update(lambda agg: agg.with_delta(name, count))
        return self._aggregate.peek()


async def read_current(
    aggregator: ReadAggregator,
    fast_cache: Optional[FastCache],
    date: str,
) -> DailyAggregate:
    """Today's aggregate from the fast cache, else through the read aggregator.

    A fast cache that is unreachable, or that holds no counters for
    ``date`` yet, sends the read to the aggregator. Nothing is seeded here.
    """
    if fast_cache is not None:
        try:
            aggregate = await fast_cache.get_aggregate(date)
            if aggregate is not None:
                return aggregate
            logger.debug("Fast cache has no counters for %s, reading backing store", date)
        except CacheUnavailableError as e:
            logger.warning("Fast cache unavailable, reading through aggregator: %s", e)
    return await aggregator.get_daily_total()
