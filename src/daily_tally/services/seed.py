"""Seed: overwrite the fast cache counters with the backing store's truth."""

import logging

from ..cache.fast_cache import FastCache
from ..models import DailyAggregate
from .aggregator import ReadAggregator

logger = logging.getLogger(__name__)


async def seed_fast_cache(aggregator: ReadAggregator, fast_cache: FastCache) -> DailyAggregate:
    """Copy today's aggregate from the backing store into the fast cache.

    Reads through to the backing store rather than trusting the read
    aggregator's cache, and overwrites both counters for the effective date.
    Readings still waiting in the replay queue are not in the backing store
    yet, so seeding before a replay drops them from the counters until the
    next seed.
    """
    aggregate = await aggregator.refresh()
    await fast_cache.seed(aggregate)
    logger.info(
        "Seeded fast cache for %s: total=%d, names=%d",
        aggregate.date,
        aggregate.total,
        len(aggregate.user_counts),
    )
    return aggregate
