"""Seed the fast cache from the backing store."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..cache.fast_cache import FastCache
from ..services.aggregator import ReadAggregator
from ..services.seed import seed_fast_cache
from .deps import get_aggregator, get_fast_cache, require_seed_secret

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/seed", dependencies=[Depends(require_seed_secret)])
async def seed(
    aggregator: ReadAggregator = Depends(get_aggregator),
    fast_cache: Optional[FastCache] = Depends(get_fast_cache),
):
    """Overwrite today's fast cache counters with the backing store's totals."""
    if fast_cache is None:
        return JSONResponse(status_code=400, content={"error": "No fast cache configured"})

    try:
        aggregate = await seed_fast_cache(aggregator, fast_cache)
    except Exception:
        logger.exception("Seeding failed")
        return JSONResponse(status_code=500, content={"error": "Seeding failed"})

    return {
        "success": True,
        "message": "Fast cache seeded successfully",
        "seededData": {
            "total": aggregate.total,
            "date": aggregate.date,
            "userCount": len(aggregate.user_counts),
        },
    }
