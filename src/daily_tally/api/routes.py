"""Main API routes for Daily Tally."""

from fastapi import APIRouter

from .cron import router as cron_router
from .readings import router as readings_router
from .seed import router as seed_router

# Main API router
router = APIRouter()

# Include sub-routers
router.include_router(readings_router, tags=["readings"])
router.include_router(cron_router, tags=["replay"])
router.include_router(seed_router, tags=["replay"])
