"""Request dependencies: services held on app.state and the bearer secret check."""

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Request

from ..cache.fast_cache import FastCache
from ..config import get_settings
from ..services.aggregator import ReadAggregator
from ..services.coordinator import WriteCoordinator
from ..services.replay import ReplayWorker

logger = logging.getLogger(__name__)


def get_aggregator(request: Request) -> ReadAggregator:
    return request.app.state.aggregator


def get_coordinator(request: Request) -> WriteCoordinator:
    return request.app.state.coordinator


def get_fast_cache(request: Request) -> Optional[FastCache]:
    return getattr(request.app.state, "fast_cache", None)


def get_replay_worker(request: Request) -> Optional[ReplayWorker]:
    return getattr(request.app.state, "replay_worker", None)


def _bearer_matches(request: Request, secret: str) -> bool:
    header = request.headers.get("authorization", "")
    return secrets.compare_digest(header.encode(), f"Bearer {secret}".encode())


def require_cron_secret(request: Request) -> None:
    """Replay trigger: the bearer secret must be configured and presented."""
    secret = get_settings().cron_secret
    if not secret or not _bearer_matches(request, secret):
        logger.warning("Rejected replay trigger with missing or wrong bearer secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_seed_secret(request: Request) -> None:
    """Seed: checked against the bearer secret only when one is configured."""
    secret = get_settings().cron_secret
    if secret and not _bearer_matches(request, secret):
        logger.warning("Rejected seed request with wrong bearer secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
