"""Scheduled replay trigger."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..services.replay import ReplayWorker
from .deps import get_replay_worker, require_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/cron/sync", dependencies=[Depends(require_cron_secret)])
async def sync_queue(worker: Optional[ReplayWorker] = Depends(get_replay_worker)):
    """Replay one batch of queued readings into the backing store."""
    if worker is None:
        return {"message": "No replay queue configured", "syncCount": 0}

    try:
        synced = await worker.run_once()
    except Exception:
        logger.exception("Replay run failed")
        return JSONResponse(status_code=500, content={"error": "Sync failed"})

    if synced == 0:
        return {"message": "Queue empty", "syncCount": 0}
    return {"success": True, "message": f"Synced {synced} items", "syncCount": synced}
