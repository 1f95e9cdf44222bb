"""Replay worker: drains the fast cache queue into the backing store.

Two queue disciplines:

- ``claim``: entries move atomically into a processing list, are appended
  to the backing store, then acknowledged. A failed run leaves them in the
  processing list and the next run retries them first (at-least-once; a
  run that fails after the append succeeded will write them twice).
- ``pop``: entries are removed before the append. A failed run loses them
  (at-most-once); the count is logged.

Runs are serialised in-process. An invocation that finds another run in
progress returns 0 without touching the queue.
"""

import asyncio
import logging
from typing import List, Optional

from pydantic import ValidationError

from ..cache.exceptions import CacheUnavailableError
from ..cache.fast_cache import FastCache
from ..models import Reading
from ..observability.metrics import record_replay, record_replay_failure, set_queue_depth
from ..store.base import BackingStore

logger = logging.getLogger(__name__)

MODE_CLAIM = "claim"
MODE_POP = "pop"


class ReplayWorker:
    """Moves queued readings into the backing store in bounded batches."""

    def __init__(
        self,
        fast_cache: FastCache,
        store: BackingStore,
        batch_size: int = 100,
        mode: str = MODE_CLAIM,
    ):
        if mode not in (MODE_CLAIM, MODE_POP):
            raise ValueError(f"Unknown replay mode: {mode}")
        self.fast_cache = fast_cache
        self.store = store
        self.batch_size = batch_size
        self.mode = mode
        self._lock = asyncio.Lock()

    @staticmethod
    def parse_entries(entries: List[str]) -> List[Reading]:
        """Parse queued JSON entries, dropping and logging malformed ones."""
        readings: List[Reading] = []
        for raw in entries:
            try:
                readings.append(Reading.model_validate_json(raw))
            except ValidationError as e:
                logger.error("Dropping malformed replay entry %r: %s", raw, e)
        return readings

    async def run_once(self) -> int:
        """Replay one batch and return the number of readings written.

        Raises whatever the fast cache or backing store raised; in claim
        mode the batch then stays in the processing list.
        """
        if self._lock.locked():
            logger.info("Replay already running, skipping this trigger")
            return 0

        async with self._lock:
            if self.mode == MODE_CLAIM:
                synced = await self._run_claim()
            else:
                synced = await self._run_pop()

        try:
            set_queue_depth(await self.fast_cache.queue_length())
        except CacheUnavailableError as e:
            logger.warning("Could not read replay queue depth: %s", e)
        return synced

    async def _run_claim(self) -> int:
        entries = await self.fast_cache.claim_batch(self.batch_size)
        if not entries:
            return 0

        readings = self.parse_entries(entries)
        try:
            await self.store.append_rows(readings)
        except Exception:
            record_replay_failure(self.mode)
            logger.error(
                "Replay append failed; %d entries left unacknowledged for the next run",
                len(entries),
            )
            raise

        await self.fast_cache.ack_claimed()
        record_replay(self.mode, len(readings))
        logger.info("Replayed %d readings (%d entries claimed)", len(readings), len(entries))
        return len(readings)

    async def _run_pop(self) -> int:
        entries = await self.fast_cache.pop_batch(self.batch_size)
        if not entries:
            return 0

        readings = self.parse_entries(entries)
        try:
            await self.store.append_rows(readings)
        except Exception:
            record_replay_failure(self.mode)
            logger.error(
                "Replay append failed; %d popped readings were not persisted and are lost",
                len(readings),
            )
            raise

        record_replay(self.mode, len(readings))
        logger.info("Replayed %d readings", len(readings))
        return len(readings)


async def run_replay_loop(
    worker: ReplayWorker,
    stop_event: asyncio.Event,
    interval_seconds: Optional[float] = 60.0,
) -> None:
    """Background loop triggering replay on a fixed interval until stopped."""
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            try:
                await worker.run_once()
            except Exception as e:
                logger.warning("Scheduled replay failed: %s", e)
