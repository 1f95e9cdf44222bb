"""In-process backing store.

Keeps partitions in memory with the same contract as the Google Sheets
adapter. Suitable for local development and tests only; nothing survives a
restart.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from ..models import DailyAggregate, DynamicSettings, Reading
from .base import BackingStore

logger = logging.getLogger(__name__)


class InMemoryBackingStore(BackingStore):
    """Backing store holding rows and a trusted total per partition in memory."""

    def __init__(self, default_settings: Optional[DynamicSettings] = None):
        super().__init__(default_settings or DynamicSettings())
        self.partitions: Dict[str, List[Reading]] = {}
        # Mirrors the spreadsheet's formula cell; None or a non-number forces a recount
        self.total_fields: Dict[str, object] = {}
        self.settings_rows: Optional[Dict[str, str]] = None
        self.read_count = 0
        self.append_calls = 0
        self._lock = asyncio.Lock()

    async def resolve_partition(self, date: str) -> str:
        if date not in self.partitions:
            self.partitions[date] = []
            self.total_fields[date] = 0
            logger.info("Created partition %s", date)
        return date

    async def append_rows(self, readings: Sequence[Reading]) -> int:
        if not readings:
            return 0
        async with self._lock:
            self.append_calls += 1
            for date, group in self.group_by_date(readings).items():
                await self.resolve_partition(date)
                self.partitions[date].extend(group)
                self._recompute_total_field(date)
        return len(readings)

    def _recompute_total_field(self, date: str) -> None:
        self.total_fields[date] = sum(r.count for r in self.partitions[date])

    def corrupt_total_field(self, date: str, value: object = "#REF!") -> None:
        """Replace the precomputed total with an invalid value, as a broken formula would."""
        self.total_fields[date] = value

    async def read_aggregate(self, date: str) -> DailyAggregate:
        await self.resolve_partition(date)
        self.read_count += 1

        computed = DailyAggregate.from_readings(date, self.partitions[date])
        trusted = self.total_fields.get(date)
        if isinstance(trusted, int) and not isinstance(trusted, bool):
            return DailyAggregate(date=date, total=trusted, user_counts=computed.user_counts)

        logger.warning("Total field for %s is invalid (%r), recomputing from rows", date, trusted)
        self._recompute_total_field(date)
        return computed

    async def read_settings(self) -> DynamicSettings:
        if self.settings_rows is None:
            self.settings_rows = self.default_settings.to_key_values()
        return DynamicSettings.from_key_values(self.settings_rows, self.default_settings)
