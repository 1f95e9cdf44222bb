"""Backing store interface.

The backing store is the system of record: one partition per effective date
holding Reading rows, plus one settings partition with key/value rows.
Every operation may raise StoreAuthError or StoreUnavailableError.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from ..models import DailyAggregate, DynamicSettings, Reading


class BackingStore(ABC):
    """Base class for backing store adapters."""

    def __init__(self, default_settings: DynamicSettings):
        self.default_settings = default_settings

    @abstractmethod
    async def resolve_partition(self, date: str) -> str:
        """Get or create the partition for ``date``, returning its identifier.

        A newly created partition is initialised with its header row and a
        running-total field over the count column.
        """
        pass

    @abstractmethod
    async def append_rows(self, readings: Sequence[Reading]) -> int:
        """Append readings in one batch per partition and return the number written."""
        pass

    async def append_row(self, reading: Reading) -> None:
        """Append a single reading."""
        await self.append_rows([reading])

    @abstractmethod
    async def read_aggregate(self, date: str) -> DailyAggregate:
        """Read the aggregate for ``date``.

        The precomputed total is preferred; when it is absent or not a valid
        number the total is recomputed from the rows.
        """
        pass

    @abstractmethod
    async def read_settings(self) -> DynamicSettings:
        """Read the settings partition, creating it with defaults when absent."""
        pass

    async def close(self) -> None:
        """Release any resources held by the adapter."""
        return None

    @staticmethod
    def group_by_date(readings: Sequence[Reading]) -> Dict[str, List[Reading]]:
        """Group readings by partition, preserving submission order within each group."""
        groups: Dict[str, List[Reading]] = {}
        for reading in readings:
            groups.setdefault(reading.date, []).append(reading)
        return groups
