"""Derived per-day totals."""

from typing import Dict, Iterable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .reading import Reading


class DailyAggregate(BaseModel):
    """Running total and per-name subtotals for one effective date."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str
    total: int = 0
    user_counts: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_readings(cls, date: str, readings: Iterable[Reading]) -> "DailyAggregate":
        user_counts: Dict[str, int] = {}
        total = 0
        for reading in readings:
            total += reading.count
            user_counts[reading.name] = user_counts.get(reading.name, 0) + reading.count
        return cls(date=date, total=total, user_counts=user_counts)

    def credit_for(self, name: str) -> int:
        return self.user_counts.get(name, 0)

    def with_delta(self, name: str, count: int) -> "DailyAggregate":
        """Return a copy with ``count`` applied to the total and to ``name``."""
        user_counts = dict(self.user_counts)
        user_counts[name] = user_counts.get(name, 0) + count
        return DailyAggregate(date=self.date, total=self.total + count, user_counts=user_counts)
