"""Domain models for Daily Tally."""

from .aggregate import DailyAggregate
from .reading import Reading
from .settings import DynamicSettings

__all__ = ["DailyAggregate", "DynamicSettings", "Reading"]
