"""Fast cache tier (Redis counters and replay queue)."""

from .exceptions import CacheUnavailableError
from .fast_cache import FastCache

__all__ = ["CacheUnavailableError", "FastCache"]
