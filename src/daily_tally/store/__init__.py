"""Backing store adapters (system of record)."""

from .base import BackingStore
from .exceptions import StoreAPIError, StoreAuthError, StoreError, StoreUnavailableError
from .factory import create_backing_store
from .memory import InMemoryBackingStore
from .sheets import SheetsBackingStore

__all__ = [
    "BackingStore",
    "InMemoryBackingStore",
    "SheetsBackingStore",
    "StoreAPIError",
    "StoreAuthError",
    "StoreError",
    "StoreUnavailableError",
    "create_backing_store",
]
