"""Backing store construction from settings."""

import logging

from ..config import Settings
from ..models import DynamicSettings
from .auth import ServiceAccountTokenProvider
from .base import BackingStore
from .memory import InMemoryBackingStore
from .sheets import SheetsBackingStore

logger = logging.getLogger(__name__)


def default_dynamic_settings(settings: Settings) -> DynamicSettings:
    """Defaults written to (and used in place of) the settings partition."""
    return DynamicSettings(
        dhikr_name=settings.default_dhikr_name,
        target=settings.default_target,
        reset_hour=settings.default_reset_hour,
    )


def create_backing_store(settings: Settings) -> BackingStore:
    """Create the configured backing store adapter."""
    defaults = default_dynamic_settings(settings)

    if settings.store_provider == "memory":
        logger.warning("Using in-memory backing store; readings are not persisted")
        return InMemoryBackingStore(defaults)

    token_provider = ServiceAccountTokenProvider(
        client_email=settings.google_client_email,
        private_key=settings.google_private_key,
        scopes=settings.google_sheets_scopes.split(),
    )
    if not token_provider.configured or not settings.google_spreadsheet_id:
        # Left constructible so reads can report "Setup Required" in-band
        logger.error("Google Sheets credentials missing; store calls will fail until configured")

    return SheetsBackingStore(
        spreadsheet_id=settings.google_spreadsheet_id,
        token_provider=token_provider,
        default_settings=defaults,
        timeout=settings.store_timeout_seconds,
    )
