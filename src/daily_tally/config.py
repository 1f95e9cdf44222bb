"""Configuration management for Daily Tally."""

import os
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env" if os.getenv("ENVIRONMENT") != "test" else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Application
    app_name: str = "Daily Tally"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Backing store
    store_provider: Literal["sheets", "memory"] = Field(
        default="sheets",
        description="System of record: Google Sheets, or an in-process store for local runs",
    )
    google_spreadsheet_id: Optional[str] = None
    google_client_email: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("google_client_email", "google_service_account_email"),
    )
    google_private_key: Optional[str] = None
    google_sheets_scopes: str = "https://www.googleapis.com/auth/spreadsheets"
    store_timeout_seconds: float = 15.0

    # Fast cache (Redis)
    redis_url: Optional[str] = None
    cache_key_prefix: str = "tally"

    # Write path
    write_strategy: Optional[Literal["queued", "direct"]] = Field(
        default=None,
        description="queued = cache-first with replay queue, direct = backing store write with optimistic patch",
    )
    max_amount: int = 10000

    # Day partitioning and defaults for the settings partition
    timezone: str = "Europe/Istanbul"
    default_target: int = 100000
    default_reset_hour: int = Field(default=22, ge=0, le=23)
    default_dhikr_name: str = "Daily Tally"

    # Read aggregator
    aggregate_ttl_seconds: float = 5.0
    settings_ttl_seconds: float = 60.0

    # Replay
    replay_batch_size: int = 100
    replay_mode: Literal["claim", "pop"] = "claim"
    replay_interval_seconds: Optional[float] = None
    cron_secret: Optional[str] = None

    # Rate limiting
    rate_limit_rpm: int = Field(
        default=60,
        description="Submissions per minute per client",
    )

    # CORS Configuration
    cors_allowed_origins: Optional[str] = Field(
        default=None,
        description="Comma-separated list of allowed CORS origins. Defaults to ['*'] in dev.",
    )

    # Feature Flags
    enable_metrics: bool = False

    @field_validator("redis_url", "cron_secret", "google_spreadsheet_id", mode="before")
    @classmethod
    def blank_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def get_write_strategy(self, fast_cache_provided: bool = False) -> str:
        """Resolve the write strategy, defaulting on whether a fast cache exists."""
        has_fast_cache = fast_cache_provided or bool(self.redis_url)
        if self.write_strategy == "queued" and not has_fast_cache:
            raise ValueError("write_strategy 'queued' requires REDIS_URL")
        if self.write_strategy:
            return self.write_strategy
        return "queued" if has_fast_cache else "direct"

    def get_cors_origins(self) -> List[str]:
        """Parse CORS allowed origins from config."""
        if self.cors_allowed_origins:
            return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]
        # Default: allow all in development
        if self.environment != "production":
            return ["*"]
        return []


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
