"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SAFELINE_`` prefix; infrastructure settings (MongoDB,
Redis, SMTP) use their canonical environment variable names via
``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the Safeline SOS service.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``SAFELINE_``; infra keys use
    their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SAFELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ── Persistence ────────────────────────────────────────────────────
    storage_backend: Literal["memory", "mongo"] = "memory"
    mongodb_uri: str = Field(default="mongodb://localhost:27017", validation_alias="MONGODB_URI")
    mongodb_database: str = Field(default="safeline", validation_alias="MONGODB_DATABASE")

    # ── Redis (sweep lock) ─────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── Email delivery ─────────────────────────────────────────────────
    email_provider: Literal["smtp", "http", "mock"] = "mock"
    smtp_host: str = Field(default="smtp.gmail.com", validation_alias="SMTP_HOST")
    smtp_port: int = Field(default=587, validation_alias="SMTP_PORT")
    smtp_user: str = Field(default="", validation_alias="SMTP_USER")
    smtp_pass: str = Field(default="", validation_alias="SMTP_PASS")
    email_from_name: str = "SOS Alert System"
    email_api_url: str = ""
    email_api_key: str = ""
    email_max_attempts: int = Field(default=3, ge=1)

    # ── SOS workflow ───────────────────────────────────────────────────
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    enable_escalation_scheduler: bool = True
    sweep_lock_ttl_seconds: int = Field(default=55, ge=1)
    notification_poll_limit: int = Field(default=50, ge=1)

    # ── Admin API Key ──────────────────────────────────────────────────
    admin_api_key: str = Field(default="", validation_alias="ADMIN_API_KEY")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
