"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

DEFAULT_SKIP_PATHS = [
    "/audit-logs",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
    "/metrics",
]


class Settings(BaseSettings):
    """Environment configuration for the audit core."""

    app_env: str = ENV
    database_url: str = "sqlite:///auditcore.db"
    ADMIN_API_KEY: str | None = None
    ALLOW_DB_CREATE_ALL: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    # --- Audit ledger / exports -------------------------------------------
    AUDIT_LOGS_ROOT: str = "Logs"
    AUDIT_EXPORT_RETENTION_DAYS: int = 30
    AUDIT_EXPORT_MAX_ROWS: int = 10000
    AUDIT_MIDDLEWARE_ENABLED: bool = True
    AUDIT_MIDDLEWARE_SKIP_PATHS: list[str] = DEFAULT_SKIP_PATHS

    # --- Scheduler -------------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    AUDIT_DAILY_EXPORT_CRON: str = "55 23 * * *"
    AUDIT_PRUNE_CRON: str = "15 0 * * *"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("ADMIN_API_KEY")
    @classmethod
    def _strip_empty_key(cls, value: str | None) -> str | None:
        """Normalise empty admin keys to ``None`` so the guard can reject them."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("AUDIT_EXPORT_RETENTION_DAYS")
    @classmethod
    def _positive_retention(cls, value: int) -> int:
        if value < 1:
            raise ValueError("AUDIT_EXPORT_RETENTION_DAYS must be at least 1")
        return value


class AppInfo(BaseModel):
    name: str = "vapi-audit-core"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEFAULT_SKIP_PATHS",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
