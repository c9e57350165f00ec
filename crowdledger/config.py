"""Application configuration settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 3131


class Settings(BaseSettings):
    """Environment configuration for the crowdledger backend."""

    app_env: str = "dev"
    database_url: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Background reconciliation ---------------------------------------
    SCHEDULER_ENABLED: bool = False
    RECONCILE_INTERVAL_MINUTES: int = 15

    # --- Store retries ---------------------------------------------------
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BACKOFF_SECONDS: float = 0.2

    # --- Ledger policies -------------------------------------------------
    MILESTONE_DECISION_RULE: Literal["majority", "quorum"] = "majority"
    MILESTONE_QUORUM_THRESHOLD: float = 0.6
    VOTER_ELIGIBILITY: Literal["campaign_donors", "any_user"] = "campaign_donors"
    CAMPAIGN_COMPLETION_POLICY: Literal["milestones_paid", "goal_met", "manual"] = "milestones_paid"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("database_url")
    @classmethod
    def _strip_empty_url(cls, value: str | None) -> str | None:
        """Treat a blank DATABASE_URL the same as a missing one."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("MILESTONE_QUORUM_THRESHOLD")
    @classmethod
    def _threshold_in_range(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("MILESTONE_QUORUM_THRESHOLD must be in (0, 1]")
        return value

    @field_validator("DB_RETRY_ATTEMPTS")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)


class AppInfo(BaseModel):
    name: str = "crowdledger"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["DEFAULT_PORT", "Settings", "AppInfo", "get_settings"]
