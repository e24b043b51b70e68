"""Engine settings using Pydantic settings.

Environment variables can be set directly or via .env file.
"""

import os
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Runtime configuration for the engine and its HTTP surface.

    All settings can be overridden via environment variables with PROPDESK_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROPDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Database
    database_url: Optional[str] = Field(
        default=None,
        description="Database URL (overrides DATABASE_URL env var)",
        validate_default=True,
    )

    # CORS settings
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow CORS credentials"
    )

    # Cron triggers
    cron_secret: Optional[str] = Field(
        default=None,
        description="Bearer token required by /api/v1/cron/* (unset = open)"
    )

    # Pricing
    price_sanity_min: float = Field(
        default=0.01,
        description="Live quotes at or below this are treated as stale",
        gt=0.0,
        lt=0.5,
    )
    price_sanity_max: float = Field(
        default=0.99,
        description="Live quotes at or above this are treated as stale",
        gt=0.5,
        lt=1.0,
    )
    resolution_price_threshold: float = Field(
        default=0.95,
        description="Prices at or beyond this distance from 0/1 are considered settling",
        gt=0.5,
        lt=1.0,
    )

    # Execution
    max_slippage: Optional[float] = Field(
        default=None,
        description="Default max slippage vs top of book (None = unlimited)",
        gt=0.0,
    )
    fee_rate: float = Field(
        default=0.0,
        description="Fee charged on notional, recorded separately from price",
        ge=0.0,
        le=0.1,
    )

    # Evaluation
    pending_failure_grace_hours: float = Field(
        default=24.0,
        description="Hours a daily-loss breach may persist before the challenge fails",
        ge=0.0,
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON logs to stdout")
    log_dir: Optional[str] = Field(default=None, description="Directory for JSON log files")

    @field_validator("database_url", mode="before")
    @classmethod
    def get_database_url(cls, v: Optional[str]) -> str:
        """Fall back to DATABASE_URL env var, then a local SQLite file."""
        if v:
            return v
        return os.getenv("DATABASE_URL") or "sqlite:///data/propdesk.db"


# Global settings instance (lazy loaded)
_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get engine settings singleton."""
    global _settings
    if _settings is None:
        _settings = EngineSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests and reloads)."""
    global _settings
    _settings = None
