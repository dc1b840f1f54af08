"""Runtime configuration for the availability engine.

Relies on pydantic-settings so that environment variables (prefixed with ``PMS_``)
can override defaults. See `.env.example` for common values.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Captures runtime configuration for the PMS client, cache and CLI."""

    base_url: str = Field(
        default="https://api.beds24.com/v2",
        description="PMS API root; endpoint paths are appended to it",
    )
    long_life_token: Optional[str] = Field(
        default=None,
        description="Long-life PMS token; when set no refresh is ever attempted",
    )
    refresh_token: Optional[str] = Field(
        default=None,
        description="Refresh token exchanged for short-lived access tokens",
    )
    access_token: Optional[str] = Field(
        default=None,
        description="Optional pre-issued access token used until it expires",
    )
    access_token_expires_in_s: Optional[float] = Field(
        default=None,
        description="Remaining lifetime of ``access_token``; unknown lifetimes force a refresh on first use",
    )
    auth_token_path: str = Field(default="/authentication/token")
    auth_setup_path: str = Field(default="/authentication/setup")
    user_agent: str = Field(default="availability-engine/0.1.0")

    token_safety_margin_s: float = Field(
        default=60.0, description="Tokens expiring within this many seconds are refreshed first"
    )
    refresh_timeout_s: float = Field(default=10.0, description="Upper bound for one token exchange")
    request_timeout_s: float = Field(default=10.0, description="Timeout applied to every PMS request")

    min_request_interval_s: float = Field(
        default=1.0, description="Minimum spacing between consecutive PMS calls"
    )
    max_requests_per_minute: int = Field(default=30, description="Client-side ceiling per rolling minute")
    rate_limit_retries: int = Field(
        default=3, description="Attempts per endpoint when the PMS answers 429"
    )
    rate_limit_backoff_max_s: float = Field(
        default=30.0, description="Cap for the jittered exponential backoff after a 429"
    )

    availability_ttl_s: float = Field(default=300.0, description="TTL for near-term availability entries")
    far_availability_ttl_s: float = Field(
        default=1800.0, description="TTL for availability starting beyond the near-term window"
    )
    metadata_ttl_s: float = Field(default=21600.0, description="TTL for static property metadata")
    near_term_days: int = Field(default=30, description="Days ahead that count as near-term")
    cache_sweep_interval_s: Optional[float] = Field(
        default=None, description="Run the expired-entry sweeper at this interval when set"
    )

    engine_config_path: Path = Field(
        default=Path("config.toml"), description="TOML file with rooms, surcharges and discount tiers"
    )
    log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="PMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("base_url")
    def _strip_base_url(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("long_life_token", "refresh_token", "access_token", mode="before")
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("engine_config_path", mode="before")
    def _expand_config_path(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value).expanduser()

    @field_validator("log_dir", mode="before")
    def _expand_log_dir(cls, value: str | Path | None) -> Optional[Path]:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator(
        "token_safety_margin_s",
        "refresh_timeout_s",
        "request_timeout_s",
        "availability_ttl_s",
        "far_availability_ttl_s",
        "metadata_ttl_s",
    )
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and TTLs must be positive")
        return value

    @field_validator("min_request_interval_s", "rate_limit_backoff_max_s")
    def _validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("intervals must not be negative")
        return value

    @field_validator("max_requests_per_minute", "rate_limit_retries")
    def _validate_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @model_validator(mode="after")
    def _warn_conflicting_credentials(self) -> "Settings":
        if self.long_life_token and self.refresh_token:
            logger.info("Both long-life and refresh tokens configured; long-life token takes precedence")
        return self

    def has_credentials(self) -> bool:
        return bool(self.long_life_token or self.refresh_token or self.access_token)

    def default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
