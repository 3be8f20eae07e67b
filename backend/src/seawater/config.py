"""Seawater data-source layer — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "seawater-sources"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    json_logs: bool | None = None  # None = JSON outside development

    # ── Admin API ────────────────────────────────────────────
    admin_api_key: str = ""
    api_key_header: str = "X-API-Key"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Redis (durable cache tier) ───────────────────────────
    redis_url: str = "redis://localhost:6379/0"  # empty = volatile tier only
    redis_max_connections: int = 50
    redis_socket_timeout_s: float = 2.0

    # ── Response cache ───────────────────────────────────────
    cache_key_prefix: str = "seawater:climate:"
    cache_default_ttl_s: int = 3600
    cache_volatile_max_entries: int = 1000
    premium_ttl_multiplier: float = 2.0

    # ── Network transport ────────────────────────────────────
    http_timeout_s: float = 30.0
    http_max_attempts: int = 3
    http_backoff_base_s: float = 1.0
    http_backoff_cap_s: float = 16.0
    http_backoff_jitter: float = 0.1
    http_max_connections: int = 50
    http_max_keepalive_connections: int = 10
    http_user_agent: str = "Seawater-Climate-Platform/1.0"

    # ── Circuit breaker ──────────────────────────────────────
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_window_seconds: float = 60.0
    circuit_breaker_cooldown_seconds: float = 300.0

    # ── Quota governor ───────────────────────────────────────
    quota_poll_interval_s: float = 0.1
    quota_warning_threshold: float = 0.90

    # ── Availability monitor ─────────────────────────────────
    monitoring_enabled: bool = True
    monitor_initial_delay_s: float = 5.0
    monitor_window_size: int = 20
    monitor_latency_threshold_ms: float = 10_000.0

    housekeeping_interval_s: float = 60.0

    # ── Provider credentials ─────────────────────────────────
    noaa_api_token: str = ""
    firststreet_api_key: str = ""
    climatecheck_api_key: str = ""
    mapbox_access_token: str = ""
    google_maps_api_key: str = ""

    # ── Observability ────────────────────────────────────────
    prometheus_enabled: bool = True

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @property
    def use_json_logs(self) -> bool:
        if self.json_logs is not None:
            return self.json_logs
        return self.app_env != Environment.DEVELOPMENT

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("redis_url")
    @classmethod
    def _validate_redis_url(cls, v: str) -> str:
        if v and not v.startswith(("redis://", "rediss://")):
            raise ValueError("redis_url must start with 'redis://' or 'rediss://'")
        return v

    @field_validator("http_backoff_jitter", "quota_warning_threshold")
    @classmethod
    def _fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def _guard_production_secrets(self) -> Settings:
        """Prevent production from exposing admin controls without a key."""
        if self.app_env == Environment.PRODUCTION and not self.admin_api_key:
            raise ValueError("admin_api_key must be set in production")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
