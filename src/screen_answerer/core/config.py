"""Centralized configuration management for the Screen Answerer relay.

This module provides a single source of truth for all configuration values,
using pydantic-settings for environment variable loading and validation.

Design Principles:
    - Environment Variables: All settings can be overridden via environment variables
    - Sensible Defaults: All settings have production-ready defaults
    - Validation: Pydantic validates all values at load time
    - Singleton Pattern: Cached settings instance via lru_cache

Configuration Sections:
    - APIConfig: FastAPI server configuration
    - GeminiConfig: Upstream inference API connection
    - GovernorConfig: Per-client cool-down and global call quota
    - RetryConfig: Backoff policy for transient upstream failures
    - UploadConfig: Scratch directory, size limit and stale-entry reaping
    - LoggingConfig: Structured request log location

Environment Variable Prefixes:
    - API_*, GEMINI_*, GOVERNOR_*, RETRY_*, UPLOAD_*, LOG_*

Usage:
    from screen_answerer.core.config import settings

    cool_down = settings.governor.cool_down_seconds
    upload_dir = settings.upload.directory
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseSettings):
    """FastAPI server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="API_",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=3000, ge=1, le=65535, description="API server port")
    port_fallback_attempts: int = Field(
        default=10, ge=0, le=100, description="Next ports to try when the port is taken"
    )
    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(
        default="info", description="Logging level"
    )
    title: str = Field(default="Screen Answerer API", description="API title")
    version: str = Field(default="1.0.0", description="API version")
    origins: str = Field(default="*", description="Allowed CORS origins (comma separated)")
    request_limit: str = Field(
        default="100 per 15 minutes", description="Per-IP request limit (slowapi syntax)"
    )


class GeminiConfig(BaseSettings):
    """Upstream inference API configuration.

    Attributes:
        base_url: Root of the Generative Language REST API.
        default_model: Model used when a request does not override it.
        timeout: Per-call timeout in seconds.
        api_key: Server-side fallback key. Callers normally supply their own
            key; it takes precedence when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL",
    )
    default_model: str = Field(default="gemini-2.0-flash-lite", description="Default model")
    timeout: float = Field(default=30.0, ge=1.0, le=600.0, description="Request timeout (seconds)")
    api_key: str | None = Field(default=None, description="Fallback API key")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = "base_url must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")


class GovernorConfig(BaseSettings):
    """Outbound call governor configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOVERNOR_",
        case_sensitive=False,
        extra="ignore",
    )

    cool_down_seconds: float = Field(
        default=5.0, ge=0.0, le=3600.0, description="Minimum gap between calls per client"
    )
    quota_limit: int = Field(default=50, ge=1, le=100_000, description="Calls per quota window")
    quota_reset_interval_seconds: float = Field(
        default=60.0, ge=1.0, le=86400.0, description="Quota window length"
    )
    max_tracked_clients: int = Field(
        default=10_000, ge=1, le=1_000_000, description="Max clients kept in the throttle map"
    )


class RetryConfig(BaseSettings):
    """Backoff policy for transient upstream failures."""

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        case_sensitive=False,
        extra="ignore",
    )

    max_retries: int = Field(default=3, ge=0, le=10, description="Max retry attempts")
    initial_delay_seconds: float = Field(
        default=1.0, ge=0.0, le=60.0, description="First backoff delay"
    )
    max_delay_seconds: float = Field(
        default=10.0, ge=0.0, le=300.0, description="Backoff delay cap"
    )
    jitter_min: float = Field(default=0.8, gt=0.0, le=1.0, description="Lower jitter factor")
    jitter_max: float = Field(default=1.2, ge=1.0, le=2.0, description="Upper jitter factor")

    @model_validator(mode="after")
    def validate_delays(self) -> RetryConfig:
        if self.max_delay_seconds < self.initial_delay_seconds:
            msg = "max_delay_seconds must be >= initial_delay_seconds"
            raise ValueError(msg)
        return self


class UploadConfig(BaseSettings):
    """Scratch storage for uploaded screenshots."""

    model_config = SettingsConfigDict(
        env_prefix="UPLOAD_",
        case_sensitive=False,
        extra="ignore",
    )

    directory: Path = Field(default=Path("uploads"), description="Scratch directory")
    max_file_bytes: int = Field(
        default=5 * 1024 * 1024,  # 5MB
        ge=1024,
        le=100 * 1024 * 1024,
        description="Max upload size in bytes",
    )
    stale_threshold_seconds: float = Field(
        default=300.0, ge=1.0, le=86400.0, description="Age after which registry entries are reaped"
    )
    reap_interval_seconds: float = Field(
        default=60.0, ge=1.0, le=3600.0, description="How often the reaper runs"
    )


class LoggingConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        extra="ignore",
    )

    dir: Path = Field(default=Path("logs"), description="Structured log directory")


class Settings(BaseSettings):
    """Root settings class containing all configuration sections.

    Configuration is loaded from:
        1. Environment variables (with appropriate prefixes)
        2. .env file (if present in the working directory)
        3. Default values (if not set)

    Note:
        Settings are loaded once at module import and cached. Changes to
        environment variables require application restart to take effect.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api: APIConfig = Field(default_factory=APIConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    governor: GovernorConfig = Field(default_factory=GovernorConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    @lru_cache(maxsize=1)
    def get_settings(cls) -> Settings:
        """Get cached settings instance (singleton pattern)."""
        return cls()


# Global settings instance
settings = Settings.get_settings()

__all__ = [
    "APIConfig",
    "GeminiConfig",
    "GovernorConfig",
    "LoggingConfig",
    "RetryConfig",
    "Settings",
    "UploadConfig",
    "settings",
]
