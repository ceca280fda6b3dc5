"""Pydantic models for configuration validation."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_USER_AGENT = "catalog-access/2.0"


class LogLevel(StrEnum):
    """Log level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    NOTSET = "NOTSET"


class CatalogApiConfig(BaseModel):
    """Download catalog API endpoint settings."""

    base_url: str = "https://dab.yeet.su/api"
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    parallelism: int = Field(default=5, ge=1, le=10)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop a trailing slash."""
        if not v.startswith(("http://", "https://")):
            msg = f"base_url must start with http:// or https://, got {v!r}"
            raise ValueError(msg)
        return v.rstrip("/")


class RateLimitsConfig(BaseModel):
    """Token bucket settings of the catalog executor."""

    refill_interval_seconds: float = Field(default=0.25, gt=0)
    burst: int = Field(default=8, ge=1)
    conservative_refill_interval_seconds: float = Field(default=0.5, gt=0)
    conservative_burst: int = Field(default=4, ge=1)
    overload_threshold: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def validate_conservative_profile(self) -> RateLimitsConfig:
        """The conservative profile must not be faster than the default one."""
        if self.conservative_refill_interval_seconds < self.refill_interval_seconds:
            msg = "conservative_refill_interval_seconds must be >= refill_interval_seconds"
            raise ValueError(msg)
        if self.conservative_burst > self.burst:
            msg = "conservative_burst must be <= burst"
            raise ValueError(msg)
        return self


class RetryConfig(BaseModel):
    """Retry settings of the catalog executor."""

    max_attempts: int = Field(default=5, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)


class MusicBrainzConfig(BaseModel):
    """MusicBrainz web service settings."""

    base_url: str = "https://musicbrainz.org/ws/2"
    user_agent: str = f"{DEFAULT_USER_AGENT} ( https://github.com/PrathxmOp/dab-downloader )"
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=5, ge=1)
    initial_delay_seconds: float = Field(default=2.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    refill_interval_seconds: float = Field(default=0.333, gt=0)
    burst: int = Field(default=6, ge=1)
    search_limit: int = Field(default=5, ge=1, le=100)


class LogLevelsConfig(BaseModel):
    """Log levels configuration."""

    console: LogLevel = LogLevel.INFO
    main_file: LogLevel = LogLevel.INFO


class LoggingConfig(BaseModel):
    """Logging configuration."""

    logs_base_dir: str = "logs"
    main_log_file: str = "main/catalog.log"
    max_runs: int = Field(default=3, ge=0)
    levels: LogLevelsConfig = Field(default_factory=LogLevelsConfig)


class WarningsConfig(BaseModel):
    """Warning collector settings."""

    enabled: bool = True


class AppConfig(BaseModel):
    """Main application configuration model."""

    catalog: CatalogApiConfig = Field(default_factory=CatalogApiConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    musicbrainz: MusicBrainzConfig = Field(default_factory=MusicBrainzConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    warnings: WarningsConfig = Field(default_factory=WarningsConfig)
