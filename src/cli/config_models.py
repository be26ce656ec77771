"""Pydantic configuration models for alphascroll."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from shared_types import StorageBackend


def _expand_env(value: Optional[str]) -> Optional[str]:
    """Expand a ``${VAR}`` placeholder into the env var's value."""
    if value and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], "")
    return value


class PathsConfig(BaseModel):
    """File paths configuration."""

    db_path: Path = Path("~/alphascroll/alpha.db")
    log_file: Path = Path("~/alphascroll/alpha.log")

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in all paths."""
        self.db_path = self.db_path.expanduser()
        self.log_file = self.log_file.expanduser()
        return self


class StorageConfig(BaseModel):
    """Prediction store backend selection."""

    backend: StorageBackend = StorageBackend.SQLITE
    fallback_to_memory: bool = True


class PredictionsConfig(BaseModel):
    """Prediction window, scoring and evaluation cadence."""

    window_hours: float = 24
    moon_threshold: float = 15.0
    evaluation_interval_minutes: float = 60
    max_time_bonus: int = 5
    fetch_timeout_seconds: float = 15.0
    evaluation_concurrency: int = 5
    leaderboard_size: int = 100

    @field_validator("window_hours", "moon_threshold", "evaluation_interval_minutes", "fetch_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("max_time_bonus", "evaluation_concurrency", "leaderboard_size")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v


class CacheConfig(BaseModel):
    """TTLs (seconds) for cached market lookups."""

    default_ttl_seconds: float = 300
    price_ttl_seconds: float = 3600
    coin_id_ttl_seconds: float = 86400


class MarketConfig(BaseModel):
    """Market-data source configuration."""

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: Optional[str] = None
    whattomine_base_url: str = "https://whattomine.com"
    request_timeout_seconds: float = 10.0
    min_mining_profitability: float = 0.1
    pump_threshold: float = 15.0
    dump_threshold: float = -15.0

    @model_validator(mode="after")
    def validate_alert_thresholds(self):
        if self.pump_threshold <= 0 or self.dump_threshold >= 0:
            raise ValueError("pump_threshold must be positive and dump_threshold negative")
        return self


class RateLimitSourceConfig(BaseModel):
    """Per-source rate limit."""

    requests_per_second: float = 2.0
    burst: int = 5


class RateLimitsConfig(BaseModel):
    """Rate limits for external APIs."""

    coingecko: RateLimitSourceConfig = Field(
        default_factory=lambda: RateLimitSourceConfig(requests_per_second=0.5, burst=5)
    )
    whattomine: RateLimitSourceConfig = Field(
        default_factory=lambda: RateLimitSourceConfig(requests_per_second=1.0, burst=2)
    )


class RetryConfig(BaseModel):
    """Retry/backoff configuration."""

    max_attempts: int = 3
    min_wait: float = 1.0
    max_wait: float = 10.0


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_logs: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class AlphaConfig(BaseModel):
    """Main configuration model."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    predictions: PredictionsConfig = Field(default_factory=PredictionsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def expand_env_vars(self):
        """Expand ${VAR} patterns in API keys."""
        self.market.coingecko_api_key = _expand_env(self.market.coingecko_api_key)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "AlphaConfig":
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        """Convert to a plain dict for components that take config sections."""
        return self.model_dump(mode="python")
