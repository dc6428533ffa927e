"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Polymarket Forensics application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///forensics.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (account cache and alert dedup)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PolymarketSettings(BaseSettings):
    """Polymarket API settings."""

    model_config = SettingsConfigDict(env_prefix="POLYMARKET_", extra="ignore")

    clob_host: str = Field(
        default="https://clob.polymarket.com",
        alias="POLYMARKET_CLOB_HOST",
        description="CLOB HTTP API host (market metadata and price history)",
    )
    clob_chain_id: int = Field(
        default=137,
        alias="POLYMARKET_CLOB_CHAIN_ID",
        description="Chain ID (Polygon=137)",
    )
    activity_ws_url: str = Field(
        default="wss://ws-live-data.polymarket.com",
        alias="POLYMARKET_ACTIVITY_WS_URL",
        description="WebSocket URL for the live trade activity feed",
    )
    subgraph_gateway_url: str = Field(
        default="https://gateway.thegraph.com/api/subgraphs/id",
        alias="POLYMARKET_SUBGRAPH_GATEWAY_URL",
        description="The Graph gateway base URL",
    )
    subgraph_id: str = Field(
        default="81Dm16JjuFSrqz813HysXoUPvzTwE7fsfPk2RTf66nyC",
        alias="POLYMARKET_SUBGRAPH_ID",
        description="Orderbook subgraph deployment id",
    )
    subgraph_api_key: SecretStr | None = Field(
        default=None,
        alias="SUBGRAPH_API_KEY",
        description="The Graph API key",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        alias="POLYMARKET_HTTP_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Timeout for subgraph and price requests",
    )
    http_max_retries: int = Field(
        default=2,
        alias="POLYMARKET_HTTP_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries after the first attempt for transient failures",
    )

    @field_validator("activity_ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v

    @field_validator("clob_host", "subgraph_gateway_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Polymarket endpoints must be HTTP(S) URLs")
        return v.rstrip("/")


class WeightsSettings(BaseSettings):
    """Relative signal weights in the aggregate score."""

    model_config = SettingsConfigDict(env_prefix="WEIGHT_", extra="ignore")

    trade_size: float = Field(default=40.0, alias="WEIGHT_TRADE_SIZE", ge=0.0, le=100.0)
    account_history: float = Field(default=35.0, alias="WEIGHT_ACCOUNT_HISTORY", ge=0.0, le=100.0)
    conviction: float = Field(default=25.0, alias="WEIGHT_CONVICTION", ge=0.0, le=100.0)

    @model_validator(mode="after")
    def validate_total(self) -> WeightsSettings:
        if self.trade_size + self.account_history + self.conviction <= 0:
            raise ValueError("At least one signal weight must be > 0")
        return self


class TradeSizeSettings(BaseSettings):
    """Trade size and price impact signal configuration."""

    model_config = SettingsConfigDict(env_prefix="TRADE_SIZE_", extra="ignore")

    min_absolute_usd: float = Field(
        default=5000.0,
        alias="TRADE_SIZE_MIN_ABSOLUTE_USD",
        gt=0.0,
        description="Trades below this notional score 0",
    )
    min_impact_percent: float = Field(
        default=2.0,
        alias="TRADE_SIZE_MIN_IMPACT_PERCENT",
        gt=0.0,
        le=100.0,
        description="Minimum price move (percent) that earns impact points",
    )
    impact_window_minutes: int = Field(
        default=5,
        alias="TRADE_SIZE_IMPACT_WINDOW_MINUTES",
        ge=1,
        le=24 * 60,
        description="Window around the trade searched for before/after prices",
    )


class AccountHistorySettings(BaseSettings):
    """Account history signal configuration."""

    model_config = SettingsConfigDict(env_prefix="ACCOUNT_HISTORY_", extra="ignore")

    max_lifetime_trades: int = Field(
        default=10,
        alias="ACCOUNT_HISTORY_MAX_LIFETIME_TRADES",
        ge=1,
        le=100_000,
        description="Trade count scale; scores decay to 0 at five times this value",
    )
    max_account_age_days: int = Field(
        default=30,
        alias="ACCOUNT_HISTORY_MAX_ACCOUNT_AGE_DAYS",
        ge=1,
        le=3650,
        description="Accounts at most this old get the full age score",
    )
    min_dormancy_days: int = Field(
        default=60,
        alias="ACCOUNT_HISTORY_MIN_DORMANCY_DAYS",
        ge=1,
        le=3650,
        description="Idle gap before dormancy starts to score",
    )


class ScoringSettings(BaseSettings):
    """Alerting and analysis budget settings."""

    model_config = SettingsConfigDict(env_prefix="SCORING_", extra="ignore")

    alert_threshold: int = Field(
        default=70,
        alias="SCORING_ALERT_THRESHOLD",
        ge=0,
        le=100,
        description="Minimum aggregate score that raises an alert",
    )
    quick_score_gate: int = Field(
        default=60,
        alias="SCORING_QUICK_SCORE_GATE",
        ge=0,
        le=100,
        description="Quick score a trade must exceed before its account is looked up",
    )
    max_account_lookups: int = Field(
        default=50,
        alias="SCORING_MAX_ACCOUNT_LOOKUPS",
        ge=0,
        le=100_000,
        description="Account lookups allowed per analysis run",
    )
    top_n: int = Field(
        default=10,
        alias="SCORING_TOP_N",
        ge=1,
        le=10_000,
        description="Suspicious trades kept in a report",
    )


class CacheSettings(BaseSettings):
    """Cache freshness settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", extra="ignore")

    coverage_ttl_seconds: int = Field(
        default=3600,
        alias="CACHE_COVERAGE_TTL_SECONDS",
        ge=0,
        le=30 * 24 * 3600,
        description="Age after which a synced fill or price range is refreshed",
    )
    account_ttl_seconds: int = Field(
        default=300,
        alias="CACHE_ACCOUNT_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="Redis TTL for cached account aggregates",
    )
    dedup_window_seconds: int = Field(
        default=3600,
        alias="CACHE_DEDUP_WINDOW_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="Window in which repeated alerts for a wallet/market are suppressed",
    )


class ClassifierSettings(BaseSettings):
    """Trade tag thresholds."""

    model_config = SettingsConfigDict(env_prefix="CLASSIFIER_", extra="ignore")

    whale_usd: float = Field(default=25_000.0, alias="CLASSIFIER_WHALE_USD", gt=0.0)
    sniper_min_score: int = Field(default=80, alias="CLASSIFIER_SNIPER_MIN_SCORE", ge=0, le=100)
    sniper_min_impact_percent: float = Field(
        default=2.0, alias="CLASSIFIER_SNIPER_MIN_IMPACT_PERCENT", ge=0.0
    )
    dump_min_impact_percent: float = Field(
        default=5.0, alias="CLASSIFIER_DUMP_MIN_IMPACT_PERCENT", ge=0.0
    )
    early_window_hours: float = Field(
        default=48.0, alias="CLASSIFIER_EARLY_WINDOW_HOURS", ge=0.0, le=24 * 365
    )


class BackfillSettings(BaseSettings):
    """Wallet history backfill settings."""

    model_config = SettingsConfigDict(env_prefix="BACKFILL_", extra="ignore")

    batch_size: int = Field(
        default=100,
        alias="BACKFILL_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Fills requested per subgraph page",
    )
    max_wallets: int = Field(
        default=25,
        alias="BACKFILL_MAX_WALLETS",
        ge=1,
        le=10_000,
        description="Queued wallets processed per run",
    )
    max_pages_per_wallet: int = Field(
        default=500,
        alias="BACKFILL_MAX_PAGES_PER_WALLET",
        ge=1,
        le=100_000,
        description="Upper bound on pages fetched for one wallet in a run",
    )


class MonitorSettings(BaseSettings):
    """Live monitor settings."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_", extra="ignore")

    min_trade_usd: float = Field(
        default=5000.0,
        alias="MONITOR_MIN_TRADE_USD",
        ge=0.0,
        description="Live trades below this notional are ignored",
    )
    max_reconnect_delay_seconds: int = Field(
        default=30,
        alias="MONITOR_MAX_RECONNECT_DELAY_SECONDS",
        ge=1,
        le=3600,
    )
    alerts_path: Path | None = Field(
        default=None,
        alias="MONITOR_ALERTS_PATH",
        description="Optional JSONL file that receives live alerts",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_forensics.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.scoring.alert_threshold)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polymarket: PolymarketSettings = Field(
        default_factory=lambda: PolymarketSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    weights: WeightsSettings = Field(
        default_factory=lambda: WeightsSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    trade_size: TradeSizeSettings = Field(
        default_factory=lambda: TradeSizeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    account_history: AccountHistorySettings = Field(
        default_factory=lambda: AccountHistorySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scoring: ScoringSettings = Field(
        default_factory=lambda: ScoringSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    classifier: ClassifierSettings = Field(
        default_factory=lambda: ClassifierSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backfill: BackfillSettings = Field(
        default_factory=lambda: BackfillSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    monitor: MonitorSettings = Field(
        default_factory=lambda: MonitorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "polymarket": {
                "clob_host": self.polymarket.clob_host,
                "activity_ws_url": self.polymarket.activity_ws_url,
                "subgraph_id": self.polymarket.subgraph_id,
                "subgraph_api_key": "(set)" if self.polymarket.subgraph_api_key else "(not set)",
            },
            "weights": {
                "trade_size": str(self.weights.trade_size),
                "account_history": str(self.weights.account_history),
                "conviction": str(self.weights.conviction),
            },
            "scoring": {
                "alert_threshold": str(self.scoring.alert_threshold),
                "quick_score_gate": str(self.scoring.quick_score_gate),
                "max_account_lookups": str(self.scoring.max_account_lookups),
                "top_n": str(self.scoring.top_n),
            },
            "cache": {
                "coverage_ttl_seconds": str(self.cache.coverage_ttl_seconds),
                "account_ttl_seconds": str(self.cache.account_ttl_seconds),
            },
            "log_level": self.log_level,
        }

    def validate_requirements(
        self,
        *,
        command: Literal["analyze", "backfill", "monitor", "investigate", "init-db"],
    ) -> None:
        """Validate command-specific requirements.

        If a capability is required for a command and not configured, the
        application refuses to run.
        """
        needs_subgraph = ("analyze", "backfill", "monitor", "investigate")
        if command in needs_subgraph and not self.polymarket.subgraph_api_key:
            raise ValueError("SUBGRAPH_API_KEY is required to query the orderbook subgraph")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
