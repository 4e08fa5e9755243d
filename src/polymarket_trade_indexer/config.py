"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Polymarket trade indexer, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from polymarket_trade_indexer.decoder.constants import (
    DEFAULT_BATCH_SIZE_BLOCKS,
    DEFAULT_START_BLOCK,
)

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./polymarket_indexer.db",
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
    """Optional Redis cache for immutable block data."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (block cache disabled when unset)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None or v == "":
            return None
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PolygonSettings(BaseSettings):
    """Polygon blockchain RPC settings."""

    model_config = SettingsConfigDict(env_prefix="POLYGON_", extra="ignore")

    rpc_url: str = Field(
        default="https://polygon-rpc.com",
        alias="POLYGON_RPC_URL",
        description="Primary Polygon RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="POLYGON_FALLBACK_RPC_URL",
        description="Fallback Polygon RPC endpoint",
    )
    requests_per_second: float = Field(
        default=25.0,
        alias="POLYGON_REQUESTS_PER_SECOND",
        gt=0,
        description="Client-side RPC rate limit",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class GammaSettings(BaseSettings):
    """Polymarket Gamma metadata API settings."""

    model_config = SettingsConfigDict(env_prefix="GAMMA_", extra="ignore")

    api_base: str = Field(
        default="https://gamma-api.polymarket.com",
        alias="GAMMA_API_BASE",
        description="Gamma API base URL",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="GAMMA_TIMEOUT_SECONDS",
        gt=0,
        le=300,
        description="HTTP timeout for Gamma requests",
    )

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("GAMMA_API_BASE must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SyncSettings(BaseSettings):
    """Block range synchronizer settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    batch_size_blocks: int = Field(
        default=DEFAULT_BATCH_SIZE_BLOCKS,
        alias="SYNC_BATCH_SIZE_BLOCKS",
        ge=1,
        le=1_000_000,
        description="Blocks per eth_getLogs window",
    )
    default_start_block: int = Field(
        default=DEFAULT_START_BLOCK,
        alias="SYNC_DEFAULT_START_BLOCK",
        ge=0,
        description="Start block when no cursor exists",
    )
    max_attempts: int = Field(
        default=3,
        alias="SYNC_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts per remote call before a window fails",
    )
    retry_delay_seconds: float = Field(
        default=2.0,
        alias="SYNC_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=600.0,
        description="Base delay for exponential backoff",
    )
    stream_key: str = Field(
        default="trade_sync",
        alias="SYNC_STREAM_KEY",
        min_length=1,
        max_length=64,
        description="Cursor key in sync_state",
    )
    block_cache_size: int = Field(
        default=10_000,
        alias="SYNC_BLOCK_CACHE_SIZE",
        ge=1,
        description="Maximum cached block headers",
    )
    block_cache_ttl_seconds: float = Field(
        default=3600.0,
        alias="SYNC_BLOCK_CACHE_TTL_SECONDS",
        gt=0,
        description="Block header cache TTL",
    )
    dynamic_discovery: bool = Field(
        default=True,
        alias="SYNC_DYNAMIC_DISCOVERY",
        description="Look up unknown token ids in the registry during sync",
    )
    discovery_concurrency: int = Field(
        default=5,
        alias="SYNC_DISCOVERY_CONCURRENCY",
        ge=1,
        le=64,
        description="Parallel event discoveries",
    )
    fail_closed_on_mismatch: bool = Field(
        default=False,
        alias="SYNC_FAIL_CLOSED_ON_MISMATCH",
        description="Reject markets whose claimed token ids differ from derived ones",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_trade_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.sync.batch_size_blocks)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

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
    polygon: PolygonSettings = Field(
        default_factory=lambda: PolygonSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    gamma: GammaSettings = Field(
        default_factory=lambda: GammaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sync: SyncSettings = Field(
        default_factory=lambda: SyncSettings(
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
    api_host: str = Field(
        default="127.0.0.1",
        alias="API_HOST",
        description="Bind address for the read API",
    )
    api_port: int = Field(
        default=8000,
        alias="API_PORT",
        description="HTTP port for the read API",
        ge=1,
        le=65535,
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
            "polygon": {
                "rpc_url": self._redact_url(self.polygon.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.polygon.fallback_rpc_url)
                    if self.polygon.fallback_rpc_url
                    else "(not set)"
                ),
                "requests_per_second": str(self.polygon.requests_per_second),
            },
            "gamma": {
                "api_base": self.gamma.api_base,
                "timeout_seconds": str(self.gamma.timeout_seconds),
            },
            "sync": {
                "batch_size_blocks": str(self.sync.batch_size_blocks),
                "default_start_block": str(self.sync.default_start_block),
                "max_attempts": str(self.sync.max_attempts),
                "retry_delay_seconds": str(self.sync.retry_delay_seconds),
                "stream_key": self.sync.stream_key,
                "dynamic_discovery": str(self.sync.dynamic_discovery),
                "fail_closed_on_mismatch": str(self.sync.fail_closed_on_mismatch),
            },
            "log_level": self.log_level,
            "api": f"{self.api_host}:{self.api_port}",
        }

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

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()


def configure_logging(settings: Settings) -> None:
    """Configure root logging from ``LOG_LEVEL``."""
    logging.basicConfig(level=settings.get_logging_level(), format=_LOG_FORMAT, force=True)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(max(settings.get_logging_level(), logging.WARNING))
