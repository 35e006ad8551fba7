"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
DeFi position tracker, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Upper bound on signatures processed by a single sync invocation.
MAX_SIGNATURES_HARD_LIMIT = 50

# getSignaturesForAddress refuses pages larger than this.
LEDGER_SIGNATURE_PAGE_LIMIT = 1000


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (caching disabled when unset)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class SolanaSettings(BaseSettings):
    """Solana RPC settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Primary Solana RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="SOLANA_FALLBACK_RPC_URL",
        description="Fallback Solana RPC endpoint",
    )
    commitment: Literal["confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_COMMITMENT",
        description="Commitment level for signature and transaction reads",
    )
    max_requests_per_second: float = Field(
        default=10.0,
        alias="SOLANA_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Process-wide ceiling on RPC requests per second",
    )
    max_retries: int = Field(
        default=3,
        alias="SOLANA_MAX_RETRIES",
        ge=1,
        le=10,
        description="Attempts per endpoint before failing over",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        alias="SOLANA_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial retry delay (doubles on each attempt)",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="SOLANA_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="HTTP timeout for a single RPC request",
    )
    transaction_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        alias="SOLANA_TRANSACTION_CACHE_TTL_SECONDS",
        ge=60,
        le=90 * 24 * 3600,
        description="Redis TTL for cached transaction bodies (immutable once confirmed)",
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


class SyncSettings(BaseSettings):
    """Wallet sync bounds and pacing."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    default_max_signatures: int = Field(
        default=15,
        alias="SYNC_DEFAULT_MAX_SIGNATURES",
        ge=1,
        le=MAX_SIGNATURES_HARD_LIMIT,
        description="Transactions fetched per sync when the caller does not say",
    )
    max_signatures_cap: int = Field(
        default=MAX_SIGNATURES_HARD_LIMIT,
        alias="SYNC_MAX_SIGNATURES_CAP",
        ge=1,
        le=MAX_SIGNATURES_HARD_LIMIT,
        description="Hard cap on transactions fetched per sync (caller values are clamped)",
    )
    inter_request_delay_ms: int = Field(
        default=500,
        alias="SYNC_INTER_REQUEST_DELAY_MS",
        ge=0,
        le=60_000,
        description="Minimum delay between transaction detail fetches (ms)",
    )
    signature_page_size: int = Field(
        default=LEDGER_SIGNATURE_PAGE_LIMIT,
        alias="SYNC_SIGNATURE_PAGE_SIZE",
        ge=1,
        le=LEDGER_SIGNATURE_PAGE_LIMIT,
        description="Signatures requested per getSignaturesForAddress page",
    )
    max_history_signatures: int = Field(
        default=1000,
        alias="SYNC_MAX_HISTORY_SIGNATURES",
        ge=1,
        le=100_000,
        description="Maximum signature records scanned by one sync",
    )
    fetch_concurrency: int = Field(
        default=1,
        alias="SYNC_FETCH_CONCURRENCY",
        ge=1,
        le=16,
        description="Maximum in-flight transaction detail fetches",
    )
    fetch_timeout_seconds: float = Field(
        default=45.0,
        alias="SYNC_FETCH_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Timeout for one transaction fetch, retries included",
    )
    protocols: str = Field(
        default="meteora-dlmm",
        alias="SYNC_PROTOCOLS",
        description="Comma-separated protocol slugs to classify against, in priority order",
    )

    @field_validator("protocols")
    @classmethod
    def validate_protocols(cls, v: str) -> str:
        if not [p for p in v.split(",") if p.strip()]:
            raise ValueError("SYNC_PROTOCOLS must name at least one protocol")
        return v

    @property
    def protocol_slugs(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.protocols.split(",") if p.strip())


class PriceSettings(BaseSettings):
    """SOL/USD price lookup settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    api_url: str = Field(
        default="https://lite-api.jup.ag/price/v2",
        alias="PRICE_API_URL",
        description="Jupiter price API endpoint",
    )
    fallback_sol_usd: Decimal = Field(
        default=Decimal("190"),
        alias="PRICE_FALLBACK_SOL_USD",
        gt=Decimal("0"),
        description="SOL/USD rate used when no live or cached price is available",
    )
    cache_ttl_seconds: int = Field(
        default=300,
        alias="PRICE_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="Redis TTL for the last good SOL/USD quote",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="PRICE_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP timeout for the price lookup",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("PRICE_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class Settings(BaseSettings):
    """Root application settings.

    Groups are loaded independently so each keeps its own env prefix.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

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
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
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
    price: PriceSettings = Field(
        default_factory=lambda: PriceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

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
            "solana": {
                "rpc_url": self._redact_url(self.solana.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.solana.fallback_rpc_url)
                    if self.solana.fallback_rpc_url
                    else "(not set)"
                ),
                "commitment": self.solana.commitment,
                "max_requests_per_second": str(self.solana.max_requests_per_second),
            },
            "sync": {
                "default_max_signatures": str(self.sync.default_max_signatures),
                "max_signatures_cap": str(self.sync.max_signatures_cap),
                "inter_request_delay_ms": str(self.sync.inter_request_delay_ms),
                "protocols": ",".join(self.sync.protocol_slugs),
            },
            "price": {
                "api_url": self.price.api_url,
                "fallback_sol_usd": str(self.price.fallback_sol_usd),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        if "api-key=" in url:
            return url.split("api-key=")[0] + "api-key=***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (tests reload settings with new env vars)."""
    get_settings.cache_clear()
