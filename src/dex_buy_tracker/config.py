"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
DEX Buy Tracker application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ENDPOINT_SCHEMES = ("ws://", "wss://", "http://", "https://")

SUPPORTED_CHAINS: tuple[str, ...] = (
    "bsc",
    "ethereum",
    "base",
    "arbitrum",
    "polygon",
    "avalanche",
    "monad",
)


# Nad.fun BondingCurveRouter on Monad
NAD_FUN_BONDING_ROUTER = "0x6f6b8f1a20703309951a5127c45b49b1cd981a22"
ZERO_ADDRESS = "0x" + "0" * 40


def _validate_endpoint(v: str) -> str:
    v = v.strip()
    if v and not v.startswith(_ENDPOINT_SCHEMES):
        raise ValueError("RPC endpoint must start with ws://, wss://, http:// or https://")
    return v


class ChainsSettings(BaseSettings):
    """Per-chain RPC endpoints and block explorers.

    An empty endpoint means the chain is not configured. The URL scheme
    selects the transport: ws/wss streams, http/https polls.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    bsc_rpc_url: str = Field(default="", alias="BSC_RPC_URL")
    ethereum_rpc_url: str = Field(default="", alias="ETH_RPC_URL")
    base_rpc_url: str = Field(default="", alias="BASE_RPC_URL")
    arbitrum_rpc_url: str = Field(default="", alias="ARB_RPC_URL")
    polygon_rpc_url: str = Field(default="", alias="POLYGON_RPC_URL")
    avalanche_rpc_url: str = Field(default="", alias="AVAX_RPC_URL")
    monad_rpc_url: str = Field(default="", alias="MONAD_RPC_URL")

    bsc_explorer: str = Field(default="https://bscscan.com", alias="BSC_EXPLORER")
    ethereum_explorer: str = Field(default="https://etherscan.io", alias="ETH_EXPLORER")
    base_explorer: str = Field(default="https://basescan.org", alias="BASE_EXPLORER")
    arbitrum_explorer: str = Field(default="https://arbiscan.io", alias="ARB_EXPLORER")
    polygon_explorer: str = Field(default="https://polygonscan.com", alias="POLYGON_EXPLORER")
    avalanche_explorer: str = Field(default="https://snowtrace.io", alias="AVAX_EXPLORER")
    monad_explorer: str = Field(default="https://monadvision.com", alias="MONAD_EXPLORER")

    @field_validator(
        "bsc_rpc_url",
        "ethereum_rpc_url",
        "base_rpc_url",
        "arbitrum_rpc_url",
        "polygon_rpc_url",
        "avalanche_rpc_url",
        "monad_rpc_url",
    )
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate RPC endpoint scheme."""
        return _validate_endpoint(v)

    def endpoint_for(self, chain: str) -> str:
        return str(getattr(self, f"{chain}_rpc_url", "") or "")

    def explorer_for(self, chain: str) -> str:
        return str(getattr(self, f"{chain}_explorer", "") or "").rstrip("/")

    def configured(self) -> dict[str, str]:
        """Get the chain -> endpoint mapping for configured chains only."""
        return {c: self.endpoint_for(c) for c in SUPPORTED_CHAINS if self.endpoint_for(c)}


class TrackerSettings(BaseSettings):
    """Listener reconciliation and chain connection settings."""

    model_config = SettingsConfigDict(env_prefix="TRACKER_", extra="ignore")

    sync_interval_seconds: float = Field(
        default=15.0,
        alias="TRACKER_SYNC_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Delay between the end of one reconciliation pass and the start of the next",
    )
    stale_after_seconds: float = Field(
        default=60.0,
        alias="TRACKER_STALE_AFTER_SECONDS",
        ge=5.0,
        le=3600.0,
        description="Inactivity window after which a streaming connection is replaced",
    )
    poll_interval_seconds: float = Field(
        default=4.0,
        alias="TRACKER_POLL_INTERVAL_SECONDS",
        ge=0.5,
        le=300.0,
        description="Log polling interval for HTTP transports",
    )
    max_block_range: int = Field(
        default=2000,
        alias="TRACKER_MAX_BLOCK_RANGE",
        ge=1,
        le=100_000,
        description="Maximum block span per eth_getLogs poll",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        alias="TRACKER_REQUEST_TIMEOUT_SECONDS",
        ge=1.0,
        le=300.0,
        description="Timeout for a single JSON-RPC request",
    )
    discovery_max_pools: int = Field(
        default=15,
        alias="TRACKER_DISCOVERY_MAX_POOLS",
        ge=1,
        le=100,
        description="Pools kept when auto-filling a group's pool list",
    )
    discovery_min_liquidity_usd: float = Field(
        default=10.0,
        alias="TRACKER_DISCOVERY_MIN_LIQUIDITY_USD",
        ge=0.0,
        description="Liquidity floor for auto-filled pools",
    )
    aggregator_heavy_chains_csv: str = Field(
        default="monad",
        alias="TRACKER_AGGREGATOR_HEAVY_CHAINS",
        description="Comma-separated chains where contract recipients are resolved via the transaction sender",
    )
    cache_prune_interval_seconds: float = Field(
        default=300.0,
        alias="TRACKER_CACHE_PRUNE_INTERVAL_SECONDS",
        ge=10.0,
        le=86_400.0,
        description="How often advisory caches are pruned",
    )
    rpc_max_requests_per_second: float = Field(
        default=25.0,
        alias="TRACKER_RPC_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        description="Token-bucket rate limit for on-chain reads (per chain)",
    )
    rpc_max_retries: int = Field(
        default=3,
        alias="TRACKER_RPC_MAX_RETRIES",
        ge=1,
        le=10,
        description="Attempts per on-chain read before giving up",
    )

    launchpad_chain: str = Field(
        default="monad",
        alias="TRACKER_LAUNCHPAD_CHAIN",
        description="Chain whose bonding-curve launchpad router is watched for CurveBuy events",
    )
    launchpad_router: str = Field(
        default=NAD_FUN_BONDING_ROUTER,
        alias="TRACKER_LAUNCHPAD_ROUTER",
        description="Bonding-curve router address (empty disables the launchpad listener)",
    )
    launchpad_base_token: str = Field(
        default=ZERO_ADDRESS,
        alias="TRACKER_LAUNCHPAD_BASE_TOKEN",
        description="Token spent on launchpad buys (wrapped native asset)",
    )

    @field_validator("launchpad_router", "launchpad_base_token")
    @classmethod
    def validate_address(cls, v: str) -> str:
        v = v.strip().lower()
        if v and (len(v) != 42 or not v.startswith("0x")):
            raise ValueError("Launchpad addresses must be 0x-prefixed 20-byte hex strings")
        return v

    @property
    def aggregator_heavy_chains(self) -> frozenset[str]:
        return frozenset(c.strip().lower() for c in self.aggregator_heavy_chains_csv.split(",") if c.strip())

    def launchpads(self) -> dict[str, str]:
        """Get the chain -> launchpad router mapping (empty when disabled)."""
        if not self.launchpad_chain or not self.launchpad_router:
            return {}
        return {self.launchpad_chain.strip().lower(): self.launchpad_router}


class EnrichmentSettings(BaseSettings):
    """Alert enrichment and market-data cache settings."""

    model_config = SettingsConfigDict(env_prefix="ENRICHMENT_", extra="ignore")

    min_position_usd: float = Field(
        default=100.0,
        alias="ENRICHMENT_MIN_POSITION_USD",
        ge=0.0,
        description="Minimum buy value (USD) before the prior-balance lookup runs",
    )
    max_position_increase_pct: int = Field(
        default=100_000,
        alias="ENRICHMENT_MAX_POSITION_INCREASE_PCT",
        ge=1,
        description="Position increases above this percent are treated as unreliable",
    )
    pair_stats_ttl_seconds: float = Field(default=8.0, alias="ENRICHMENT_PAIR_STATS_TTL_SECONDS", ge=0.0)
    fallback_stats_ttl_seconds: float = Field(
        default=10.0, alias="ENRICHMENT_FALLBACK_STATS_TTL_SECONDS", ge=0.0
    )
    native_price_ttl_seconds: float = Field(
        default=30.0, alias="ENRICHMENT_NATIVE_PRICE_TTL_SECONDS", ge=0.0
    )
    token_pools_ttl_seconds: float = Field(
        default=120.0, alias="ENRICHMENT_TOKEN_POOLS_TTL_SECONDS", ge=0.0
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        alias="ENRICHMENT_HTTP_TIMEOUT_SECONDS",
        ge=1.0,
        le=120.0,
        description="Timeout for market-data provider requests",
    )


class DispatchSettings(BaseSettings):
    """Alert dispatch queue and cooldown settings."""

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", extra="ignore")

    capacity: int = Field(default=5000, alias="DISPATCH_CAPACITY", ge=1, le=1_000_000)
    max_per_second: int = Field(default=25, alias="DISPATCH_MAX_PER_SECOND", ge=1, le=1000)
    max_in_flight: int = Field(default=4, alias="DISPATCH_MAX_IN_FLIGHT", ge=1, le=100)
    tick_interval_seconds: float = Field(
        default=0.1, alias="DISPATCH_TICK_INTERVAL_SECONDS", gt=0.0, le=10.0
    )
    default_cooldown_seconds: float = Field(
        default=3.0,
        alias="DISPATCH_DEFAULT_COOLDOWN_SECONDS",
        ge=0.0,
        description="Per (group, pool) cooldown when a group does not set its own",
    )
    cooldown_max_age_seconds: float = Field(
        default=24 * 3600.0, alias="DISPATCH_COOLDOWN_MAX_AGE_SECONDS", ge=60.0
    )
    cooldown_purge_interval_seconds: float = Field(
        default=3600.0, alias="DISPATCH_COOLDOWN_PURGE_INTERVAL_SECONDS", ge=10.0
    )


class ScannerSettings(BaseSettings):
    """New-pool scanner settings."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_", extra="ignore")

    enabled: bool = Field(default=True, alias="SCANNER_ENABLED")
    poll_interval_seconds: float = Field(
        default=30.0, alias="SCANNER_POLL_INTERVAL_SECONDS", ge=1.0, le=3600.0
    )
    min_liquidity_usd: float = Field(default=5000.0, alias="SCANNER_MIN_LIQUIDITY_USD", ge=0.0)
    max_age_seconds: float = Field(default=600.0, alias="SCANNER_MAX_AGE_SECONDS", ge=1.0)
    log_top_n: int = Field(default=5, alias="SCANNER_LOG_TOP_N", ge=0, le=100)


class DatabaseSettings(BaseSettings):
    """Group settings database connection."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///data/group_settings.db",
        alias="DATABASE_URL",
        description="Async SQLAlchemy URL (SQLite or PostgreSQL)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("sqlite+aiosqlite://", "postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a sqlite+aiosqlite or PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Optional Redis cache for stable on-chain reads."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if not v:
            return None
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class TelegramSettings(BaseSettings):
    """Telegram Bot API delivery settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    api_base_url: str = Field(
        default="https://api.telegram.org",
        alias="TELEGRAM_API_BASE_URL",
    )
    trending_url: str | None = Field(
        default=None,
        alias="TELEGRAM_TRENDING_URL",
        description="Link shown in the alert footer",
    )
    ads_url: str | None = Field(
        default=None,
        alias="TELEGRAM_ADS_URL",
        description="Ads contact link shown as an inline button",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram delivery is enabled."""
        return self.bot_token is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from dex_buy_tracker.config import get_settings

        settings = get_settings()
        print(settings.chains.configured())
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    chains: ChainsSettings = Field(
        default_factory=lambda: ChainsSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    tracker: TrackerSettings = Field(
        default_factory=lambda: TrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    enrichment: EnrichmentSettings = Field(
        default_factory=lambda: EnrichmentSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dispatch: DispatchSettings = Field(
        default_factory=lambda: DispatchSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scanner: ScannerSettings = Field(
        default_factory=lambda: ScannerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
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
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    health_port: int = Field(
        default=3000,
        alias="HEALTH_PORT",
        description="HTTP port for the /health endpoint (0 disables it)",
        ge=0,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log alerts instead of delivering them",
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
            "chains": {
                chain: self._redact_url(endpoint)
                for chain, endpoint in self.chains.configured().items()
            },
            "tracker": {
                "sync_interval_seconds": str(self.tracker.sync_interval_seconds),
                "stale_after_seconds": str(self.tracker.stale_after_seconds),
                "aggregator_heavy_chains": ",".join(sorted(self.tracker.aggregator_heavy_chains)),
            },
            "dispatch": {
                "capacity": str(self.dispatch.capacity),
                "max_per_second": str(self.dispatch.max_per_second),
                "max_in_flight": str(self.dispatch.max_in_flight),
            },
            "scanner_enabled": str(self.scanner.enabled),
            "health_port": str(self.health_port),
            "telegram_bot_token": "(set)" if self.telegram.bot_token else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self) -> None:
        """Validate that the tracker can run with this configuration.

        Raises:
            ValueError: If no chain is configured, or alerts cannot be delivered.
        """
        if not self.chains.configured():
            raise ValueError("At least one chain RPC endpoint (e.g. BSC_RPC_URL) must be configured")
        if not self.dry_run and not self.telegram.enabled:
            raise ValueError("TELEGRAM_BOT_TOKEN is required unless DRY_RUN is enabled")

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
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

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
