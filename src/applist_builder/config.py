"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with validation,
type coercion, and sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_icon_dir() -> Path:
    return Path.home() / ".cache" / "applist_builder" / "icons"


class SteamAPIConfig(BaseSettings):
    """Steam Web API and Store endpoints."""

    model_config = SettingsConfigDict(env_prefix="STEAM_")

    api_key: SecretStr | None = Field(
        default=None,
        description="Steam Web API key, required by IStoreService/GetAppList",
    )
    app_list_url: str = Field(
        default="https://api.steampowered.com/IStoreService/GetAppList/v1/",
        description="Paginated full catalog endpoint",
    )
    store_search_url: str = Field(
        default="https://store.steampowered.com/api/storesearch/",
        description="Free-text store search endpoint",
    )
    language: str = Field(default="english", description="Store language")
    country_code: str = Field(default="US", description="Store country code")
    app_list_page_size: int = Field(
        default=50000,
        ge=1,
        le=50000,
        description="Apps requested per catalog page",
    )
    timeout_seconds: int = Field(
        default=30,
        ge=5,
        le=120,
        description="HTTP request timeout in seconds",
    )


class ProductInfoConfig(BaseSettings):
    """Product-info protocol client configuration."""

    model_config = SettingsConfigDict(env_prefix="PRODUCT_INFO_")

    batch_size: int = Field(
        default=150,
        ge=1,
        le=500,
        description="Maximum ids per upstream query",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Timeout for a single batch query attempt",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per batch before the ids are given up",
    )
    retry_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        le=10.0,
        description="Delay between batch attempts",
    )
    connect_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120.0,
        description="Timeout for connect and for anonymous login",
    )
    reconnect_backoff_seconds: float = Field(
        default=5.0,
        ge=0,
        le=300.0,
        description="Pause before reconnecting after the session drops",
    )
    ready_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300.0,
        description="How long a query waits for an authenticated session",
    )


class CacheConfig(BaseSettings):
    """In-memory and on-disk cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    result_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="TTL for search and product-info results",
    )
    catalog_refresh_hours: float = Field(
        default=24.0,
        gt=0,
        description="Minimum age before the full catalog is fetched again",
    )
    icon_dir: Path = Field(
        default_factory=_default_icon_dir,
        description="Flat directory holding one image per app id",
    )


class IconConfig(BaseSettings):
    """Image CDN download configuration."""

    model_config = SettingsConfigDict(env_prefix="ICON_")

    cdn_hosts: list[str] = Field(
        default_factory=lambda: [
            "https://cdn.cloudflare.steamstatic.com",
            "https://cdn.akamai.steamstatic.com",
        ],
        description="Mirror hosts tried in order for every asset",
    )
    fallback_hosts: list[str] = Field(
        default_factory=lambda: ["https://steamcdn-a.akamaihd.net"],
        description="Extra hosts tried for the generic header.jpg only",
    )
    download_timeout_seconds: float = Field(default=10.0, gt=0, le=120.0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=0.4, ge=0, le=10.0)
    min_payload_bytes: int = Field(default=256, ge=0)
    min_icon_width: int = Field(default=32, ge=1)
    parent_fallback_depth: int = Field(default=2, ge=0, le=5)

    @field_validator("cdn_hosts")
    @classmethod
    def require_mirrors(cls, v: list[str]) -> list[str]:
        """Require at least two mirrors and strip trailing slashes."""
        if len(v) < 2:
            raise ValueError("At least two CDN hosts are required")
        return [host.rstrip("/") for host in v]


class NetworkConfig(BaseSettings):
    """Shared network fan-out limits."""

    model_config = SettingsConfigDict(env_prefix="NETWORK_")

    max_concurrent_requests: int = Field(
        default=6,
        ge=1,
        le=32,
        description="Simultaneous downloads and metadata fetches",
    )


class RetryConfig(BaseSettings):
    """Retry behavior configuration."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of retry attempts",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.1,
        le=30.0,
        description="Base delay between retries (exponential backoff)",
    )
    max_delay_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=300.0,
        description="Maximum delay between retries",
    )
    exponential_base: float = Field(
        default=2.0,
        ge=1.5,
        le=4.0,
        description="Base for exponential backoff calculation",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format",
    )
    include_timestamp: bool = Field(
        default=True,
        description="Include timestamp in log entries",
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all configuration sections and provides
    a single entry point for configuration access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    steam: SteamAPIConfig = Field(default_factory=SteamAPIConfig)
    product_info: ProductInfoConfig = Field(default_factory=ProductInfoConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    icons: IconConfig = Field(default_factory=IconConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration instance
    """
    return Settings()
