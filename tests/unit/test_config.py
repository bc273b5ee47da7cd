"""Tests for configuration module."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from applist_builder.config import (
    CacheConfig,
    IconConfig,
    LoggingConfig,
    NetworkConfig,
    ProductInfoConfig,
    RetryConfig,
    Settings,
    SteamAPIConfig,
)


class TestSteamAPIConfig:
    """Tests for Steam API configuration."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            config = SteamAPIConfig()

        assert config.app_list_url == "https://api.steampowered.com/IStoreService/GetAppList/v1/"
        assert config.store_search_url == "https://store.steampowered.com/api/storesearch/"
        assert config.app_list_page_size == 50000
        assert config.timeout_seconds == 30

    def test_api_key_optional(self) -> None:
        """Test that the catalog can be configured without an API key."""
        with patch.dict(os.environ, {}, clear=True):
            config = SteamAPIConfig()

        assert config.api_key is None

    def test_api_key_secret(self) -> None:
        """Test that API key is stored as secret."""
        with patch.dict(os.environ, {"STEAM_API_KEY": "secret_key_123"}):
            config = SteamAPIConfig()

        # SecretStr should not expose value in repr
        assert "secret_key_123" not in repr(config.api_key)
        assert config.api_key is not None
        assert config.api_key.get_secret_value() == "secret_key_123"


class TestProductInfoConfig:
    """Tests for product-info client configuration."""

    def test_default_values(self) -> None:
        """Test default batching and retry values."""
        config = ProductInfoConfig()

        assert config.batch_size == 150
        assert config.request_timeout_seconds == 5.0
        assert config.max_attempts == 3
        assert config.retry_delay_seconds == 0.5
        assert config.reconnect_backoff_seconds == 5.0

    def test_batch_size_from_env(self) -> None:
        """Test env override with type coercion."""
        with patch.dict(os.environ, {"PRODUCT_INFO_BATCH_SIZE": "50"}):
            config = ProductInfoConfig()

        assert config.batch_size == 50

    def test_batch_size_bounds(self) -> None:
        """Test batch_size validation bounds."""
        with patch.dict(os.environ, {"PRODUCT_INFO_BATCH_SIZE": "0"}), pytest.raises(ValueError):
            ProductInfoConfig()


class TestIconConfig:
    """Tests for icon download configuration."""

    def test_default_hosts(self) -> None:
        """Test default mirrors and fallback host."""
        config = IconConfig()

        assert config.cdn_hosts == [
            "https://cdn.cloudflare.steamstatic.com",
            "https://cdn.akamai.steamstatic.com",
        ]
        assert config.fallback_hosts == ["https://steamcdn-a.akamaihd.net"]
        assert config.min_payload_bytes == 256
        assert config.min_icon_width == 32

    def test_hosts_trailing_slash_stripped(self) -> None:
        """Test that hosts are normalized."""
        config = IconConfig(cdn_hosts=["https://a.example/", "https://b.example"])

        assert config.cdn_hosts == ["https://a.example", "https://b.example"]

    def test_single_host_rejected(self) -> None:
        """Test that one mirror is not enough."""
        with pytest.raises(ValueError, match="At least two CDN hosts"):
            IconConfig(cdn_hosts=["https://only.example"])


class TestCacheConfig:
    """Tests for cache configuration."""

    def test_icon_dir_from_env(self, tmp_path: Path) -> None:
        """Test icon directory override."""
        with patch.dict(os.environ, {"CACHE_ICON_DIR": str(tmp_path)}):
            config = CacheConfig()

        assert config.icon_dir == tmp_path
        assert config.result_ttl_seconds == 1800.0


class TestNetworkConfig:
    """Tests for network configuration."""

    def test_default_values(self) -> None:
        config = NetworkConfig()

        assert config.max_concurrent_requests == 6


class TestRetryConfig:
    """Tests for retry configuration."""

    def test_default_values(self) -> None:
        """Test default retry values."""
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay_seconds == 1.0
        assert config.max_delay_seconds == 60.0
        assert config.exponential_base == 2.0

    def test_max_attempts_bounds(self) -> None:
        """Test max_attempts validation bounds."""
        with patch.dict(os.environ, {"RETRY_MAX_ATTEMPTS": "0"}), pytest.raises(ValueError):
            RetryConfig()

        with patch.dict(os.environ, {"RETRY_MAX_ATTEMPTS": "11"}), pytest.raises(ValueError):
            RetryConfig()


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_valid_levels(self) -> None:
        """Test valid log levels."""
        for level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            with patch.dict(os.environ, {"LOG_LEVEL": level}):
                config = LoggingConfig()
                assert config.level == level

    def test_valid_formats(self) -> None:
        """Test valid log formats."""
        for fmt in ["json", "console"]:
            with patch.dict(os.environ, {"LOG_FORMAT": fmt}):
                config = LoggingConfig()
                assert config.format == fmt


class TestSettings:
    """Tests for aggregated settings."""

    def test_sections_present(self) -> None:
        """Test that every section is built."""
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}):
            settings = Settings()

        assert settings.is_production
        assert settings.product_info.batch_size == 150
        assert settings.icons.max_attempts == 3
        assert settings.network.max_concurrent_requests == 6
