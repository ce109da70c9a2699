"""Tests for configuration loading and validation."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from feedsync.config import FeedConfig


class TestFeedConfig:
    """Tests for FeedConfig."""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = FeedConfig.from_env()

        assert config.page_size == 10
        assert config.fan_out_limit == 10
        assert config.overfetch_limit == 30
        assert config.cache_ttl == timedelta(hours=24)
        assert config.reconnect_debounce == pytest.approx(0.3)
        config.validate()

    def test_from_env(self):
        env = {
            "FEED_PAGE_SIZE": "20",
            "FEED_FAN_OUT_LIMIT": "30",
            "FEED_OVERFETCH_FACTOR": "4",
            "FEED_CACHE_TTL_HOURS": "1.5",
            "FEED_RECONNECT_DEBOUNCE_MS": "500",
            "FEED_RETRY_ATTEMPTS": "5",
            "FEED_API_BASE_URL": "https://api.example.com/",
        }
        with patch.dict("os.environ", env, clear=True):
            config = FeedConfig.from_env()

        assert config.page_size == 20
        assert config.overfetch_limit == 80
        assert config.cache_ttl == timedelta(minutes=90)
        assert config.reconnect_debounce == pytest.approx(0.5)
        assert config.retry_attempts == 5
        assert config.api_base_url == "https://api.example.com"

    def test_unparseable_value(self):
        with patch.dict("os.environ", {"FEED_PAGE_SIZE": "ten"}, clear=True):
            with pytest.raises(ValueError, match="FEED_PAGE_SIZE"):
                FeedConfig.from_env()

    @pytest.mark.parametrize(
        "changes,message",
        [
            ({"page_size": 0}, "FEED_PAGE_SIZE"),
            ({"retry_attempts": 0}, "FEED_RETRY_ATTEMPTS"),
            ({"cache_ttl": timedelta(0)}, "FEED_CACHE_TTL_HOURS"),
            ({"api_base_url": "ftp://x"}, "FEED_API_BASE_URL"),
        ],
    )
    def test_validate(self, changes, message):
        config = FeedConfig(**changes)

        with pytest.raises(ValueError, match=message):
            config.validate()
