"""Configuration management."""

import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass
class FeedConfig:
    """Feed engine configuration from environment variables."""

    page_size: int = 10
    fan_out_limit: int = 10
    overfetch_factor: int = 3
    cache_ttl: timedelta = timedelta(hours=24)
    reconnect_debounce: float = 0.3
    request_timeout: float = 5.0
    retry_attempts: int = 3
    retry_delay: float = 0.5
    retry_backoff: float = 2.0
    cache_dir: str = ".feed_cache"
    api_base_url: str = "http://localhost:8080"
    notifications_page_size: int = 20

    @classmethod
    def from_env(cls) -> "FeedConfig":
        """Load configuration from environment variables.

        Every variable is optional; unset variables keep the defaults.

        Raises:
            ValueError: If a variable is set but cannot be parsed
        """
        defaults = cls()

        def _int(name: str, default: int) -> int:
            raw = os.getenv(name, "").strip()
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError as e:
                raise ValueError(f"{name} must be an integer, got {raw!r}") from e

        def _float(name: str, default: float) -> float:
            raw = os.getenv(name, "").strip()
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError as e:
                raise ValueError(f"{name} must be a number, got {raw!r}") from e

        ttl_hours = _float("FEED_CACHE_TTL_HOURS", defaults.cache_ttl.total_seconds() / 3600)
        debounce_ms = _float("FEED_RECONNECT_DEBOUNCE_MS", defaults.reconnect_debounce * 1000)

        return cls(
            page_size=_int("FEED_PAGE_SIZE", defaults.page_size),
            fan_out_limit=_int("FEED_FAN_OUT_LIMIT", defaults.fan_out_limit),
            overfetch_factor=_int("FEED_OVERFETCH_FACTOR", defaults.overfetch_factor),
            cache_ttl=timedelta(hours=ttl_hours),
            reconnect_debounce=debounce_ms / 1000,
            request_timeout=_float("FEED_REQUEST_TIMEOUT_SECONDS", defaults.request_timeout),
            retry_attempts=_int("FEED_RETRY_ATTEMPTS", defaults.retry_attempts),
            retry_delay=_float("FEED_RETRY_DELAY_SECONDS", defaults.retry_delay),
            retry_backoff=_float("FEED_RETRY_BACKOFF", defaults.retry_backoff),
            cache_dir=os.getenv("FEED_CACHE_DIR", defaults.cache_dir),
            api_base_url=os.getenv("FEED_API_BASE_URL", defaults.api_base_url).rstrip("/"),
            notifications_page_size=_int(
                "FEED_NOTIFICATIONS_PAGE_SIZE", defaults.notifications_page_size
            ),
        )

    @property
    def overfetch_limit(self) -> int:
        """Raw page size used when the author filter exceeds the fan-out limit."""
        return self.page_size * self.overfetch_factor

    def validate(self) -> None:
        """Validate configuration."""
        if self.page_size < 1:
            raise ValueError("FEED_PAGE_SIZE must be at least 1")
        if self.fan_out_limit < 1:
            raise ValueError("FEED_FAN_OUT_LIMIT must be at least 1")
        if self.overfetch_factor < 1:
            raise ValueError("FEED_OVERFETCH_FACTOR must be at least 1")
        if self.cache_ttl <= timedelta(0):
            raise ValueError("FEED_CACHE_TTL_HOURS must be positive")
        if self.reconnect_debounce < 0:
            raise ValueError("FEED_RECONNECT_DEBOUNCE_MS must not be negative")
        if self.request_timeout <= 0:
            raise ValueError("FEED_REQUEST_TIMEOUT_SECONDS must be positive")
        if self.retry_attempts < 1:
            raise ValueError("FEED_RETRY_ATTEMPTS must be at least 1")
        if self.retry_delay < 0 or self.retry_backoff < 1:
            raise ValueError("FEED_RETRY_DELAY_SECONDS must be >= 0 and FEED_RETRY_BACKOFF >= 1")
        if self.notifications_page_size < 1:
            raise ValueError("FEED_NOTIFICATIONS_PAGE_SIZE must be at least 1")
        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValueError("FEED_API_BASE_URL must be an http(s) URL")
