"""
Feed configuration.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field

from .types import InstrumentKey

STORE_BACKENDS = ("sqlite", "rest", "none")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_instruments(name: str) -> list[InstrumentKey]:
    raw = os.getenv(name, "")
    return [InstrumentKey.parse(part) for part in raw.split(",") if part.strip()]


@dataclass
class FeedConfig:
    """Feed configuration."""

    # URLs
    pm_ws_market_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    pm_rest_url: str = "https://clob.polymarket.com"

    # Optional API credentials attached to subscribe messages
    pm_api_key: str = ""
    pm_api_secret: str = ""
    pm_api_passphrase: str = ""

    # Connection
    heartbeat_interval_s: float = 10.0
    reconnect_base_delay_s: float = 3.0
    reconnect_max_delay_s: float = 30.0
    max_reconnect_attempts: int = 5
    auto_connect: bool = False

    # Polling fallback
    poll_interval_s: float = 3.0
    poll_timeout_s: float = 5.0

    # Persistence
    persist_interval_s: float = 10.0
    persist_batch_size: int = 50
    queue_capacity: int = 1000
    queue_low_watermark: int = 500
    store: str = "sqlite"
    sqlite_path: str = "data/market_prices.db"
    rest_store_url: str = ""
    rest_store_key: str = ""
    rest_store_table: str = "markets"
    rest_store_conflict: str = "condition_id"

    # Latency monitor
    latency_window: int = 100
    latency_alert_ms: float = 1000.0
    latency_report_interval_s: float = 60.0

    # Instruments subscribed by the runner on startup
    instruments: list[InstrumentKey] = field(default_factory=list)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "FeedConfig":
        """Load config from environment variables."""
        return cls(
            # URLs
            pm_ws_market_url=os.getenv(
                "PM_WS_MARKET_URL",
                "wss://ws-subscriptions-clob.polymarket.com/ws/market",
            ),
            pm_rest_url=os.getenv("PM_REST_URL", "https://clob.polymarket.com"),

            # Credentials
            pm_api_key=os.getenv("PM_API_KEY", ""),
            pm_api_secret=os.getenv("PM_API_SECRET", ""),
            pm_api_passphrase=os.getenv("PM_API_PASSPHRASE", ""),

            # Connection
            heartbeat_interval_s=float(os.getenv("FEED_HEARTBEAT_INTERVAL_S", "10")),
            reconnect_base_delay_s=float(os.getenv("FEED_RECONNECT_BASE_DELAY_S", "3")),
            reconnect_max_delay_s=float(os.getenv("FEED_RECONNECT_MAX_DELAY_S", "30")),
            max_reconnect_attempts=int(os.getenv("FEED_MAX_RECONNECT_ATTEMPTS", "5")),
            auto_connect=_env_bool("FEED_AUTO_CONNECT"),

            # Polling
            poll_interval_s=float(os.getenv("FEED_POLL_INTERVAL_S", "3")),
            poll_timeout_s=float(os.getenv("FEED_POLL_TIMEOUT_S", "5")),

            # Persistence
            persist_interval_s=float(os.getenv("FEED_PERSIST_INTERVAL_S", "10")),
            persist_batch_size=int(os.getenv("FEED_PERSIST_BATCH_SIZE", "50")),
            queue_capacity=int(os.getenv("FEED_QUEUE_CAPACITY", "1000")),
            queue_low_watermark=int(os.getenv("FEED_QUEUE_LOW_WATERMARK", "500")),
            store=os.getenv("FEED_STORE", "sqlite").strip().lower(),
            sqlite_path=os.getenv("FEED_SQLITE_PATH", "data/market_prices.db"),
            rest_store_url=os.getenv("FEED_REST_STORE_URL", ""),
            rest_store_key=os.getenv("FEED_REST_STORE_KEY", ""),
            rest_store_table=os.getenv("FEED_REST_STORE_TABLE", "markets"),
            rest_store_conflict=os.getenv("FEED_REST_STORE_CONFLICT", "condition_id"),

            # Latency
            latency_window=int(os.getenv("FEED_LATENCY_WINDOW", "100")),
            latency_alert_ms=float(os.getenv("FEED_LATENCY_ALERT_MS", "1000")),
            latency_report_interval_s=float(os.getenv("FEED_LATENCY_REPORT_INTERVAL_S", "60")),

            # Instruments
            instruments=_env_instruments("FEED_INSTRUMENTS"),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_env_file(cls, path: str) -> "FeedConfig":
        """
        Load config from .env file, then environment variables.

        Environment variables override file values.
        """
        if os.path.exists(path):
            with open(path) as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        key, value = line.split("=", 1)
                        key = key.strip()
                        value = value.strip().strip("'\"")
                        # Only set if not already in environment
                        if key not in os.environ:
                            os.environ[key] = value

        return cls.from_env()

    @property
    def has_credentials(self) -> bool:
        return bool(self.pm_api_key and self.pm_api_secret and self.pm_api_passphrase)

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.pm_ws_market_url.startswith(("ws://", "wss://")):
            errors.append("PM_WS_MARKET_URL must be a ws:// or wss:// URL")

        if self.heartbeat_interval_s <= 0:
            errors.append("FEED_HEARTBEAT_INTERVAL_S must be positive")

        if self.reconnect_base_delay_s <= 0:
            errors.append("FEED_RECONNECT_BASE_DELAY_S must be positive")

        if self.reconnect_max_delay_s < self.reconnect_base_delay_s:
            errors.append("FEED_RECONNECT_MAX_DELAY_S must be at least the base delay")

        if self.max_reconnect_attempts < 0:
            errors.append("FEED_MAX_RECONNECT_ATTEMPTS must not be negative")

        if self.poll_interval_s <= 0:
            errors.append("FEED_POLL_INTERVAL_S must be positive")

        if self.persist_interval_s <= 0:
            errors.append("FEED_PERSIST_INTERVAL_S must be positive")

        if self.persist_batch_size < 1:
            errors.append("FEED_PERSIST_BATCH_SIZE must be at least 1")

        if self.queue_capacity < 1:
            errors.append("FEED_QUEUE_CAPACITY must be at least 1")

        if not 0 <= self.queue_low_watermark <= self.queue_capacity:
            errors.append("FEED_QUEUE_LOW_WATERMARK must be between 0 and FEED_QUEUE_CAPACITY")

        if self.latency_window < 1:
            errors.append("FEED_LATENCY_WINDOW must be at least 1")

        if self.store not in STORE_BACKENDS:
            errors.append(f"FEED_STORE must be one of {', '.join(STORE_BACKENDS)}")

        if self.store == "rest" and not self.rest_store_url:
            errors.append("FEED_REST_STORE_URL is required when FEED_STORE=rest")

        return errors
