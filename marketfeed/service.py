"""
Market feed service.

Multiplexes one upstream market-channel connection across any number of
in-process subscribers. Wires together:
- Two SubscriptionRegistry instances (prices, order books)
- ConnectionManager (connect / heartbeat / reconnect)
- PollingFallback (REST prices per price-subscribed key)
- PersistenceQueue + LatencyMonitor (write-behind price storage)

Data flow:
    transport thread -> handle_frame -> classify -> normalize -> dispatch
    polling timers   -> publish_polled ----------------------> dispatch
    dispatch (price, matched) -> PersistenceQueue -> flush timer -> store

Locking:
- One RLock guards both registries and the connection's subscribed set.
  It is never held while callbacks run.
- A separate dispatch lock serializes normalize/dispatch/enqueue so
  per-key delivery order equals arrival order across stream and polls.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .classifier import classify_frame
from .clients import ClobPriceClient
from .config import FeedConfig
from .feeds import ConnectionManager, Payload, Transport, WebSocketTransport
from .normalizer import book_updates, from_lookup, price_updates
from .persistence import (
    FlushReport,
    LatencyMonitor,
    NullPriceStore,
    PersistenceQueue,
    RestUpsertStore,
    SqlitePriceStore,
    UpsertStore,
)
from .polling import PollingFallback, PriceLookup
from .registry import SubscriptionHandle, SubscriptionRegistry
from .timers import Scheduler, ThreadScheduler, TimerHandle
from .types import (
    ConnectionState,
    ControlFrame,
    InstrumentKey,
    OrderBookUpdate,
    PricePair,
    PriceUpdate,
    UnrecognizedFrame,
    wall_ms,
)

logger = logging.getLogger(__name__)

PriceCallback = Callable[[PriceUpdate], Any]
BookCallback = Callable[[OrderBookUpdate], Any]


def create_store(config: FeedConfig) -> UpsertStore:
    """Build the upsert store selected by FEED_STORE."""
    if config.store == "sqlite":
        return SqlitePriceStore(config.sqlite_path)
    if config.store == "rest":
        return RestUpsertStore(
            base_url=config.rest_store_url,
            api_key=config.rest_store_key,
            table=config.rest_store_table,
            conflict_column=config.rest_store_conflict,
        )
    return NullPriceStore()


@dataclass(slots=True)
class FeedMetrics:
    """Point-in-time view of the feed's health."""
    queue_size: int
    avg_latency_ms: float
    is_connected: bool
    reconnect_attempts: int
    state: ConnectionState = ConnectionState.DISCONNECTED
    subscribed_keys: int = 0
    polling_keys: int = 0
    frames_received: int = 0
    frames_unrecognized: int = 0
    evicted_entries: int = 0
    persist_failures: int = 0
    extras: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        d = {
            "queueSize": self.queue_size,
            "avgLatency": self.avg_latency_ms,
            "isConnected": self.is_connected,
            "reconnectAttempts": self.reconnect_attempts,
            "state": self.state.name,
            "subscribedKeys": self.subscribed_keys,
            "pollingKeys": self.polling_keys,
            "framesReceived": self.frames_received,
            "framesUnrecognized": self.frames_unrecognized,
            "evictedEntries": self.evicted_entries,
            "persistFailures": self.persist_failures,
        }
        d.update(self.extras)
        return d


class MarketFeedService:
    """
    Process-wide market data feed, constructed explicitly.

    Example:
        service = MarketFeedService(FeedConfig.from_env())
        service.start()
        handle = service.subscribe(InstrumentKey.token("123"), on_price)
        service.connect()
        ...
        handle.unsubscribe()
        service.stop()
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        transport: Optional[Transport] = None,
        price_lookup: Optional[PriceLookup] = None,
        store: Optional[UpsertStore] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Feed configuration (defaults when None)
            transport: Upstream streaming transport (websocket-client by default)
            price_lookup: REST price source for polling (CLOB client by default)
            store: Persistence target (built from config.store by default)
            scheduler: Timer source (thread-backed by default)
        """
        cfg = config or FeedConfig()
        self._config = cfg
        self._scheduler = scheduler or ThreadScheduler()

        self._owns_lookup = price_lookup is None
        self._lookup = price_lookup or ClobPriceClient(cfg.pm_rest_url, timeout_s=cfg.poll_timeout_s)
        self._store = store if store is not None else create_store(cfg)

        # Shared by both registries and the connection manager
        self._lock = threading.RLock()
        self._dispatch_lock = threading.RLock()

        self._prices: SubscriptionRegistry[PriceUpdate] = SubscriptionRegistry("PriceRegistry", self._lock)
        self._books: SubscriptionRegistry[OrderBookUpdate] = SubscriptionRegistry("BookRegistry", self._lock)

        self._conn = ConnectionManager(
            transport=transport or WebSocketTransport(),
            scheduler=self._scheduler,
            active_keys=self._active_keys,
            on_frame=self.handle_frame,
            url=cfg.pm_ws_market_url,
            lock=self._lock,
            heartbeat_interval_s=cfg.heartbeat_interval_s,
            base_delay_s=cfg.reconnect_base_delay_s,
            max_delay_s=cfg.reconnect_max_delay_s,
            max_attempts=cfg.max_reconnect_attempts,
        )
        if cfg.has_credentials:
            self._conn.set_auth(cfg.pm_api_key, cfg.pm_api_secret, cfg.pm_api_passphrase)

        self._polling = PollingFallback(
            lookup=self._lookup,
            scheduler=self._scheduler,
            on_price=self.publish_polled,
            interval_s=cfg.poll_interval_s,
        )

        self._latency = LatencyMonitor(window=cfg.latency_window, alert_ms=cfg.latency_alert_ms)
        self._queue = PersistenceQueue(
            store=self._store,
            capacity=cfg.queue_capacity,
            low_watermark=cfg.queue_low_watermark,
            batch_size=cfg.persist_batch_size,
            latency=self._latency,
        )

        self._persist_timer: Optional[TimerHandle] = None
        self._report_timer: Optional[TimerHandle] = None
        self._running = False
        self._frames_unrecognized = 0

    # --- Components ---

    @property
    def connection(self) -> ConnectionManager:
        return self._conn

    @property
    def polling(self) -> PollingFallback:
        return self._polling

    @property
    def queue(self) -> PersistenceQueue:
        return self._queue

    @property
    def latency(self) -> LatencyMonitor:
        return self._latency

    @property
    def is_running(self) -> bool:
        return self._running

    # --- Lifecycle ---

    def start(self) -> None:
        """Open the store and start the persist and latency report timers."""
        if self._running:
            return
        logger.info("MarketFeedService: Starting...")
        self._store.open()
        self._persist_timer = self._scheduler.call_every(
            self._config.persist_interval_s,
            self.flush,
            name="Feed-Persist",
        )
        self._report_timer = self._scheduler.call_every(
            self._config.latency_report_interval_s,
            self._report_latency,
            name="Feed-LatencyReport",
        )
        self._running = True
        logger.info("MarketFeedService: Started")

    def stop(self) -> None:
        """Disconnect, stop timers, flush pending prices and close the store."""
        logger.info("MarketFeedService: Stopping...")
        self.disconnect()

        for timer in (self._persist_timer, self._report_timer):
            if timer is not None:
                timer.cancel()
        self._persist_timer = None
        self._report_timer = None

        try:
            self.flush()
        finally:
            self._store.close()
            if self._owns_lookup and isinstance(self._lookup, ClobPriceClient):
                self._lookup.close()
            self._running = False
        logger.info("MarketFeedService: Stopped")

    def connect(self) -> None:
        self._conn.connect()

    def disconnect(self) -> None:
        """Close the connection and drop every subscription."""
        self._conn.disconnect()
        with self._lock:
            price_keys = self._prices.clear()
            book_keys = self._books.clear()
            self._polling.stop_all()
        if price_keys or book_keys:
            logger.info(
                f"MarketFeedService: Cleared {len(price_keys)} price and "
                f"{len(book_keys)} order book subscriptions"
            )

    def is_connected(self) -> bool:
        return self._conn.is_connected()

    def set_auth(self, api_key: str, secret: str, passphrase: str) -> None:
        self._conn.set_auth(api_key, secret, passphrase)

    # --- Subscriptions ---

    def subscribe(self, key: InstrumentKey, callback: PriceCallback) -> SubscriptionHandle[PriceUpdate]:
        """
        Register a price callback for key.

        The first subscriber for a key starts its polling fallback and,
        unless an order book subscriber already holds it, upstream interest.
        """
        with self._lock:
            handle, first = self._prices.add(key, callback, self._release_price)
            if first:
                self._polling.start(key)
                if not self._books.has(key):
                    self._conn.request_subscribe(key)
        if first:
            logger.info(f"MarketFeedService: Subscribed {key}")
        self._maybe_auto_connect()
        return handle

    def subscribe_order_book(self, key: InstrumentKey, callback: BookCallback) -> SubscriptionHandle[OrderBookUpdate]:
        """Register an order book callback for key. Book-only keys are not polled."""
        with self._lock:
            handle, first = self._books.add(key, callback, self._release_book)
            if first and not self._prices.has(key):
                self._conn.request_subscribe(key)
        self._maybe_auto_connect()
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove exactly this registration. Repeated calls are no-ops."""
        handle.unsubscribe()

    def _release_price(self, handle: SubscriptionHandle[PriceUpdate]) -> None:
        with self._lock:
            if not self._prices.remove(handle):
                return
            self._polling.stop(handle.key)
            if not self._books.has(handle.key):
                self._conn.release(handle.key)
        logger.info(f"MarketFeedService: Unsubscribed {handle.key}")

    def _release_book(self, handle: SubscriptionHandle[OrderBookUpdate]) -> None:
        with self._lock:
            if not self._books.remove(handle):
                return
            if not self._prices.has(handle.key):
                self._conn.release(handle.key)

    def _active_keys(self) -> list[InstrumentKey]:
        with self._lock:
            keys = self._prices.keys()
            seen = set(keys)
            keys.extend(k for k in self._books.keys() if k not in seen)
            return keys

    def _maybe_auto_connect(self) -> None:
        if self._config.auto_connect and self._conn.state is ConnectionState.DISCONNECTED:
            self._conn.connect()

    # --- Dispatch ---

    def handle_frame(self, payload: Payload) -> None:
        """Classify one inbound frame and dispatch its market data."""
        events = classify_frame(payload)
        at = wall_ms()

        with self._dispatch_lock:
            for event in events:
                if isinstance(event, UnrecognizedFrame):
                    self._frames_unrecognized += 1
                    logger.debug(
                        f"MarketFeedService: Dropped frame ({event.reason}, type={event.event_type})"
                    )
                    continue
                if isinstance(event, ControlFrame):
                    continue

                for book in book_updates(event, at):
                    self._books.dispatch(book.key, book)
                for update in price_updates(event, at):
                    self._publish_locked(update)

    def publish_polled(self, key: InstrumentKey, pair: PricePair) -> None:
        """Dispatch a REST lookup result exactly like a stream update."""
        update = from_lookup(key, pair)
        with self._dispatch_lock:
            self._publish_locked(update)

    def _publish_locked(self, update: PriceUpdate) -> None:
        result = self._prices.dispatch(update.key, update)
        if result.matched:
            self._queue.enqueue(update)

    # --- Persistence / metrics ---

    def flush(self) -> FlushReport:
        return self._queue.flush()

    def _report_latency(self) -> None:
        stats = self._latency.stats()
        if stats.samples == 0:
            return
        logger.info(
            f"MarketFeedService: Persist latency avg={stats.average:.0f}ms "
            f"min={stats.minimum:.0f}ms max={stats.maximum:.0f}ms (n={stats.samples})"
        )
        if self._latency.is_degraded:
            logger.warning(
                f"MarketFeedService: High persist latency detected: {stats.average:.0f}ms "
                f"(threshold {self._config.latency_alert_ms:.0f}ms)"
            )

    def get_metrics(self) -> FeedMetrics:
        queue_stats = self._queue.stats
        return FeedMetrics(
            queue_size=len(self._queue),
            avg_latency_ms=self._latency.average,
            is_connected=self._conn.is_connected(),
            reconnect_attempts=self._conn.reconnect_attempts,
            state=self._conn.state,
            subscribed_keys=len(self._active_keys()),
            polling_keys=len(self._polling.active_keys()),
            frames_received=self._conn.stats.frames_received,
            frames_unrecognized=self._frames_unrecognized,
            evicted_entries=queue_stats.evicted,
            persist_failures=queue_stats.persist_failures,
            extras={
                "callbackErrors": self._prices.callback_errors + self._books.callback_errors,
                "pollFailures": self._polling.stats.failed,
                "staleDetections": self._conn.stats.stale_detections,
            },
        )
