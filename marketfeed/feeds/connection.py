"""
Connection manager for the upstream market channel.

Owns exactly one transport connection at a time and the state machine
around it:

    DISCONNECTED --connect()--> CONNECTING --open--> OPEN
    OPEN / CONNECTING --close, error, stale--> RECONNECTING (attempts < max)
                                           --> FAILED       (attempts == max)
    RECONNECTING --backoff elapsed--> CONNECTING
    any --disconnect()--> DISCONNECTED

On entering OPEN the attempt counter resets, the heartbeat starts and every
key with subscribers is replayed as one subscribe message. While OPEN a
text PING is sent every heartbeat interval; two consecutive intervals with
no inbound traffic at all mark the connection as a zombie and force a
reconnect even though the socket never reported a close.

Thread Safety:
    State lives under the lock shared with the subscription registries.
    Transport callbacks from a connection that is no longer current are
    ignored for state purposes.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import orjson

from ..timers import Scheduler, TimerHandle
from ..types import ConnectionState, InstrumentKey
from .transport import Payload, Transport, TransportConnection, TransportListener

logger = logging.getLogger(__name__)

PM_MARKET_WS_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"

HEARTBEAT_PROBE = "PING"

# Silent heartbeat intervals before a connection is declared stale
STALE_INTERVALS = 2


@dataclass(slots=True)
class ConnectionStats:
    """
    Connection statistics for monitoring.

    Attributes:
        opens: Connections that reached OPEN
        losses: Close/error events on the current connection
        stale_detections: Forced reconnects from the heartbeat check
        frames_received: Inbound frames on the current connection
        subscribe_messages: Upstream subscribe messages sent
        send_errors: Failed sends
    """
    opens: int = 0
    losses: int = 0
    stale_detections: int = 0
    frames_received: int = 0
    subscribe_messages: int = 0
    send_errors: int = 0


class ConnectionManager(TransportListener):
    """
    Connect / heartbeat / reconnect state machine for one upstream socket.

    Example:
        manager = ConnectionManager(
            transport=WebSocketTransport(),
            scheduler=ThreadScheduler(),
            active_keys=registry.keys,
            on_frame=service.handle_frame,
        )
        manager.connect()
    """

    def __init__(
        self,
        transport: Transport,
        scheduler: Scheduler,
        active_keys: Callable[[], Iterable[InstrumentKey]],
        on_frame: Callable[[Payload], Any],
        url: str = PM_MARKET_WS_URL,
        lock: Optional[threading.RLock] = None,
        heartbeat_interval_s: float = 10.0,
        base_delay_s: float = 3.0,
        max_delay_s: Optional[float] = 30.0,
        max_attempts: int = 5,
    ):
        """
        Initialize the connection manager.

        Args:
            transport: Opens upstream connections
            scheduler: Source of heartbeat and backoff timers
            active_keys: Returns keys that currently have subscribers
            on_frame: Receives every inbound frame
            url: Market channel URL
            lock: Lock shared with the subscription registries
            heartbeat_interval_s: Seconds between liveness probes
            base_delay_s: Backoff unit; the n-th retry waits base * n
            max_delay_s: Backoff ceiling (None for uncapped)
            max_attempts: Consecutive failures before FAILED
        """
        self._transport = transport
        self._scheduler = scheduler
        self._active_keys = active_keys
        self._on_frame = on_frame
        self._url = url
        self._lock = lock if lock is not None else threading.RLock()
        self._heartbeat_interval = heartbeat_interval_s
        self._base_delay = base_delay_s
        self._max_delay = max_delay_s
        self._max_attempts = max_attempts

        self._state = ConnectionState.DISCONNECTED
        self._conn: Optional[TransportConnection] = None
        self._attempts = 0
        self._reconnect_timer: Optional[TimerHandle] = None
        self._heartbeat_timer: Optional[TimerHandle] = None

        # Liveness tracking
        self._inbound_since_tick = False
        self._silent_intervals = 0

        # Keys subscribed on the current connection
        self._subscribed: set[InstrumentKey] = set()

        self._auth: Optional[dict] = None
        self.stats = ConnectionStats()

    # --- Properties ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    def subscribed_keys(self) -> set[InstrumentKey]:
        """Keys subscribed upstream on the current connection."""
        with self._lock:
            return set(self._subscribed)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (1-based)."""
        delay = self._base_delay * attempt
        if self._max_delay is not None:
            delay = min(delay, self._max_delay)
        return delay

    # --- Lifecycle ---

    def connect(self) -> None:
        """
        Start connecting if DISCONNECTED or FAILED.

        No-op while a connection is live or a reconnect is pending.
        An explicit connect from FAILED starts a fresh attempt cycle.
        """
        with self._lock:
            if self._state in (
                ConnectionState.CONNECTING,
                ConnectionState.OPEN,
                ConnectionState.RECONNECTING,
            ):
                return
            if self._state is ConnectionState.FAILED:
                self._attempts = 0
            self._open_locked()

    def disconnect(self) -> None:
        """
        User-initiated shutdown of the connection.

        Cancels every timer and releases the socket. No further state
        transitions happen until the next connect().
        """
        with self._lock:
            self._cancel_timers_locked()
            conn = self._conn
            self._conn = None
            self._subscribed.clear()
            self._attempts = 0
            self._set_state_locked(ConnectionState.DISCONNECTED)

        if conn is not None:
            conn.close()
        logger.info("ConnectionManager: Disconnected")

    def restart(self, reason: str = "restart") -> None:
        """
        Replace the live connection without counting a failed attempt.

        Subscriptions are kept and replayed on the new connection.
        """
        with self._lock:
            if self._state is not ConnectionState.OPEN:
                return
            logger.info(f"ConnectionManager: Restarting connection ({reason})")
            self._cancel_timers_locked()
            conn = self._conn
            self._conn = None
            self._subscribed.clear()
            self._open_locked()

        if conn is not None:
            conn.close()

    def set_auth(self, api_key: str, secret: str, passphrase: str) -> None:
        """Attach API credentials to subscribe messages, reconnecting if OPEN."""
        with self._lock:
            self._auth = {"apiKey": api_key, "secret": secret, "passphrase": passphrase}
            is_open = self._state is ConnectionState.OPEN
        if is_open:
            self.restart("credentials changed")

    # --- Subscriptions ---

    def request_subscribe(self, key: InstrumentKey) -> None:
        """Subscribe key upstream now if OPEN; otherwise it is replayed on open."""
        with self._lock:
            if self._state is ConnectionState.OPEN:
                self._send_subscribe_locked(key)

    def release(self, key: InstrumentKey) -> None:
        """
        Drop upstream interest in key.

        Best effort: the venue is not notified, the key is only forgotten
        so that a later subscribe sends a fresh message.
        """
        with self._lock:
            if key in self._subscribed:
                self._subscribed.discard(key)
                logger.debug(f"ConnectionManager: Released {key}")

    def _send_subscribe_locked(self, key: InstrumentKey) -> None:
        if key in self._subscribed or self._conn is None:
            return
        msg: dict = {
            "type": "market",
            "assets_ids": [key.id],
        }
        if self._auth:
            msg["auth"] = self._auth
        try:
            self._conn.send(orjson.dumps(msg))
        except Exception as e:
            self.stats.send_errors += 1
            logger.warning(f"ConnectionManager: Subscribe send error for {key}: {e}")
            return
        self._subscribed.add(key)
        self.stats.subscribe_messages += 1
        logger.debug(f"ConnectionManager: Subscribed {key}")

    # --- Transport callbacks ---

    def on_open(self, conn: TransportConnection) -> None:
        with self._lock:
            if conn is not self._conn:
                return
            self._attempts = 0
            self._subscribed.clear()
            self._inbound_since_tick = False
            self._silent_intervals = 0
            self._set_state_locked(ConnectionState.OPEN)
            self.stats.opens += 1

            self._heartbeat_timer = self._scheduler.call_every(
                self._heartbeat_interval,
                self._heartbeat_tick,
                name="Feed-Heartbeat",
            )

            keys = list(self._active_keys())
            for key in keys:
                self._send_subscribe_locked(key)
            logger.info(f"ConnectionManager: Open, subscribed {len(self._subscribed)}/{len(keys)} keys")

    def on_message(self, conn: TransportConnection, payload: Payload) -> None:
        with self._lock:
            if conn is self._conn:
                self._inbound_since_tick = True
                self.stats.frames_received += 1
        self._on_frame(payload)

    def on_close(self, conn: TransportConnection, reason: str) -> None:
        with self._lock:
            if conn is not self._conn:
                return
            self._conn = None
            self.stats.losses += 1
            self._handle_loss_locked(reason)

    # --- State machine internals ---

    def _open_locked(self) -> None:
        self._set_state_locked(ConnectionState.CONNECTING)
        try:
            self._conn = self._transport.open(self._url, self)
        except Exception as e:
            logger.warning(f"ConnectionManager: Open failed: {e}")
            self._conn = None
            self._handle_loss_locked(f"open failed: {e}")

    def _handle_loss_locked(self, reason: str) -> None:
        self._cancel_timers_locked()
        self._subscribed.clear()

        if self._attempts < self._max_attempts:
            self._attempts += 1
            delay = self.backoff_delay(self._attempts)
            self._set_state_locked(ConnectionState.RECONNECTING)
            logger.warning(
                f"ConnectionManager: Connection lost ({reason}), reconnecting in {delay:.1f}s "
                f"({self._attempts}/{self._max_attempts})"
            )
            self._reconnect_timer = self._scheduler.call_later(
                delay,
                self._on_reconnect_timer,
                name="Feed-Reconnect",
            )
        else:
            self._set_state_locked(ConnectionState.FAILED)
            logger.error(
                f"ConnectionManager: Max reconnect attempts ({self._max_attempts}) reached. "
                f"Call connect() to retry."
            )

    def _on_reconnect_timer(self) -> None:
        with self._lock:
            if self._state is not ConnectionState.RECONNECTING:
                return
            self._reconnect_timer = None
            self._open_locked()

    def _heartbeat_tick(self) -> None:
        stale_conn = None
        with self._lock:
            if self._state is not ConnectionState.OPEN or self._conn is None:
                return

            if self._inbound_since_tick:
                self._silent_intervals = 0
            else:
                self._silent_intervals += 1
            self._inbound_since_tick = False

            if self._silent_intervals >= STALE_INTERVALS:
                self.stats.stale_detections += 1
                stale_conn = self._conn
                self._conn = None
                self._handle_loss_locked(f"no traffic for {self._silent_intervals} heartbeat intervals")
            else:
                try:
                    self._conn.send(HEARTBEAT_PROBE)
                except Exception as e:
                    self.stats.send_errors += 1
                    logger.warning(f"ConnectionManager: Heartbeat send error: {e}")

        if stale_conn is not None:
            stale_conn.close()

    def _cancel_timers_locked(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _set_state_locked(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"ConnectionManager: {self._state.name} -> {state.name}")
            self._state = state
