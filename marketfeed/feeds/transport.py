"""
Streaming transport for the market channel.

Uses websocket-client WebSocketApp for event-driven WebSocket handling.
Each opened connection runs on its own daemon thread. Reconnection is not
handled here: the ConnectionManager owns the lifecycle and simply opens a
new connection.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, Union

import websocket

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]


class TransportConnection(ABC):
    """One upstream socket."""

    @abstractmethod
    def send(self, payload: Payload) -> None:
        """Send a frame. Raises on transport failure."""

    @abstractmethod
    def close(self) -> None:
        """Release the socket. Safe to call more than once."""


class TransportListener(ABC):
    """Receives events for connections it opened."""

    @abstractmethod
    def on_open(self, conn: TransportConnection) -> None:
        pass

    @abstractmethod
    def on_message(self, conn: TransportConnection, payload: Payload) -> None:
        pass

    @abstractmethod
    def on_close(self, conn: TransportConnection, reason: str) -> None:
        """Called exactly once per connection, including failed opens."""


class Transport(ABC):
    """Factory for upstream connections."""

    @abstractmethod
    def open(self, url: str, listener: TransportListener) -> TransportConnection:
        """Start opening a connection. Must not block on the network."""


class WebSocketConnection(TransportConnection):
    """
    Connection backed by a WebSocketApp running on a daemon thread.

    Callbacks are delivered on that thread.
    """

    def __init__(
        self,
        url: str,
        listener: TransportListener,
        name: str = "MarketWS",
        ping_interval: int = 0,
        ping_timeout: Optional[int] = None,
    ):
        self._url = url
        self._listener = listener
        self._name = name
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout

        self._ws: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._close_reported = False
        self._closing = False

    def start(self) -> "WebSocketConnection":
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self._name}-thread",
            daemon=True,
        )
        self._thread.start()
        return self

    def _run(self) -> None:
        """Create WebSocketApp and run it until the socket closes."""
        logger.info(f"{self._name}: Connecting to {self._url[:60]}...")

        self._ws = websocket.WebSocketApp(
            self._url,
            on_open=self._ws_on_open,
            on_message=self._ws_on_message,
            on_error=self._ws_on_error,
            on_close=self._ws_on_close,
        )

        try:
            # run_forever blocks until connection closes
            self._ws.run_forever(
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                skip_utf8_validation=True,
            )
        except Exception as e:
            logger.warning(f"{self._name}: Run loop error: {e}")
        finally:
            self._report_close("run loop exited")

    def _ws_on_open(self, ws) -> None:
        logger.info(f"{self._name}: Connected")
        self._listener.on_open(self)

    def _ws_on_message(self, ws, message) -> None:
        self._listener.on_message(self, message)

    def _ws_on_error(self, ws, error) -> None:
        if not self._closing:
            logger.warning(f"{self._name}: WebSocket error: {error}")

    def _ws_on_close(self, ws, close_status_code, close_msg) -> None:
        self._report_close(f"closed (code={close_status_code})")

    def _report_close(self, reason: str) -> None:
        with self._lock:
            if self._close_reported:
                return
            self._close_reported = True
        if not self._closing:
            logger.info(f"{self._name}: Connection {reason}")
        self._listener.on_close(self, reason)

    def send(self, payload: Payload) -> None:
        if self._ws is None:
            raise ConnectionError(f"{self._name}: Not connected")
        self._ws.send(payload)

    def close(self) -> None:
        self._closing = True
        if self._ws:
            try:
                self._ws.close()
            except Exception as e:
                logger.debug(f"{self._name}: Close error: {e}")


class WebSocketTransport(Transport):
    """Opens WebSocketConnections."""

    def __init__(self, name: str = "MarketWS", ping_interval: int = 0, ping_timeout: Optional[int] = None):
        self._name = name
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout

    def open(self, url: str, listener: TransportListener) -> TransportConnection:
        conn = WebSocketConnection(
            url,
            listener,
            name=self._name,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_timeout,
        )
        return conn.start()
