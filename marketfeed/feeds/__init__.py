"""
Upstream streaming for the feed multiplexer.

- Transport / TransportConnection / TransportListener: streaming transport interface
- WebSocketTransport: websocket-client implementation
- ConnectionManager: connect / heartbeat / reconnect state machine
"""

from .transport import (
    Payload,
    Transport,
    TransportConnection,
    TransportListener,
    WebSocketConnection,
    WebSocketTransport,
)
from .connection import (
    ConnectionManager,
    ConnectionStats,
    HEARTBEAT_PROBE,
    PM_MARKET_WS_URL,
    STALE_INTERVALS,
)

__all__ = [
    "Payload",
    "Transport",
    "TransportConnection",
    "TransportListener",
    "WebSocketConnection",
    "WebSocketTransport",
    "ConnectionManager",
    "ConnectionStats",
    "HEARTBEAT_PROBE",
    "PM_MARKET_WS_URL",
    "STALE_INTERVALS",
]
