"""
Market Feed - Real-time Polymarket price feed multiplexer

Shares one upstream market-channel websocket across many in-process
subscribers, keeps them fed by REST polling when the stream is quiet,
and persists the latest price per instrument in the background.
"""

__version__ = "0.1.0"

# Core types
from .types import (
    ConnectionState,
    InstrumentKey,
    OrderBookLevel,
    OrderBookUpdate,
    PricePair,
    PriceUpdate,
)

# Errors
from .errors import MarketFeedError, PersistenceError, PriceLookupError

# Config
from .config import FeedConfig

# Service
from .registry import DispatchResult, SubscriptionHandle
from .persistence import FlushReport, UpsertResult
from .service import FeedMetrics, MarketFeedService

__all__ = [
    "__version__",
    # Types
    "ConnectionState",
    "InstrumentKey",
    "OrderBookLevel",
    "OrderBookUpdate",
    "PricePair",
    "PriceUpdate",
    # Errors
    "MarketFeedError",
    "PersistenceError",
    "PriceLookupError",
    # Config
    "FeedConfig",
    # Service
    "DispatchResult",
    "SubscriptionHandle",
    "FlushReport",
    "UpsertResult",
    "FeedMetrics",
    "MarketFeedService",
]
