"""
Feed multiplexer types.

Re-exports every type so callers can import from here or from the
specific submodules.

Example:
    from marketfeed.types import InstrumentKey, PriceUpdate
    from marketfeed.types.events import BookSnapshot
"""

# Core
from .core import (
    ConnectionState,
    TradeSide,
    InstrumentKey,
)

# Utility functions
from .utils import (
    wall_ms,
    parse_price,
    parse_size,
    complement,
)

# Market data
from .market_data import (
    OrderBookLevel,
    PricePair,
    PriceUpdate,
    OrderBookUpdate,
)

# Classified events
from .events import (
    BookSnapshot,
    PriceChangeEntry,
    PriceChange,
    LastTrade,
    ControlFrame,
    UnrecognizedFrame,
    FeedEvent,
    instrument_keys,
)

__all__ = [
    # Core
    "ConnectionState",
    "TradeSide",
    "InstrumentKey",
    # Utilities
    "wall_ms",
    "parse_price",
    "parse_size",
    "complement",
    # Market data
    "OrderBookLevel",
    "PricePair",
    "PriceUpdate",
    "OrderBookUpdate",
    # Events
    "BookSnapshot",
    "PriceChangeEntry",
    "PriceChange",
    "LastTrade",
    "ControlFrame",
    "UnrecognizedFrame",
    "FeedEvent",
    "instrument_keys",
]
