"""
Classified inbound feed events.

The classifier maps every inbound frame to exactly one of these variants.
Only BookSnapshot, PriceChange and LastTrade carry market data.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .core import InstrumentKey, TradeSide
from .market_data import OrderBookLevel


def instrument_keys(asset_id: Optional[str], market: Optional[str]) -> tuple[InstrumentKey, ...]:
    """
    Keys an observation for this asset/market pair is delivered to.

    A market frame carries one observation per outcome token, so token
    data only reaches the token key. The condition key is addressed only
    when no token is named; condition subscribers otherwise get the
    Yes/Up outcome price from the REST lookup.
    """
    if asset_id:
        return (InstrumentKey.token(asset_id),)
    if market:
        return (InstrumentKey.condition(market),)
    return ()


@dataclass(frozen=True, slots=True)
class BookSnapshot:
    """Full order book snapshot for one outcome token."""
    asset_id: str
    market: Optional[str]
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]

    @property
    def best_bid(self) -> Optional[float]:
        """Highest bid price, regardless of venue array ordering."""
        if not self.bids:
            return None
        return max(level.price for level in self.bids)

    @property
    def best_ask(self) -> Optional[float]:
        """Lowest ask price, regardless of venue array ordering."""
        if not self.asks:
            return None
        return min(level.price for level in self.asks)

    @property
    def keys(self) -> tuple[InstrumentKey, ...]:
        return instrument_keys(self.asset_id, self.market)


@dataclass(frozen=True, slots=True)
class PriceChangeEntry:
    """Top-of-book delta for one asset inside a price change event."""
    asset_id: str
    best_bid: Optional[float]
    best_ask: Optional[float]


@dataclass(frozen=True, slots=True)
class PriceChange:
    """Incremental price change, possibly covering several assets."""
    market: Optional[str]
    entries: tuple[PriceChangeEntry, ...]


@dataclass(frozen=True, slots=True)
class LastTrade:
    """Last trade print."""
    asset_id: str
    market: Optional[str]
    price: float
    side: TradeSide

    @property
    def keys(self) -> tuple[InstrumentKey, ...]:
        return instrument_keys(self.asset_id, self.market)


@dataclass(frozen=True, slots=True)
class ControlFrame:
    """Protocol-level frame with no market data (e.g. PONG)."""
    text: str


@dataclass(frozen=True, slots=True)
class UnrecognizedFrame:
    """Frame that could not be classified."""
    reason: str
    event_type: Optional[str] = None


FeedEvent = Union[BookSnapshot, PriceChange, LastTrade, ControlFrame, UnrecognizedFrame]
