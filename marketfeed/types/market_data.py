"""
Market data types delivered to subscribers.

Prices are decimal probabilities in [0, 1], sizes in shares.
"""

from dataclasses import dataclass
from typing import Optional

from .core import InstrumentKey


@dataclass(frozen=True, slots=True)
class OrderBookLevel:
    """Single price level of an order book."""
    price: float
    size: float


@dataclass(frozen=True, slots=True)
class PricePair:
    """Complementary (yes, no) prices as returned by a REST lookup."""
    yes: float
    no: float

    @property
    def total(self) -> float:
        return self.yes + self.no


@dataclass(frozen=True, slots=True)
class PriceUpdate:
    """
    Normalized price pair for one instrument key.

    Both sides are always populated.
    """
    key: InstrumentKey
    yes: float
    no: float
    at: int  # Wall clock ms

    @property
    def pair(self) -> PricePair:
        return PricePair(yes=self.yes, no=self.no)


@dataclass(frozen=True, slots=True)
class OrderBookUpdate:
    """
    Order book levels for one instrument key.

    Bids are sorted best (highest) first, asks best (lowest) first.
    """
    key: InstrumentKey
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]
    at: int

    @property
    def best_bid(self) -> Optional[OrderBookLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[OrderBookLevel]:
        return self.asks[0] if self.asks else None
