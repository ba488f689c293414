"""
Price normalization.

Turns classified events (and REST lookups) into PriceUpdate and
OrderBookUpdate objects for dispatch.

Derivation rules:
- Book / price change: yes = best bid, no = 1 - best ask
- Last trade BUY: yes = trade price; SELL: no = trade price
- Whenever only one side is known, the other is its complement, so
  subscribers never see a half-populated update.
- Token data is addressed to the token key only (see instrument_keys).
"""

from typing import Optional

from .types import (
    BookSnapshot,
    FeedEvent,
    InstrumentKey,
    LastTrade,
    OrderBookUpdate,
    PriceChange,
    PricePair,
    PriceUpdate,
    TradeSide,
    complement,
    instrument_keys,
    wall_ms,
)


def derive_pair(yes: Optional[float], no: Optional[float]) -> Optional[PricePair]:
    """
    Complete a partially known price pair.

    Returns None when neither side is known.
    """
    if yes is None and no is None:
        return None
    if no is None:
        no = complement(yes)
    elif yes is None:
        yes = complement(no)
    return PricePair(yes=yes, no=no)


def _from_top_of_book(best_bid: Optional[float], best_ask: Optional[float]) -> Optional[PricePair]:
    no = complement(best_ask) if best_ask is not None else None
    return derive_pair(best_bid, no)


def price_updates(event: FeedEvent, at: Optional[int] = None) -> list[PriceUpdate]:
    """
    Price updates carried by an event, one per addressed key.

    Non market-data events yield an empty list.
    """
    ts = wall_ms() if at is None else at
    updates: list[PriceUpdate] = []

    if isinstance(event, BookSnapshot):
        pair = _from_top_of_book(event.best_bid, event.best_ask)
        if pair is not None:
            updates.extend(_fan_out(event.keys, pair, ts))

    elif isinstance(event, PriceChange):
        for entry in event.entries:
            pair = _from_top_of_book(entry.best_bid, entry.best_ask)
            if pair is not None:
                keys = instrument_keys(entry.asset_id, event.market)
                updates.extend(_fan_out(keys, pair, ts))

    elif isinstance(event, LastTrade):
        if event.side is TradeSide.BUY:
            pair = derive_pair(event.price, None)
        else:
            pair = derive_pair(None, event.price)
        updates.extend(_fan_out(event.keys, pair, ts))

    return updates


def book_updates(event: FeedEvent, at: Optional[int] = None) -> list[OrderBookUpdate]:
    """Order book levels from a snapshot, best level first on each side."""
    if not isinstance(event, BookSnapshot):
        return []
    if not event.bids and not event.asks:
        return []

    ts = wall_ms() if at is None else at
    bids = tuple(sorted(event.bids, key=lambda level: level.price, reverse=True))
    asks = tuple(sorted(event.asks, key=lambda level: level.price))
    return [OrderBookUpdate(key=key, bids=bids, asks=asks, at=ts) for key in event.keys]


def from_lookup(key: InstrumentKey, pair: PricePair, at: Optional[int] = None) -> PriceUpdate:
    """Wrap a REST lookup result as a PriceUpdate for key."""
    ts = wall_ms() if at is None else at
    return PriceUpdate(key=key, yes=pair.yes, no=pair.no, at=ts)


def _fan_out(keys: tuple[InstrumentKey, ...], pair: PricePair, at: int) -> list[PriceUpdate]:
    return [PriceUpdate(key=key, yes=pair.yes, no=pair.no, at=at) for key in keys]
