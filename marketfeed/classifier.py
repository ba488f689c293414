"""
Inbound frame classification.

Maps raw market-channel frames to the closed set of FeedEvent variants.
All field probing and validation happens here; downstream code only sees
typed events.

Venue shapes handled:
- "PONG" text: heartbeat acknowledgment
- event_type "book": full snapshot with bids/asks arrays
- event_type "price_change": price_changes[] with best_bid/best_ask per asset
- event_type "best_bid_ask": single-asset top-of-book update
- event_type "last_trade_price": trade print with price and side
"""

import logging
from typing import Any, Optional, Union

import orjson

from .types import (
    BookSnapshot,
    ControlFrame,
    FeedEvent,
    LastTrade,
    OrderBookLevel,
    PriceChange,
    PriceChangeEntry,
    TradeSide,
    UnrecognizedFrame,
    parse_price,
    parse_size,
)

logger = logging.getLogger(__name__)

CONTROL_FRAMES = frozenset({"PONG", "PING"})

RawFrame = Union[bytes, bytearray, str, dict, list]


def classify_frame(raw: RawFrame) -> list[FeedEvent]:
    """
    Classify one transport frame.

    A frame may hold a JSON array of events; each element is classified
    on its own. Always returns at least one event.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return [UnrecognizedFrame(reason="invalid utf-8")]

    if isinstance(raw, str):
        text = raw.strip()
        if text.upper() in CONTROL_FRAMES:
            return [ControlFrame(text=text.upper())]
        if not text:
            return [UnrecognizedFrame(reason="empty frame")]
        try:
            raw = orjson.loads(text)
        except orjson.JSONDecodeError:
            return [UnrecognizedFrame(reason="invalid json")]

    if isinstance(raw, list):
        if not raw:
            return [ControlFrame(text="[]")]
        return [classify(item) for item in raw]

    return [classify(raw)]


def classify(msg: Any) -> FeedEvent:
    """Classify a single decoded event object."""
    if not isinstance(msg, dict):
        return UnrecognizedFrame(reason="not an object")

    event_type = msg.get("event_type") or msg.get("type")

    if event_type == "book":
        return _classify_book(msg)
    if event_type == "price_change":
        return _classify_price_change(msg)
    if event_type == "best_bid_ask":
        return _classify_best_bid_ask(msg)
    if event_type == "last_trade_price":
        return _classify_last_trade(msg)

    if _asset_id(msg) is None and not msg.get("market"):
        return UnrecognizedFrame(reason="no instrument id", event_type=event_type)
    return UnrecognizedFrame(reason="unsupported event type", event_type=event_type)


def _asset_id(msg: dict) -> Optional[str]:
    asset_id = msg.get("asset_id") or msg.get("token_id")
    if asset_id is None:
        return None
    return str(asset_id)


def _market(msg: dict) -> Optional[str]:
    market = msg.get("market")
    return str(market) if market else None


def _parse_levels(raw_levels: Any) -> tuple[OrderBookLevel, ...]:
    """Parse [{price, size}, ...], dropping invalid levels."""
    if not isinstance(raw_levels, list):
        return ()
    levels = []
    for raw in raw_levels:
        if not isinstance(raw, dict):
            continue
        price = parse_price(raw.get("price"))
        size = parse_size(raw.get("size"))
        if price is None or size is None:
            continue
        levels.append(OrderBookLevel(price=price, size=size))
    return tuple(levels)


def _classify_book(msg: dict) -> FeedEvent:
    asset_id = _asset_id(msg)
    market = _market(msg)
    if asset_id is None and market is None:
        return UnrecognizedFrame(reason="no instrument id", event_type="book")

    return BookSnapshot(
        asset_id=asset_id or "",
        market=market,
        bids=_parse_levels(msg.get("bids")),
        asks=_parse_levels(msg.get("asks")),
    )


def _classify_price_change(msg: dict) -> FeedEvent:
    market = _market(msg)
    default_asset = _asset_id(msg)
    raw_changes = msg.get("price_changes")
    if raw_changes is None:
        raw_changes = msg.get("changes", [])
    if not isinstance(raw_changes, list):
        return UnrecognizedFrame(reason="malformed price_changes", event_type="price_change")

    entries = []
    for change in raw_changes:
        if not isinstance(change, dict):
            continue
        asset_id = _asset_id(change) or default_asset
        if asset_id is None and market is None:
            continue
        entries.append(PriceChangeEntry(
            asset_id=asset_id or "",
            best_bid=parse_price(change.get("best_bid")),
            best_ask=parse_price(change.get("best_ask")),
        ))

    if not entries:
        return UnrecognizedFrame(reason="no instrument id", event_type="price_change")
    return PriceChange(market=market, entries=tuple(entries))


def _classify_best_bid_ask(msg: dict) -> FeedEvent:
    asset_id = _asset_id(msg)
    market = _market(msg)
    if asset_id is None and market is None:
        return UnrecognizedFrame(reason="no instrument id", event_type="best_bid_ask")

    entry = PriceChangeEntry(
        asset_id=asset_id or "",
        best_bid=parse_price(msg.get("best_bid")),
        best_ask=parse_price(msg.get("best_ask")),
    )
    return PriceChange(market=market, entries=(entry,))


def _classify_last_trade(msg: dict) -> FeedEvent:
    asset_id = _asset_id(msg)
    market = _market(msg)
    if asset_id is None and market is None:
        return UnrecognizedFrame(reason="no instrument id", event_type="last_trade_price")

    price = parse_price(msg.get("price"))
    if price is None:
        return UnrecognizedFrame(reason="invalid trade price", event_type="last_trade_price")

    raw_side = str(msg.get("side", "")).upper()
    if raw_side == "BUY":
        side = TradeSide.BUY
    elif raw_side == "SELL":
        side = TradeSide.SELL
    else:
        return UnrecognizedFrame(reason="invalid trade side", event_type="last_trade_price")

    return LastTrade(asset_id=asset_id or "", market=market, price=price, side=side)
