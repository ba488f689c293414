"""Tests for inbound frame classification."""

import orjson
import pytest

from marketfeed.classifier import classify, classify_frame
from marketfeed.types import (
    BookSnapshot,
    ControlFrame,
    InstrumentKey,
    LastTrade,
    PriceChange,
    TradeSide,
    UnrecognizedFrame,
)


class TestControlFrames:
    """Tests for non-JSON and protocol frames."""

    def test_pong(self):
        """Test PONG is a control frame."""
        assert classify_frame("PONG") == [ControlFrame(text="PONG")]

    def test_pong_bytes_lowercase(self):
        """Test control frames are recognized from bytes, case-insensitively."""
        assert classify_frame(b"pong\n") == [ControlFrame(text="PONG")]

    def test_empty_array(self):
        """Test an empty JSON array carries nothing."""
        events = classify_frame("[]")
        assert len(events) == 1
        assert isinstance(events[0], ControlFrame)

    def test_empty_frame(self):
        """Test a blank frame is unrecognized."""
        assert classify_frame("   ") == [UnrecognizedFrame(reason="empty frame")]

    def test_invalid_json(self):
        """Test malformed JSON is unrecognized, not raised."""
        assert classify_frame("{not json") == [UnrecognizedFrame(reason="invalid json")]

    def test_invalid_utf8(self):
        """Test undecodable bytes are unrecognized."""
        assert classify_frame(b"\xff\xfe") == [UnrecognizedFrame(reason="invalid utf-8")]

    def test_non_object(self):
        """Test a JSON scalar is unrecognized."""
        assert classify(42) == UnrecognizedFrame(reason="not an object")


class TestBook:
    """Tests for book snapshots."""

    def test_book_snapshot(self):
        """Test a book event yields levels addressed to its token."""
        raw = orjson.dumps({
            "event_type": "book",
            "asset_id": "T1",
            "market": "C1",
            "bids": [{"price": "0.60", "size": "10"}, {"price": "0.62", "size": "5"}],
            "asks": [{"price": "0.67", "size": "3"}, {"price": "0.65", "size": "7"}],
        })
        [event] = classify_frame(raw)

        assert isinstance(event, BookSnapshot)
        assert event.best_bid == pytest.approx(0.62)
        assert event.best_ask == pytest.approx(0.65)
        assert event.market == "C1"
        assert event.keys == (InstrumentKey.token("T1"),)

    def test_invalid_levels_dropped(self):
        """Test out-of-range and malformed levels are dropped."""
        event = classify({
            "event_type": "book",
            "asset_id": "T1",
            "bids": [{"price": "1.5", "size": "1"}, {"price": "abc", "size": "1"},
                     {"price": "0.5", "size": "-1"}, "junk", {"price": "0.4", "size": "2"}],
            "asks": "not a list",
        })
        assert isinstance(event, BookSnapshot)
        assert len(event.bids) == 1
        assert event.bids[0].price == pytest.approx(0.4)
        assert event.asks == ()
        assert event.best_ask is None

    def test_book_without_id(self):
        """Test a book with no asset or market id is unrecognized."""
        event = classify({"event_type": "book", "bids": [], "asks": []})
        assert event == UnrecognizedFrame(reason="no instrument id", event_type="book")

    def test_token_id_alias(self):
        """Test token_id is accepted in place of asset_id."""
        event = classify({"event_type": "book", "token_id": "T9", "bids": [], "asks": []})
        assert event.keys == (InstrumentKey.token("T9"),)

    def test_type_field_fallback(self):
        """Test the type field is used when event_type is absent."""
        event = classify({"type": "book", "asset_id": "T1", "bids": [], "asks": []})
        assert isinstance(event, BookSnapshot)


class TestPriceChange:
    """Tests for price change and best_bid_ask events."""

    def test_price_changes_entries(self):
        """Test each price_changes entry becomes a PriceChangeEntry."""
        event = classify({
            "event_type": "price_change",
            "market": "C1",
            "price_changes": [
                {"asset_id": "YES", "best_bid": "0.55", "best_ask": "0.57"},
                {"asset_id": "NO", "best_bid": "0.43", "best_ask": "0.45"},
            ],
        })
        assert isinstance(event, PriceChange)
        assert event.market == "C1"
        assert [e.asset_id for e in event.entries] == ["YES", "NO"]
        assert event.entries[0].best_bid == pytest.approx(0.55)

    def test_legacy_changes_field(self):
        """Test entries under "changes" inherit the top-level asset id."""
        event = classify({
            "event_type": "price_change",
            "asset_id": "T1",
            "changes": [{"best_bid": "0.30"}],
        })
        assert isinstance(event, PriceChange)
        assert event.entries[0].asset_id == "T1"
        assert event.entries[0].best_ask is None

    def test_no_usable_entries(self):
        """Test a price change with no identifiable entries is unrecognized."""
        event = classify({"event_type": "price_change", "price_changes": [{"best_bid": "0.3"}]})
        assert isinstance(event, UnrecognizedFrame)

    def test_best_bid_ask(self):
        """Test best_bid_ask is a single-entry price change."""
        event = classify({"event_type": "best_bid_ask", "asset_id": "T1", "best_bid": "0.2", "best_ask": "0.25"})
        assert isinstance(event, PriceChange)
        assert len(event.entries) == 1
        assert event.entries[0].best_ask == pytest.approx(0.25)


class TestLastTrade:
    """Tests for last trade prints."""

    def test_sell(self):
        """Test a SELL trade is classified with its side."""
        event = classify({"event_type": "last_trade_price", "asset_id": "T1", "price": "0.70", "side": "SELL"})
        assert event == LastTrade(asset_id="T1", market=None, price=0.70, side=TradeSide.SELL)

    def test_side_case_insensitive(self):
        """Test side parsing ignores case."""
        event = classify({"event_type": "last_trade_price", "asset_id": "T1", "price": 0.3, "side": "buy"})
        assert event.side is TradeSide.BUY

    def test_unknown_side(self):
        """Test a trade with an unknown side is unrecognized."""
        event = classify({"event_type": "last_trade_price", "asset_id": "T1", "price": "0.5", "side": "HOLD"})
        assert event == UnrecognizedFrame(reason="invalid trade side", event_type="last_trade_price")

    def test_invalid_price(self):
        """Test a trade price outside [0, 1] is unrecognized."""
        event = classify({"event_type": "last_trade_price", "asset_id": "T1", "price": "2", "side": "BUY"})
        assert isinstance(event, UnrecognizedFrame)


class TestUnsupported:
    """Tests for events outside the handled set."""

    def test_unsupported_type(self):
        """Test known-id events of other types are unsupported."""
        event = classify({"event_type": "tick_size_change", "asset_id": "T1"})
        assert event.reason == "unsupported event type"
        assert event.event_type == "tick_size_change"

    def test_no_id(self):
        """Test events without any instrument id are flagged as such."""
        event = classify({"event_type": "whatever"})
        assert event.reason == "no instrument id"

    def test_array_classified_per_element(self):
        """Test array frames yield one event per element."""
        events = classify_frame([
            {"event_type": "book", "asset_id": "T1", "bids": [], "asks": []},
            {"event_type": "bogus"},
        ])
        assert isinstance(events[0], BookSnapshot)
        assert isinstance(events[1], UnrecognizedFrame)
