"""Tests for price normalization."""

import pytest

from marketfeed.normalizer import book_updates, derive_pair, from_lookup, price_updates
from marketfeed.types import (
    BookSnapshot,
    ControlFrame,
    InstrumentKey,
    LastTrade,
    OrderBookLevel,
    PriceChange,
    PriceChangeEntry,
    PricePair,
    TradeSide,
)


T1 = InstrumentKey.token("T1")
C1 = InstrumentKey.condition("C1")


def book(bids=(), asks=(), market=None):
    return BookSnapshot(
        asset_id="T1",
        market=market,
        bids=tuple(OrderBookLevel(price=p, size=1.0) for p in bids),
        asks=tuple(OrderBookLevel(price=p, size=1.0) for p in asks),
    )


class TestDerivePair:
    """Tests for completing one-sided prices."""

    def test_yes_only(self):
        """Test no is derived as 1 - yes."""
        pair = derive_pair(0.3, None)
        assert pair.no == pytest.approx(0.7)
        assert pair.total == pytest.approx(1.0)

    def test_no_only(self):
        """Test yes is derived as 1 - no."""
        pair = derive_pair(None, 0.25)
        assert pair.yes == pytest.approx(0.75)

    def test_both_known_kept(self):
        """Test an observed pair is passed through unchanged."""
        assert derive_pair(0.62, 0.35) == PricePair(yes=0.62, no=0.35)

    def test_neither(self):
        """Test nothing is derived from nothing."""
        assert derive_pair(None, None) is None

    @pytest.mark.parametrize("price", [0.0, 0.01, 0.5, 0.99, 1.0])
    def test_single_side_sums_to_one(self, price):
        """Test every single-sided derivation sums to one."""
        assert derive_pair(price, None).total == pytest.approx(1.0)
        assert derive_pair(None, price).total == pytest.approx(1.0)


class TestPriceUpdates:
    """Tests for event -> PriceUpdate mapping."""

    def test_book_uses_best_bid_and_ask(self):
        """Test yes = best bid, no = 1 - best ask."""
        [update] = price_updates(book(bids=[0.60, 0.62], asks=[0.67, 0.65]), at=123)
        assert update.key == T1
        assert update.yes == pytest.approx(0.62)
        assert update.no == pytest.approx(0.35)
        assert update.at == 123

    def test_book_bids_only(self):
        """Test a one-sided book completes the other side."""
        [update] = price_updates(book(bids=[0.4]), at=1)
        assert update.yes == pytest.approx(0.4)
        assert update.no == pytest.approx(0.6)

    def test_book_asks_only(self):
        """Test an ask-only book yields yes from the ask complement."""
        [update] = price_updates(book(asks=[0.7]), at=1)
        assert update.no == pytest.approx(0.3)
        assert update.yes == pytest.approx(0.7)

    def test_empty_book(self):
        """Test an empty book yields no price update."""
        assert price_updates(book(), at=1) == []

    def test_token_data_stays_on_token_key(self):
        """Test a book carrying a market id only updates its token key."""
        updates = price_updates(book(bids=[0.5], asks=[0.52], market="C1"), at=1)
        assert [u.key for u in updates] == [T1]

    def test_two_outcome_price_change(self):
        """Test both outcomes of one market never reach the condition key."""
        event = PriceChange(
            market="C1",
            entries=(
                PriceChangeEntry(asset_id="YES", best_bid=0.62, best_ask=0.65),
                PriceChangeEntry(asset_id="NO", best_bid=0.35, best_ask=0.38),
            ),
        )
        updates = price_updates(event, at=1)

        assert [u.key for u in updates] == [InstrumentKey.token("YES"), InstrumentKey.token("NO")]
        assert updates[0].yes == pytest.approx(0.62)
        assert updates[1].yes == pytest.approx(0.35)

    def test_market_only_event_uses_condition_key(self):
        """Test an event naming no token is addressed to the condition key."""
        event = PriceChange(
            market="C1",
            entries=(PriceChangeEntry(asset_id="", best_bid=0.4, best_ask=0.45),),
        )
        [update] = price_updates(event, at=1)
        assert update.key == C1

    def test_price_change_entries(self):
        """Test each price change entry is normalized for its asset."""
        event = PriceChange(
            market=None,
            entries=(
                PriceChangeEntry(asset_id="A", best_bid=0.2, best_ask=None),
                PriceChangeEntry(asset_id="B", best_bid=None, best_ask=None),
                PriceChangeEntry(asset_id="C", best_bid=0.5, best_ask=0.55),
            ),
        )
        updates = price_updates(event, at=1)
        assert [u.key.id for u in updates] == ["A", "C"]
        assert updates[0].no == pytest.approx(0.8)
        assert updates[1].no == pytest.approx(0.45)

    def test_trade_buy(self):
        """Test BUY sets yes to the trade price."""
        [update] = price_updates(LastTrade(asset_id="T1", market=None, price=0.64, side=TradeSide.BUY), at=1)
        assert update.yes == pytest.approx(0.64)
        assert update.no == pytest.approx(0.36)

    def test_trade_sell(self):
        """Test SELL sets no to the trade price."""
        [update] = price_updates(LastTrade(asset_id="T1", market=None, price=0.70, side=TradeSide.SELL), at=1)
        assert update.yes == pytest.approx(0.30)
        assert update.no == pytest.approx(0.70)

    def test_control_frame_ignored(self):
        """Test non market-data events produce nothing."""
        assert price_updates(ControlFrame(text="PONG")) == []

    def test_default_timestamp(self):
        """Test wall clock time is used when at is omitted."""
        [update] = price_updates(book(bids=[0.5]))
        assert update.at > 0


class TestBookUpdates:
    """Tests for order book updates."""

    def test_levels_sorted_best_first(self):
        """Test bids descend and asks ascend."""
        [update] = book_updates(book(bids=[0.40, 0.45, 0.42], asks=[0.60, 0.55, 0.58]), at=1)
        assert [l.price for l in update.bids] == [0.45, 0.42, 0.40]
        assert [l.price for l in update.asks] == [0.55, 0.58, 0.60]
        assert update.best_bid.price == 0.45
        assert update.best_ask.price == 0.55

    def test_only_snapshots(self):
        """Test trades and price changes never produce book updates."""
        trade = LastTrade(asset_id="T1", market=None, price=0.5, side=TradeSide.BUY)
        assert book_updates(trade) == []

    def test_empty_book(self):
        """Test an empty snapshot produces no book update."""
        assert book_updates(book(), at=1) == []


class TestFromLookup:
    """Tests for REST lookup wrapping."""

    def test_from_lookup(self):
        """Test a lookup pair becomes a PriceUpdate for the key."""
        update = from_lookup(C1, PricePair(yes=0.4, no=0.6), at=99)
        assert update.key == C1
        assert update.pair == PricePair(yes=0.4, no=0.6)
        assert update.at == 99
