"""Shared fakes: deterministic scheduler, in-memory transport, lookup and store."""

import itertools
from typing import Callable, Optional

import orjson
import pytest

from marketfeed.config import FeedConfig
from marketfeed.errors import PersistenceError, PriceLookupError
from marketfeed.feeds import Transport, TransportConnection, TransportListener
from marketfeed.persistence import PriceRow, UpsertStore
from marketfeed.polling import PriceLookup
from marketfeed.service import MarketFeedService
from marketfeed.timers import Scheduler, TimerHandle
from marketfeed.types import InstrumentKey, PricePair


class FakeTimer(TimerHandle):
    def __init__(self, due: float, interval: Optional[float], fn: Callable[[], None], name: str, seq: int):
        self.due = due
        self.interval = interval
        self.fn = fn
        self.name = name
        self.seq = seq
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FakeScheduler(Scheduler):
    """Timers fire only when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []
        self._seq = itertools.count()

    def monotonic(self) -> float:
        return self.now

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TimerHandle:
        timer = FakeTimer(self.now + max(0.0, delay), None, fn, name, next(self._seq))
        self.timers.append(timer)
        return timer

    def call_every(
        self,
        interval: float,
        fn: Callable[[], None],
        name: str = "",
        run_immediately: bool = False,
    ) -> TimerHandle:
        due = self.now if run_immediately else self.now + interval
        timer = FakeTimer(due, interval, fn, name, next(self._seq))
        self.timers.append(timer)
        return timer

    def pending(self, name: Optional[str] = None) -> list[FakeTimer]:
        return [
            t for t in self.timers
            if not t.cancelled and (name is None or t.name == name)
        ]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in due order."""
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self.now = timer.due
            if timer.interval is None:
                timer.cancel()
            else:
                timer.due += timer.interval
            timer.fn()
        self.now = target
        self.timers = [t for t in self.timers if not t.cancelled]


class FakeConnection(TransportConnection):
    """Records sends; the test drives open/message/close."""

    def __init__(self, url: str, listener: TransportListener):
        self.url = url
        self.listener = listener
        self.sent: list = []
        self.closed = False
        self.fail_sends = False

    def send(self, payload) -> None:
        if self.fail_sends:
            raise ConnectionError("send failed")
        self.sent.append(payload)

    def close(self) -> None:
        self.closed = True

    def fire_open(self) -> None:
        self.listener.on_open(self)

    def fire_message(self, payload) -> None:
        if isinstance(payload, (dict, list)):
            payload = orjson.dumps(payload)
        self.listener.on_message(self, payload)

    def fire_close(self, reason: str = "closed") -> None:
        self.listener.on_close(self, reason)

    def subscribe_messages(self) -> list[dict]:
        return [orjson.loads(p) for p in self.sent if p != "PING"]

    def subscribed_ids(self) -> list[str]:
        return [msg["assets_ids"][0] for msg in self.subscribe_messages()]

    @property
    def pings(self) -> int:
        return sum(1 for p in self.sent if p == "PING")


class FakeTransport(Transport):
    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.fail_opens = 0

    def open(self, url: str, listener: TransportListener) -> TransportConnection:
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise ConnectionError("open failed")
        conn = FakeConnection(url, listener)
        self.connections.append(conn)
        return conn

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


class FakeLookup(PriceLookup):
    def __init__(self):
        self.prices: dict[InstrumentKey, PricePair] = {}
        self.failing: set[InstrumentKey] = set()
        self.calls: list[InstrumentKey] = []
        self.on_call: Optional[Callable[[InstrumentKey], None]] = None

    def get_price(self, key: InstrumentKey) -> Optional[PricePair]:
        self.calls.append(key)
        if self.on_call is not None:
            self.on_call(key)
        if key in self.failing:
            raise PriceLookupError(f"lookup failed for {key}")
        return self.prices.get(key)


class FakeStore(UpsertStore):
    def __init__(self):
        self.rows: list[PriceRow] = []
        self.failing_ids: set[str] = set()
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def upsert(self, row: PriceRow) -> None:
        if row.instrument_id in self.failing_ids:
            raise PersistenceError(f"rejected {row.instrument_id}")
        self.rows.append(row)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def lookup():
    return FakeLookup()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def config():
    return FeedConfig()


@pytest.fixture
def service(config, transport, lookup, store, scheduler):
    return MarketFeedService(
        config,
        transport=transport,
        price_lookup=lookup,
        store=store,
        scheduler=scheduler,
    )
