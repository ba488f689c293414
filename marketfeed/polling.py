"""
REST polling fallback.

One repeating timer per price-subscribed key. Each tick asks the price
lookup for the key and feeds a successful result into the same
dispatch/enqueue path as stream updates, so subscribers keep receiving
prices while the stream is down or quiet.

Failures are skipped silently: the next tick retries on its own.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from functools import partial
from typing import Callable, Optional

from .timers import Scheduler, TimerHandle
from .types import InstrumentKey, PricePair

logger = logging.getLogger(__name__)


class PriceLookup(ABC):
    """REST price source used by the polling fallback."""

    @abstractmethod
    def get_price(self, key: InstrumentKey) -> Optional[PricePair]:
        """Current price pair for key, or None if unavailable."""


class PollOutcome(Enum):
    """Result of a single polling tick."""
    DELIVERED = auto()  # Price forwarded to dispatch
    EMPTY = auto()      # Lookup returned nothing
    FAILED = auto()     # Lookup raised
    DISCARDED = auto()  # Polling stopped while the lookup was in flight


@dataclass(slots=True)
class PollingStats:
    """Polling counters across all keys."""
    ticks: int = 0
    delivered: int = 0
    empty: int = 0
    failed: int = 0
    discarded: int = 0


class PollingFallback:
    """
    Per-instrument polling timers.

    start() is idempotent per key. stop() is synchronous: no new tick
    begins after it returns and a lookup already in flight is discarded.

    Example:
        polling = PollingFallback(lookup, scheduler, on_price=service.publish_polled)
        polling.start(InstrumentKey.token("123"))
        ...
        polling.stop(InstrumentKey.token("123"))
    """

    def __init__(
        self,
        lookup: PriceLookup,
        scheduler: Scheduler,
        on_price: Callable[[InstrumentKey, PricePair], None],
        interval_s: float = 3.0,
    ):
        self._lookup = lookup
        self._scheduler = scheduler
        self._on_price = on_price
        self._interval = interval_s

        self._timers: dict[InstrumentKey, TimerHandle] = {}
        self._lock = threading.Lock()
        self.stats = PollingStats()

    def start(self, key: InstrumentKey) -> None:
        """Start polling key (poll immediately, then every interval)."""
        with self._lock:
            if key in self._timers:
                return
            self._timers[key] = self._scheduler.call_every(
                self._interval,
                partial(self.tick, key),
                name=f"Poll-{key.id[:12]}",
                run_immediately=True,
            )
        logger.debug(f"PollingFallback: Started {key}")

    def stop(self, key: InstrumentKey) -> None:
        """Stop polling key."""
        with self._lock:
            timer = self._timers.pop(key, None)
            if timer is None:
                return
            timer.cancel()
        logger.debug(f"PollingFallback: Stopped {key}")

    def stop_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            for timer in timers:
                timer.cancel()
        if timers:
            logger.info(f"PollingFallback: Stopped {len(timers)} pollers")

    def is_polling(self, key: InstrumentKey) -> bool:
        with self._lock:
            return key in self._timers

    def active_keys(self) -> list[InstrumentKey]:
        with self._lock:
            return list(self._timers.keys())

    def tick(self, key: InstrumentKey) -> PollOutcome:
        """Single polling iteration for key."""
        with self._lock:
            if key not in self._timers:
                return PollOutcome.DISCARDED
            self.stats.ticks += 1

        try:
            pair = self._lookup.get_price(key)
        except Exception as e:
            with self._lock:
                self.stats.failed += 1
            logger.debug(f"PollingFallback: Lookup failed for {key}: {e}")
            return PollOutcome.FAILED

        if pair is None:
            with self._lock:
                self.stats.empty += 1
            return PollOutcome.EMPTY

        with self._lock:
            if key not in self._timers:
                self.stats.discarded += 1
                return PollOutcome.DISCARDED
            self.stats.delivered += 1

        self._on_price(key, pair)
        return PollOutcome.DELIVERED
