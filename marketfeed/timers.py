"""
Timer scheduling for heartbeats, reconnect backoff, polling and flushing.

Every timer in the feed goes through a Scheduler so that tests can drive
time deterministically. ThreadScheduler is the production implementation:
each timer is a daemon thread sleeping on Event.wait(), which allows
immediate cancellation.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    """Handle to a scheduled one-shot or repeating timer."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the timer. No new run starts after this returns."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """True once cancel() has been called or a one-shot has fired."""


class Scheduler(ABC):
    """Creates timers and provides the monotonic clock they run on."""

    @abstractmethod
    def monotonic(self) -> float:
        """Current monotonic time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TimerHandle:
        """Run fn once after delay seconds."""

    @abstractmethod
    def call_every(
        self,
        interval: float,
        fn: Callable[[], None],
        name: str = "",
        run_immediately: bool = False,
    ) -> TimerHandle:
        """Run fn every interval seconds until cancelled."""


class _ThreadTimer(TimerHandle):
    """
    Timer backed by a daemon thread.

    The run loop keeps a fixed schedule (next run = previous start +
    interval) and survives exceptions raised by fn.
    """

    def __init__(
        self,
        fn: Callable[[], None],
        delay: float,
        interval: Optional[float],
        name: str,
    ):
        self._fn = fn
        self._delay = delay
        self._interval = interval
        self._name = name or "Timer"
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=self._name,
            daemon=True,
        )

    def start(self) -> "_ThreadTimer":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def _run_loop(self) -> None:
        if self._stop_event.wait(self._delay):
            return

        while not self._stop_event.is_set():
            started = time.monotonic()
            self._run_once()

            if self._interval is None:
                self._stop_event.set()
                return

            sleep_time = max(0.0, started + self._interval - time.monotonic())
            if self._stop_event.wait(sleep_time):
                return

    def _run_once(self) -> None:
        try:
            self._fn()
        except Exception:
            logger.exception(f"{self._name}: Timer callback failed")


class ThreadScheduler(Scheduler):
    """Scheduler running each timer on its own daemon thread."""

    def monotonic(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TimerHandle:
        return _ThreadTimer(fn, delay=max(0.0, delay), interval=None, name=name).start()

    def call_every(
        self,
        interval: float,
        fn: Callable[[], None],
        name: str = "",
        run_immediately: bool = False,
    ) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        delay = 0.0 if run_immediately else interval
        return _ThreadTimer(fn, delay=delay, interval=interval, name=name).start()
