"""
Sliding-window latency monitor for persistence flushes.

A sustained high average is an operator signal only; it never changes
feed behavior.
"""

import threading
from collections import deque
from dataclasses import dataclass


@dataclass(slots=True)
class LatencyStats:
    """Summary of the current window, in milliseconds."""
    samples: int
    average: float
    minimum: float
    maximum: float


class LatencyMonitor:
    """
    Fixed-size window of flush durations.

    Oldest samples are dropped once the window is full.
    """

    def __init__(self, window: int = 100, alert_ms: float = 1000.0):
        if window < 1:
            raise ValueError("window must be at least 1")
        self._samples: deque[float] = deque(maxlen=window)
        self._alert_ms = alert_ms
        self._lock = threading.Lock()

    def record(self, duration_ms: float) -> None:
        with self._lock:
            self._samples.append(float(duration_ms))

    @property
    def average(self) -> float:
        """Mean of the window, 0.0 when empty."""
        with self._lock:
            if not self._samples:
                return 0.0
            return sum(self._samples) / len(self._samples)

    @property
    def minimum(self) -> float:
        with self._lock:
            return min(self._samples) if self._samples else 0.0

    @property
    def maximum(self) -> float:
        with self._lock:
            return max(self._samples) if self._samples else 0.0

    @property
    def is_degraded(self) -> bool:
        """True when the window average exceeds the alert threshold."""
        return self.average > self._alert_ms

    def stats(self) -> LatencyStats:
        with self._lock:
            samples = list(self._samples)
        if not samples:
            return LatencyStats(samples=0, average=0.0, minimum=0.0, maximum=0.0)
        return LatencyStats(
            samples=len(samples),
            average=sum(samples) / len(samples),
            minimum=min(samples),
            maximum=max(samples),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
