"""
Write-behind persistence queue for observed prices.

Holds at most one entry per instrument key (last value wins) in
last-update order. When the map grows past capacity the oldest entries
are evicted down to a low watermark, trading the oldest unflushed prices
for bounded memory under sustained overload.

flush() drains the map atomically and upserts each entry in bounded
batches. A failing entry is recorded and skipped; it never aborts the
batch or the cycle.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from ..types import InstrumentKey, PriceUpdate
from .latency import LatencyMonitor
from .stores import PriceRow, UpsertStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """Latest unflushed price for one key."""
    key: InstrumentKey
    yes: float
    no: float
    at: int

    def to_row(self) -> PriceRow:
        return PriceRow(
            instrument_id=self.key.id,
            keyed_by_token=self.key.keyed_by_token,
            yes_price=self.yes,
            no_price=self.no,
            updated_at_ms=self.at,
        )


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Outcome of persisting one entry."""
    key: InstrumentKey
    success: bool
    error_msg: Optional[str] = None


@dataclass(slots=True)
class FlushReport:
    """Outcome of one flush cycle."""
    results: list[UpsertResult] = field(default_factory=list)
    batches: int = 0
    duration_ms: float = 0.0

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded


@dataclass(slots=True)
class QueueStats:
    """Cumulative queue counters."""
    enqueued: int = 0
    coalesced: int = 0
    evicted: int = 0
    flushes: int = 0
    persisted: int = 0
    persist_failures: int = 0


class PersistenceQueue:
    """
    Bounded, deduplicating price queue.

    Thread Safety:
        enqueue() may be called from the stream thread and every polling
        timer concurrently with flush() from the persist timer. The map is
        guarded by one lock; persistence runs outside it.
    """

    def __init__(
        self,
        store: UpsertStore,
        capacity: int = 1000,
        low_watermark: Optional[int] = None,
        batch_size: int = 50,
        latency: Optional[LatencyMonitor] = None,
    ):
        """
        Initialize the queue.

        Args:
            store: Upsert target
            capacity: Maximum entries before eviction
            low_watermark: Size kept after eviction (default capacity // 2)
            batch_size: Entries per persistence batch
            latency: Monitor receiving each flush duration
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if low_watermark is None:
            low_watermark = capacity // 2
        if not 0 <= low_watermark <= capacity:
            raise ValueError("low_watermark must be between 0 and capacity")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self._store = store
        self._capacity = capacity
        self._low_watermark = low_watermark
        self._batch_size = batch_size
        self._latency = latency

        self._entries: OrderedDict[InstrumentKey, QueueEntry] = OrderedDict()
        self._lock = threading.Lock()
        # Held for a whole flush cycle so concurrent flushes run one at a time
        self._flush_lock = threading.Lock()
        self.stats = QueueStats()

    def enqueue(self, update: PriceUpdate) -> None:
        """Insert or overwrite the entry for update.key."""
        entry = QueueEntry(key=update.key, yes=update.yes, no=update.no, at=update.at)
        evicted = 0
        with self._lock:
            if update.key in self._entries:
                self._entries.move_to_end(update.key)
                self.stats.coalesced += 1
            self._entries[update.key] = entry
            self.stats.enqueued += 1

            if len(self._entries) > self._capacity:
                while len(self._entries) > self._low_watermark:
                    self._entries.popitem(last=False)
                    evicted += 1
                self.stats.evicted += evicted

        if evicted:
            logger.warning(
                f"PersistenceQueue: Queue full, evicted {evicted} oldest entries "
                f"(kept {self._low_watermark})"
            )

    def drain(self) -> list[QueueEntry]:
        """Atomically take every queued entry, oldest first."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        return entries

    def flush(self) -> FlushReport:
        """
        Drain and persist every queued entry.

        Waits for a flush already in progress, so a caller that closes the
        store after flush() returns never cuts off drained entries.
        """
        with self._flush_lock:
            return self._flush_locked()

    def _flush_locked(self) -> FlushReport:
        entries = self.drain()
        report = FlushReport()
        if not entries:
            return report

        logger.debug(f"PersistenceQueue: Persisting {len(entries)} price updates...")
        start = time.monotonic()

        for i in range(0, len(entries), self._batch_size):
            batch = entries[i:i + self._batch_size]
            report.batches += 1
            for entry in batch:
                report.results.append(self._persist(entry))

        report.duration_ms = (time.monotonic() - start) * 1000.0

        with self._lock:
            self.stats.flushes += 1
            self.stats.persisted += report.succeeded
            self.stats.persist_failures += report.failed

        if self._latency is not None:
            self._latency.record(report.duration_ms)

        logger.info(
            f"PersistenceQueue: Persisted {report.succeeded}/{report.attempted} updates "
            f"in {report.duration_ms:.0f}ms"
        )
        return report

    def _persist(self, entry: QueueEntry) -> UpsertResult:
        try:
            self._store.upsert(entry.to_row())
            return UpsertResult(key=entry.key, success=True)
        except Exception as e:
            logger.warning(f"PersistenceQueue: Failed to persist {entry.key}: {e}")
            return UpsertResult(key=entry.key, success=False, error_msg=str(e))

    def peek(self, key: InstrumentKey) -> Optional[QueueEntry]:
        with self._lock:
            return self._entries.get(key)

    def keys(self) -> list[InstrumentKey]:
        """Queued keys, oldest first."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size(self) -> int:
        return len(self)
