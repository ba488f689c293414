"""
Write-behind price persistence.

- PersistenceQueue: bounded last-value-wins queue flushed in batches
- LatencyMonitor: sliding window of flush durations
- SqlitePriceStore / RestUpsertStore / NullPriceStore: upsert targets
"""

from .latency import LatencyMonitor, LatencyStats
from .queue import FlushReport, PersistenceQueue, QueueEntry, QueueStats, UpsertResult
from .stores import NullPriceStore, PriceRow, RestUpsertStore, SqlitePriceStore, UpsertStore

__all__ = [
    "LatencyMonitor",
    "LatencyStats",
    "FlushReport",
    "PersistenceQueue",
    "QueueEntry",
    "QueueStats",
    "UpsertResult",
    "NullPriceStore",
    "PriceRow",
    "RestUpsertStore",
    "SqlitePriceStore",
    "UpsertStore",
]
