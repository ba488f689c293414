"""
Price stores consumed by the persistence queue.

The queue only needs "upsert one price row". Implementations:
- SqlitePriceStore: local SQLite table keyed by instrument
- RestUpsertStore: PostgREST / Supabase table upsert over HTTP
- NullPriceStore: discards rows (persistence disabled)
"""

import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from ..errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PriceRow:
    """Persisted shape of one observed price pair."""
    instrument_id: str
    keyed_by_token: bool
    yes_price: float
    no_price: float
    updated_at_ms: int


class UpsertStore(ABC):
    """Insert-or-update of the latest price per instrument."""

    def open(self) -> None:
        """Acquire resources. Called once by the feed service on start."""

    def close(self) -> None:
        """Release resources. Called once by the feed service on stop."""

    @abstractmethod
    def upsert(self, row: PriceRow) -> None:
        """Persist row. Raises PersistenceError on failure."""


class NullPriceStore(UpsertStore):
    """Store that accepts and drops every row."""

    def upsert(self, row: PriceRow) -> None:
        pass


class SqlitePriceStore(UpsertStore):
    """
    Latest price per instrument in a SQLite table.

    One connection shared across threads, serialized by a lock.
    """

    def __init__(self, db_path: str = "data/market_prices.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database (":memory:" for tests)
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        """Open the database and create the schema."""
        if self._conn is not None:
            return

        directory = os.path.dirname(self.db_path)
        if directory and self.db_path != ":memory:":
            os.makedirs(directory, exist_ok=True)

        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS market_prices (
                instrument_id TEXT NOT NULL,
                keyed_by_token INTEGER NOT NULL,
                yes_price REAL NOT NULL,
                no_price REAL NOT NULL,
                updated_at_ms INTEGER NOT NULL,
                PRIMARY KEY (instrument_id, keyed_by_token)
            )
        """)
        self._conn.commit()
        logger.info(f"SqlitePriceStore: Opened {self.db_path}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def upsert(self, row: PriceRow) -> None:
        with self._lock:
            if self._conn is None:
                raise PersistenceError("SqlitePriceStore is not open")
            try:
                self._conn.execute(
                    """
                    INSERT INTO market_prices
                        (instrument_id, keyed_by_token, yes_price, no_price, updated_at_ms)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (instrument_id, keyed_by_token) DO UPDATE SET
                        yes_price = excluded.yes_price,
                        no_price = excluded.no_price,
                        updated_at_ms = excluded.updated_at_ms
                    """,
                    (
                        row.instrument_id,
                        int(row.keyed_by_token),
                        row.yes_price,
                        row.no_price,
                        row.updated_at_ms,
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"SQLite upsert failed for {row.instrument_id}: {e}") from e

    def get(self, instrument_id: str, keyed_by_token: bool = True) -> Optional[PriceRow]:
        """Read back the stored row for an instrument."""
        with self._lock:
            if self._conn is None:
                raise PersistenceError("SqlitePriceStore is not open")
            cur = self._conn.execute(
                "SELECT instrument_id, keyed_by_token, yes_price, no_price, updated_at_ms "
                "FROM market_prices WHERE instrument_id = ? AND keyed_by_token = ?",
                (instrument_id, int(keyed_by_token)),
            )
            found = cur.fetchone()
        if found is None:
            return None
        return PriceRow(
            instrument_id=found[0],
            keyed_by_token=bool(found[1]),
            yes_price=found[2],
            no_price=found[3],
            updated_at_ms=found[4],
        )

    def count(self) -> int:
        with self._lock:
            if self._conn is None:
                return 0
            return self._conn.execute("SELECT COUNT(*) FROM market_prices").fetchone()[0]


class RestUpsertStore(UpsertStore):
    """
    Upsert into a PostgREST table (e.g. a Supabase "markets" table).

    Rows are posted with Prefer: resolution=merge-duplicates so an
    existing row for the conflict column is updated in place.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "markets",
        conflict_column: str = "condition_id",
        timeout_s: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the store.

        Args:
            base_url: Project URL (".../rest/v1" is appended)
            api_key: Service key sent as apikey and bearer token
            table: Target table
            conflict_column: Column identifying the instrument
            timeout_s: HTTP timeout per request
            session: Optional requests session (tests inject a mock)
        """
        self._url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._api_key = api_key
        self._conflict_column = conflict_column
        self._timeout = timeout_s
        self._session = session
        self._owns_session = session is None

    def open(self) -> None:
        if self._session is None:
            self._session = requests.Session()
            self._owns_session = True
        headers = {
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        self._session.headers.update(headers)

    def close(self) -> None:
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None

    def upsert(self, row: PriceRow) -> None:
        if self._session is None:
            raise PersistenceError("RestUpsertStore is not open")

        body = {
            self._conflict_column: row.instrument_id,
            "yes_price": row.yes_price,
            "no_price": row.no_price,
        }
        try:
            resp = self._session.post(
                self._url,
                params={"on_conflict": self._conflict_column},
                json=body,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"Upsert request failed for {row.instrument_id}: {e}") from e

        if resp.status_code not in (200, 201, 204):
            raise PersistenceError(
                f"Upsert rejected for {row.instrument_id}: {resp.status_code} - {resp.text[:200]}"
            )
