"""
Polymarket CLOB REST price lookup.

Used by the polling fallback:
- Token keys: GET /book?token_id=... and take the mid of best bid / best ask
- Condition keys: GET /markets/{condition_id} and take the "Yes" outcome price
"""

import logging
from typing import Any, Optional

import requests

from ..errors import PriceLookupError
from ..polling import PriceLookup
from ..types import InstrumentKey, PricePair, complement, parse_price

logger = logging.getLogger(__name__)

PM_REST_URL = "https://clob.polymarket.com"


class ClobPriceClient(PriceLookup):
    """
    Synchronous CLOB client for price lookups.

    Thread-safe for concurrent use from polling timers (requests.Session
    connection pooling).
    """

    def __init__(
        self,
        host: str = PM_REST_URL,
        timeout_s: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            host: CLOB API host URL
            timeout_s: HTTP request timeout
            session: Optional requests session (tests inject a mock)
        """
        self._host = host.rstrip("/")
        self._timeout = timeout_s
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def get_price(self, key: InstrumentKey) -> Optional[PricePair]:
        """
        Current price pair for key.

        Returns:
            PricePair, or None when the venue has no usable quote

        Raises:
            PriceLookupError: Non-200 response or unreadable body
            requests.exceptions.RequestException: Transport failure
        """
        if key.keyed_by_token:
            return self._price_from_book(key.id)
        return self._price_from_market(key.id)

    def get_order_book(self, token_id: str) -> dict:
        """Raw order book for a token."""
        return self._get_json("/book", params={"token_id": token_id})

    def _price_from_book(self, token_id: str) -> Optional[PricePair]:
        book = self.get_order_book(token_id)

        bids = [p for p in (parse_price(lvl.get("price")) for lvl in _levels(book, "bids")) if p is not None]
        asks = [p for p in (parse_price(lvl.get("price")) for lvl in _levels(book, "asks")) if p is not None]
        if not bids or not asks:
            return None

        # Venue sorts bids ascending and asks descending; take extremes explicitly
        mid = (max(bids) + min(asks)) / 2
        return PricePair(yes=mid, no=complement(mid))

    def _price_from_market(self, condition_id: str) -> Optional[PricePair]:
        market = self._get_json(f"/markets/{condition_id}")
        tokens = market.get("tokens")
        if not isinstance(tokens, list) or not tokens:
            return None

        yes_token = next(
            (t for t in tokens if isinstance(t, dict) and str(t.get("outcome", "")).lower() in ("yes", "up")),
            tokens[0],
        )
        if not isinstance(yes_token, dict):
            return None
        price = parse_price(yes_token.get("price"))
        if price is None:
            return None
        return PricePair(yes=price, no=complement(price))

    def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self._host}{path}"
        resp = self._session.get(url, params=params, timeout=self._timeout)
        if resp.status_code != 200:
            raise PriceLookupError(f"GET {path} failed: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise PriceLookupError(f"GET {path} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise PriceLookupError(f"GET {path} returned unexpected body")
        return data


def _levels(book: dict, side: str) -> list[dict]:
    levels = book.get(side)
    if not isinstance(levels, list):
        return []
    return [lvl for lvl in levels if isinstance(lvl, dict)]
