"""
Exceptions raised by the feed multiplexer.

Subscribers never see these: transport and classification problems are
recovered locally, persistence and lookup problems are reported as
per-item outcomes.
"""


class MarketFeedError(Exception):
    """Base class for feed errors."""
    pass


class PriceLookupError(MarketFeedError):
    """REST price lookup failed (bad status or malformed body)."""
    pass


class PersistenceError(MarketFeedError):
    """Upsert into the price store failed."""
    pass
