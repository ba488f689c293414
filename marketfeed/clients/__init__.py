"""
REST clients for the feed multiplexer.

- ClobPriceClient: Polymarket CLOB price lookup for the polling fallback
"""

from .clob_rest import ClobPriceClient, PM_REST_URL

__all__ = [
    "ClobPriceClient",
    "PM_REST_URL",
]
