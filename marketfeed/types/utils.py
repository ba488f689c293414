"""
Utility functions for timestamps and price parsing.

These are pure functions with no dependencies on other types.
"""

import math
from time import time
from typing import Any, Optional


def wall_ms() -> int:
    """Get current wall clock timestamp in milliseconds."""
    return int(time() * 1000)


def parse_price(raw: Any) -> Optional[float]:
    """
    Parse a venue price ("0.55", 0.55) into a float in [0, 1].

    Returns None for missing, non-numeric or out-of-range values.
    """
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        price = float(raw)
    except (ValueError, TypeError):
        return None
    if math.isnan(price) or price < 0.0 or price > 1.0:
        return None
    return price


def parse_size(raw: Any) -> Optional[float]:
    """Parse a level size into a non-negative float, None if invalid."""
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        size = float(raw)
    except (ValueError, TypeError):
        return None
    if math.isnan(size) or size < 0.0:
        return None
    return size


def complement(price: float) -> float:
    """Other side of a binary outcome price."""
    return 1.0 - price
