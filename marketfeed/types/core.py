"""
Core vocabulary of the feed multiplexer.

Instrument identity and connection lifecycle enums.
"""

from dataclasses import dataclass
from enum import Enum, auto


class ConnectionState(Enum):
    """Upstream connection lifecycle state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    OPEN = auto()
    RECONNECTING = auto()
    FAILED = auto()


class TradeSide(Enum):
    """Aggressor side of a last-trade print."""
    BUY = auto()
    SELL = auto()


@dataclass(frozen=True, slots=True)
class InstrumentKey:
    """
    Identifies a subscribable feed.

    The same market is addressable by its condition id or by one of its
    outcome token ids. The two discriminators are distinct keys and are
    subscribed independently.
    """
    id: str
    keyed_by_token: bool = True

    @classmethod
    def token(cls, token_id: str) -> "InstrumentKey":
        """Key addressed by outcome token (asset) id."""
        return cls(id=token_id, keyed_by_token=True)

    @classmethod
    def condition(cls, condition_id: str) -> "InstrumentKey":
        """Key addressed by market condition id."""
        return cls(id=condition_id, keyed_by_token=False)

    @classmethod
    def parse(cls, text: str) -> "InstrumentKey":
        """
        Parse a key from its short text form.

        "c:<id>" is a condition key, anything else a token key.
        """
        text = text.strip()
        if text.startswith("c:"):
            return cls.condition(text[2:])
        return cls.token(text)

    def __str__(self) -> str:
        prefix = "token" if self.keyed_by_token else "condition"
        return f"{prefix}:{self.id[:16]}"
