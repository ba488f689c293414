"""
Subscription registry: instrument key -> ordered callback handles.

Reference counted per key. The feed service creates one registry for price
subscribers and one for order book subscribers, both guarded by the same
lock it shares with the ConnectionManager.

Thread Safety:
    add/remove/snapshots take the registry lock. dispatch() copies the
    handle list under the lock and invokes callbacks outside it, so
    callbacks may subscribe or unsubscribe freely.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

from .types import InstrumentKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

_handle_ids = itertools.count(1)


class SubscriptionHandle(Generic[T]):
    """
    Token for one registration of a callback under a key.

    Identity based: registering the same callback twice gives two handles,
    and unsubscribing one leaves the other untouched. Calling the handle
    (or its unsubscribe method) removes the registration; repeated calls
    are no-ops.
    """

    __slots__ = ("key", "callback", "handle_id", "_release", "_active")

    def __init__(
        self,
        key: InstrumentKey,
        callback: Callable[[T], Any],
        release: Callable[["SubscriptionHandle[T]"], None],
    ):
        self.key = key
        self.callback = callback
        self.handle_id = next(_handle_ids)
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._release(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(key={self.key}, id={self.handle_id}, active={self._active})"


@dataclass(slots=True)
class DispatchResult:
    """Per-dispatch outcome: how many callbacks ran and which ones raised."""
    key: InstrumentKey
    delivered: int = 0
    errors: list[tuple[int, Exception]] = field(default_factory=list)

    @property
    def matched(self) -> int:
        """Number of handles still registered when their turn came."""
        return self.delivered + len(self.errors)

    @property
    def failed(self) -> int:
        return len(self.errors)


class SubscriptionRegistry(Generic[T]):
    """
    Maps instrument keys to callback handles in registration order.

    A key exists exactly while it has at least one handle.
    """

    def __init__(self, name: str = "Registry", lock: Optional[threading.RLock] = None):
        self._name = name
        self._lock = lock if lock is not None else threading.RLock()
        self._subs: dict[InstrumentKey, dict[int, SubscriptionHandle[T]]] = {}
        self._callback_errors = 0

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def add(
        self,
        key: InstrumentKey,
        callback: Callable[[T], Any],
        release: Callable[[SubscriptionHandle[T]], None],
    ) -> tuple[SubscriptionHandle[T], bool]:
        """
        Register callback under key.

        Args:
            key: Instrument key
            callback: Called with each payload for key
            release: Invoked by handle.unsubscribe()

        Returns:
            Tuple of (handle, is_first_for_key)
        """
        handle = SubscriptionHandle(key, callback, release)
        with self._lock:
            handles = self._subs.get(key)
            first = handles is None
            if first:
                handles = {}
                self._subs[key] = handles
            handles[handle.handle_id] = handle
        return handle, first

    def remove(self, handle: SubscriptionHandle[T]) -> bool:
        """
        Remove exactly this handle.

        Returns:
            True if the key has no handles left (and was removed)
        """
        with self._lock:
            if not handle._active:
                return False
            handle._active = False
            handles = self._subs.get(handle.key)
            if handles is None or handles.pop(handle.handle_id, None) is None:
                return False
            if handles:
                return False
            del self._subs[handle.key]
            return True

    def clear(self) -> list[InstrumentKey]:
        """Drop every registration, returning the keys that were present."""
        with self._lock:
            keys = list(self._subs.keys())
            for handles in self._subs.values():
                for handle in handles.values():
                    handle._active = False
            self._subs.clear()
            return keys

    def dispatch(self, key: InstrumentKey, payload: T) -> DispatchResult:
        """
        Invoke every callback registered for key, in registration order.

        A callback that raises is recorded in the result and does not
        prevent the remaining callbacks from running.
        """
        with self._lock:
            handles = self._subs.get(key)
            targets = list(handles.values()) if handles else []

        result = DispatchResult(key=key)
        for handle in targets:
            # Unsubscribed after the snapshot, possibly by an earlier callback
            if not handle._active:
                continue
            try:
                handle.callback(payload)
                result.delivered += 1
            except Exception as e:
                result.errors.append((handle.handle_id, e))
                self._callback_errors += 1
                logger.exception(f"{self._name}: Callback error for {key}")
        return result

    def has(self, key: InstrumentKey) -> bool:
        with self._lock:
            return key in self._subs

    def count(self, key: InstrumentKey) -> int:
        with self._lock:
            return len(self._subs.get(key, ()))

    def keys(self) -> list[InstrumentKey]:
        """Snapshot of keys with at least one handle, in first-subscribe order."""
        with self._lock:
            return list(self._subs.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)

    def __contains__(self, key: InstrumentKey) -> bool:
        return self.has(key)

    @property
    def callback_errors(self) -> int:
        return self._callback_errors
