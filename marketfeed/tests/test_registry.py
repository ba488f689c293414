"""Tests for SubscriptionRegistry and SubscriptionHandle."""

import threading

import pytest

from marketfeed.registry import DispatchResult, SubscriptionRegistry
from marketfeed.types import InstrumentKey


T1 = InstrumentKey.token("T1")
T2 = InstrumentKey.token("T2")


@pytest.fixture
def registry():
    return SubscriptionRegistry("TestRegistry")


def add(registry, key, callback):
    """Register with a release that removes from the same registry."""
    return registry.add(key, callback, registry.remove)


class TestAddRemove:
    """Tests for reference-counted registration."""

    def test_first_add_reported(self, registry):
        """Test only the first handle for a key is flagged as first."""
        _, first = add(registry, T1, lambda p: None)
        _, second = add(registry, T1, lambda p: None)
        assert first is True
        assert second is False
        assert registry.count(T1) == 2

    def test_key_removed_with_last_handle(self, registry):
        """Test a key exists exactly while it has handles."""
        h1, _ = add(registry, T1, lambda p: None)
        h2, _ = add(registry, T1, lambda p: None)

        assert registry.remove(h1) is False
        assert T1 in registry
        assert registry.remove(h2) is True
        assert T1 not in registry
        assert len(registry) == 0

    def test_remove_is_idempotent(self, registry):
        """Test removing the same handle twice has no further effect."""
        h1, _ = add(registry, T1, lambda p: None)
        add(registry, T1, lambda p: None)
        registry.remove(h1)
        assert registry.remove(h1) is False
        assert registry.count(T1) == 1

    def test_same_callback_gives_distinct_handles(self, registry):
        """Test registering one callback twice yields independent handles."""
        cb = lambda p: None
        h1, _ = add(registry, T1, cb)
        h2, _ = add(registry, T1, cb)
        assert h1.handle_id != h2.handle_id

        h1.unsubscribe()
        assert registry.count(T1) == 1
        assert h1.active is False
        assert h2.active is True

    def test_handle_callable_unsubscribes(self, registry):
        """Test calling the handle removes the registration."""
        handle, _ = add(registry, T1, lambda p: None)
        handle()
        handle()
        assert T1 not in registry

    def test_keys_in_first_subscribe_order(self, registry):
        """Test keys() snapshot keeps first-subscribe order."""
        add(registry, T2, lambda p: None)
        add(registry, T1, lambda p: None)
        assert registry.keys() == [T2, T1]

    def test_clear_returns_keys_and_deactivates(self, registry):
        """Test clear() drops everything and deactivates handles."""
        h1, _ = add(registry, T1, lambda p: None)
        add(registry, T2, lambda p: None)

        assert registry.clear() == [T1, T2]
        assert len(registry) == 0
        assert h1.active is False
        # Unsubscribing a cleared handle is a no-op
        h1.unsubscribe()


class TestDispatch:
    """Tests for synchronous dispatch."""

    def test_dispatch_in_registration_order(self, registry):
        """Test callbacks run in the order they were registered."""
        calls = []
        add(registry, T1, lambda p: calls.append(("a", p)))
        add(registry, T1, lambda p: calls.append(("b", p)))

        result = registry.dispatch(T1, 42)
        assert calls == [("a", 42), ("b", 42)]
        assert result.delivered == 2
        assert result.matched == 2

    def test_dispatch_unknown_key(self, registry):
        """Test dispatching to a key without handles matches nothing."""
        result = registry.dispatch(T1, 1)
        assert isinstance(result, DispatchResult)
        assert result.matched == 0

    def test_raising_callback_recorded(self, registry):
        """Test a raising callback is recorded and the rest still run."""
        calls = []

        def boom(p):
            raise ValueError("bad")

        bad, _ = add(registry, T1, boom)
        add(registry, T1, calls.append)

        result = registry.dispatch(T1, "x")
        assert calls == ["x"]
        assert result.delivered == 1
        assert result.failed == 1
        assert result.matched == 2
        assert result.errors[0][0] == bad.handle_id
        assert isinstance(result.errors[0][1], ValueError)
        assert registry.callback_errors == 1

    def test_callback_may_subscribe_during_dispatch(self, registry):
        """Test a callback can register another handle without deadlocking."""
        late = []

        def adder(p):
            add(registry, T1, late.append)

        add(registry, T1, adder)
        registry.dispatch(T1, 1)
        assert registry.count(T1) == 2
        # Newly added handle only sees later dispatches
        assert late == []
        registry.dispatch(T1, 2)
        assert late == [2]

    def test_unsubscribed_during_dispatch_not_called(self, registry):
        """Test a handle removed by an earlier callback is skipped in the same dispatch."""
        b_received = []
        handles = {}

        def a(p):
            handles["b"].unsubscribe()

        add(registry, T1, a)
        handles["b"], _ = add(registry, T1, b_received.append)

        result = registry.dispatch(T1, "x")
        assert handles["b"].active is False
        assert b_received == []
        assert result.matched == 1

    def test_unsubscribe_from_other_thread_during_dispatch(self, registry):
        """Test a handle removed on another thread mid-dispatch is not called afterwards."""
        entered = threading.Event()
        release = threading.Event()
        b_received = []

        def slow(p):
            entered.set()
            release.wait(2.0)

        add(registry, T1, slow)
        hb, _ = add(registry, T1, b_received.append)

        worker = threading.Thread(target=registry.dispatch, args=(T1, "x"))
        worker.start()
        assert entered.wait(2.0)
        hb.unsubscribe()
        release.set()
        worker.join(2.0)

        assert b_received == []

    def test_shared_lock(self):
        """Test two registries can share one lock."""
        lock = threading.RLock()
        prices = SubscriptionRegistry("Prices", lock)
        books = SubscriptionRegistry("Books", lock)
        assert prices.lock is books.lock
