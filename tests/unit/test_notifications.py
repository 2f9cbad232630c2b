"""Unit tests for the change-notification bus."""

import pytest

from persynx import ChangeEvent, ChangeType, NotificationBus


@pytest.fixture
def bus():
    return NotificationBus()


def _set(key, old, new):
    return ChangeEvent(key, ChangeType.SET, old, new)


@pytest.mark.unit
class TestSubscriptions:
    """Listener registration and dispatch."""

    def test_listener_receives_old_and_new_value(self, bus):
        seen = []
        bus.subscribe("a", lambda old, new: seen.append((old, new)))

        bus.notify(_set("a", 1, 2))

        assert seen == [(1, 2)]

    def test_listeners_only_receive_their_key(self, bus):
        seen = []
        bus.subscribe("a", lambda old, new: seen.append("a"))

        bus.notify(_set("b", 1, 2))

        assert seen == []

    def test_listeners_are_called_in_registration_order(self, bus):
        order = []
        bus.subscribe("a", lambda old, new: order.append("first"))
        bus.subscribe("a", lambda old, new: order.append("second"))

        bus.notify(_set("a", 1, 2))

        assert order == ["first", "second"]

    def test_calling_subscription_unsubscribes(self, bus):
        seen = []
        dispose = bus.subscribe("a", lambda old, new: seen.append(new))

        dispose()
        bus.notify(_set("a", 1, 2))

        assert seen == []
        assert not bus.has_listeners("a")

    def test_key_entry_is_removed_with_last_listener(self, bus):
        first = bus.subscribe("a", lambda old, new: None)
        second = bus.subscribe("a", lambda old, new: None)
        assert bus.listener_count("a") == 2

        first.unsubscribe()
        assert bus.keys() == ["a"]

        second.unsubscribe()
        second.unsubscribe()
        assert bus.keys() == []

    def test_paused_subscription_is_skipped_until_resumed(self, bus):
        seen = []
        subscription = bus.subscribe("a", lambda old, new: seen.append(new))

        subscription.pause()
        bus.notify(_set("a", 1, 2))
        subscription.resume()
        bus.notify(_set("a", 2, 3))

        assert seen == [3]

    def test_failing_listener_does_not_stop_dispatch(self, bus):
        seen = []

        def broken(old, new):
            raise RuntimeError("listener bug")

        bus.subscribe("a", broken)
        bus.subscribe("a", lambda old, new: seen.append(new))

        bus.notify(_set("a", 1, 2))

        assert seen == [2]

    def test_listener_may_unsubscribe_during_dispatch(self, bus):
        seen = []
        holder = {}

        def once(old, new):
            seen.append(new)
            holder["sub"].unsubscribe()

        holder["sub"] = bus.subscribe("a", once)

        bus.notify(_set("a", 1, 2))
        bus.notify(_set("a", 2, 3))

        assert seen == [2]

    def test_change_event_repr(self):
        assert repr(_set("a", 1, 2)) == "ChangeEvent(SET a: 1 -> 2)"
        assert "DELETE" in repr(ChangeEvent("a", ChangeType.DELETE, 1))


@pytest.mark.unit
class TestSuppression:
    """Batches with notifications disabled."""

    def test_notifications_are_dropped_while_suppressed(self, bus):
        seen = []
        bus.subscribe("a", lambda old, new: seen.append(new))

        with bus.suppressed(lambda key: None):
            assert bus.is_suppressed
            bus.notify(_set("a", 1, 2))

        assert seen == []
        assert not bus.is_suppressed

    def test_one_synthesized_notification_per_requested_key(self, bus):
        values = {"a": 1}
        seen = []
        bus.subscribe("a", lambda old, new: seen.append((old, new)))

        def write(value):
            values["a"] = value
            bus.notify(_set("a", None, value))

        with bus.suppressed(values.get, notify_keys_after=["a", "a"]):
            write(2)
            write(3)
            write(4)

        assert seen == [(1, 4)]
        assert bus.stats()["synthesized"] == 1

    def test_no_notification_when_batch_ends_where_it_started(self, bus):
        values = {"a": 1}
        seen = []
        bus.subscribe("a", lambda old, new: seen.append(new))

        def action():
            values["a"] = 5
            values["a"] = 1

        bus.with_suppressed(action, values.get, ["a"])

        assert seen == []

    def test_removed_key_is_reported_as_none(self, bus):
        values = {"a": 1}
        seen = []
        bus.subscribe("a", lambda old, new: seen.append((old, new)))

        bus.with_suppressed(lambda: values.pop("a"), values.get, ["a"])

        assert seen == [(1, None)]

    def test_with_suppressed_returns_action_result(self, bus):
        assert bus.with_suppressed(lambda: 42, lambda key: None) == 42

    def test_nested_suppression(self, bus):
        seen = []
        bus.subscribe("a", lambda old, new: seen.append(new))

        with bus.suppressed(lambda key: None):
            with bus.suppressed(lambda key: None):
                pass
            assert bus.is_suppressed
            bus.notify(_set("a", 1, 2))

        bus.notify(_set("a", 2, 3))
        assert seen == [3]

    def test_suppression_ends_when_action_raises(self, bus):
        with pytest.raises(ValueError):
            with bus.suppressed(lambda key: None):
                raise ValueError("boom")

        assert not bus.is_suppressed

    def test_stats(self, bus):
        bus.subscribe("a", lambda old, new: None)
        bus.subscribe("b", lambda old, new: None)
        bus.notify(_set("a", 1, 2))

        stats = bus.stats()
        assert stats["watched_keys"] == 2
        assert stats["total_listeners"] == 2
        assert stats["notifications_sent"] == 1
