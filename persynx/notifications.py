"""
Change-Notification Bus
=======================

Per-key listener registry for storage mutations.

Listeners are plain ``listener(old_value, new_value)`` callables, called in
registration order on the thread that performed the write. A listener that
raises is logged and the remaining listeners still run.

Notifications can be suppressed for a batch of writes; afterwards exactly one
synthesized notification per requested key reports the net change:

    with bus.suppressed(gateway.read, notify_keys_after=["todos"]):
        gateway.write("todos", [])
        gateway.write("todos", ["a"])
        gateway.write("todos", ["a", "b"])
    # listeners of "todos" are called once: ([...before...], ["a", "b"])
"""

import logging
import threading
import weakref
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, TypeVar

from .equality import is_different

logger = logging.getLogger(__name__)

R = TypeVar("R")

Listener = Callable[[Any, Any], None]


class ChangeType(Enum):
    """Types of changes that can occur in the store."""

    SET = "set"
    DELETE = "delete"
    CLEAR = "clear"


@dataclass
class ChangeEvent:
    """
    Represents a change event in the store.

    Attributes:
        key: The key that changed
        change_type: Type of change (SET, DELETE, CLEAR)
        old_value: Previous value (None if new key)
        new_value: New value (None if deleted or cleared)
    """

    key: str
    change_type: ChangeType
    old_value: Any = None
    new_value: Any = None

    def __repr__(self):
        if self.change_type == ChangeType.SET:
            return f"ChangeEvent(SET {self.key}: {self.old_value} -> {self.new_value})"
        elif self.change_type == ChangeType.DELETE:
            return f"ChangeEvent(DELETE {self.key}: {self.old_value})"
        else:
            return f"ChangeEvent(CLEAR {self.key})"


class Subscription:
    """
    Handle for one listener on one key.

    Calling the subscription unsubscribes it, so it can be used wherever a
    plain dispose callable is expected.
    """

    def __init__(self, key: str, listener: Listener, bus: "NotificationBus"):
        self.key = key
        self.listener = listener
        self._bus_ref = weakref.ref(bus)
        self.active = True

    def pause(self):
        """Pause this subscription (stop receiving notifications)."""
        self.active = False

    def resume(self):
        """Resume this subscription (start receiving notifications again)."""
        self.active = True

    def unsubscribe(self):
        """Remove the listener. Safe to call more than once."""
        bus = self._bus_ref()
        if bus:
            bus._remove(self)

    def __call__(self):
        self.unsubscribe()

    def notify(self, old_value: Any, new_value: Any):
        """Deliver one change to the listener, logging listener failures."""
        if not self.active:
            return
        try:
            self.listener(old_value, new_value)
        except Exception:
            logger.exception(f"❌ Listener for key {self.key!r} failed")

    def __repr__(self):
        state = "active" if self.active else "paused"
        return f"Subscription({self.key!r}, {state})"


class NotificationBus:
    """
    Per-key publish/subscribe for storage changes.

    Features:
    - Listeners keyed by storage key, called in insertion order
    - Pause/resume/unsubscribe per subscription
    - Nested suppression with synthesized notifications afterwards
    - Dispatch statistics
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[Subscription]] = {}

        # Depth of nested suppressed() blocks
        self._suppression_depth = 0

        self._stats = {
            "notifications_sent": 0,
            "notifications_dropped": 0,
            "synthesized": 0,
        }

    def subscribe(self, key: str, listener: Listener) -> Subscription:
        """
        Register ``listener`` for changes of ``key``.

        Returns:
            Subscription that can pause, resume or remove the listener.
        """
        subscription = Subscription(key, listener, self)
        with self._lock:
            self._listeners.setdefault(key, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._listeners.get(subscription.key)
            if not subscriptions or subscription not in subscriptions:
                return
            subscriptions.remove(subscription)
            # Drop the key entry with its last listener
            if not subscriptions:
                del self._listeners[subscription.key]

    @property
    def is_suppressed(self) -> bool:
        with self._lock:
            return self._suppression_depth > 0

    def notify(self, event: ChangeEvent) -> None:
        """Dispatch ``event`` to the listeners of its key, unless suppressed."""
        with self._lock:
            if self._suppression_depth > 0:
                self._stats["notifications_dropped"] += 1
                return
            # Snapshot so listeners may (un)subscribe during dispatch
            subscriptions = list(self._listeners.get(event.key, ()))
            if subscriptions:
                self._stats["notifications_sent"] += 1

        for subscription in subscriptions:
            subscription.notify(event.old_value, event.new_value)

    @contextmanager
    def suppressed(
        self,
        reader: Callable[[str], Any],
        notify_keys_after: Iterable[str] = (),
    ) -> Iterator[None]:
        """
        Suppress notifications for the duration of the block.

        Args:
            reader: Returns the current decoded value of a key. Used to
                capture the values of ``notify_keys_after`` before and after
                the block.
            notify_keys_after: Keys that get one synthesized notification
                after the block, if their value changed.
        """
        # OrderedDict keeps caller order while dropping duplicate keys
        before = OrderedDict((key, reader(key)) for key in notify_keys_after)

        with self._lock:
            self._suppression_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._suppression_depth -= 1

        for key, old_value in before.items():
            new_value = reader(key)
            if not is_different(old_value, new_value):
                continue
            with self._lock:
                self._stats["synthesized"] += 1
            change_type = ChangeType.SET if new_value is not None else ChangeType.DELETE
            self.notify(ChangeEvent(key, change_type, old_value, new_value))

    def with_suppressed(
        self,
        action: Callable[[], R],
        reader: Callable[[str], Any],
        notify_keys_after: Iterable[str] = (),
    ) -> R:
        """Run ``action`` inside `suppressed` and return its result."""
        with self.suppressed(reader, notify_keys_after):
            return action()

    def listener_count(self, key: str) -> int:
        with self._lock:
            return len(self._listeners.get(key, ()))

    def has_listeners(self, key: str) -> bool:
        return self.listener_count(key) > 0

    def keys(self) -> List[str]:
        """Keys that currently have listeners."""
        with self._lock:
            return list(self._listeners.keys())

    def clear(self) -> None:
        """Remove every listener."""
        with self._lock:
            self._listeners.clear()

    def stats(self) -> Dict[str, Any]:
        """Get statistics about listeners and dispatch."""
        with self._lock:
            stats = dict(self._stats)
            stats["watched_keys"] = len(self._listeners)
            stats["total_listeners"] = sum(len(s) for s in self._listeners.values())
            stats["suppression_depth"] = self._suppression_depth
            return stats


__all__ = [
    "ChangeType",
    "ChangeEvent",
    "Subscription",
    "NotificationBus",
    "Listener",
]
