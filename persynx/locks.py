"""
Persynx Update Locks
====================

Per-key reentrancy guard for sync cycles.

A sync cycle is either "observable changed, write it to storage" or "storage
changed, push it into the observable". Both directions can trigger the other,
so each cycle holds its key's lock and a nested attempt on the same thread
skips instead of starting a second cycle. That breaks the
observable -> store -> observable loop without any global ordering.

Locks are owned by the thread that took them. Another thread asking for a
held key waits until the owner releases it, so concurrent changes to one key
are serialized rather than dropped.

The registry keeps per-key counters (acquisitions, releases, skips, waits and
the peak number of simultaneous holders) so tests and diagnostics can verify
the at-most-one invariant.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class LockStats:
    """Counters for one key."""

    acquisitions: int = 0
    releases: int = 0
    skips: int = 0
    waits: int = 0
    holders: int = 0
    peak: int = 0


class UpdateLockRegistry:
    """
    Table of keys with a sync cycle in progress.

    Usage:
        locks = UpdateLockRegistry()

        with locks.hold("counter") as acquired:
            if acquired:
                ...  # write the new value

        locks.with_lock("counter", lambda: ...)
    """

    def __init__(self):
        # key -> ident of the thread holding it
        self._owners: Dict[str, int] = {}
        self._stats: Dict[str, LockStats] = defaultdict(LockStats)
        self._lock = threading.RLock()
        self._released = threading.Condition(self._lock)

    def is_locked(self, key: str) -> bool:
        """Check whether a sync cycle for ``key`` is in progress on any thread."""
        with self._lock:
            return key in self._owners

    def is_owned(self, key: str) -> bool:
        """Check whether the calling thread holds ``key``."""
        with self._lock:
            return self._owners.get(key) == threading.get_ident()

    def try_acquire(self, key: str) -> bool:
        """
        Mark ``key`` as locked by the calling thread.

        If another thread holds the key this blocks until it is released.

        Returns:
            True if the lock was obtained, False if the calling thread already
            holds it (the attempt is counted as a skip).
        """
        me = threading.get_ident()
        with self._lock:
            stats = self._stats[key]
            if self._owners.get(key) == me:
                stats.skips += 1
                return False
            if key in self._owners:
                stats.waits += 1
                logger.debug(f"⏳ Waiting for key {key!r} held by another thread")
                while key in self._owners:
                    self._released.wait()
            self._owners[key] = me
            stats.acquisitions += 1
            stats.holders += 1
            stats.peak = max(stats.peak, stats.holders)
            return True

    def release(self, key: str) -> None:
        """Unmark ``key``. Releasing an unlocked key is a no-op."""
        with self._lock:
            if key not in self._owners:
                return
            del self._owners[key]
            stats = self._stats[key]
            stats.releases += 1
            stats.holders -= 1
            self._released.notify_all()

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Yields whether the lock was obtained; only a lock obtained here is
        released on exit.
        """
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def with_lock(self, key: str, action: Callable[[], R]) -> Optional[R]:
        """
        Run ``action`` while holding the lock for ``key``.

        If the calling thread already holds the key the action is skipped and
        None is returned; a key held by another thread is waited for. The lock
        is released even when the action raises.
        """
        with self.hold(key) as acquired:
            if not acquired:
                logger.debug(f"🔒 Skipped action for locked key {key!r}")
                return None
            return action()

    def locked_keys(self) -> Set[str]:
        with self._lock:
            return set(self._owners)

    def stats(self, key: str) -> LockStats:
        """Return a copy of the counters for ``key``."""
        with self._lock:
            current = self._stats.get(key, LockStats())
            return LockStats(
                acquisitions=current.acquisitions,
                releases=current.releases,
                skips=current.skips,
                waits=current.waits,
                holders=current.holders,
                peak=current.peak,
            )

    def reset_stats(self) -> None:
        with self._lock:
            for key, stats in list(self._stats.items()):
                held = 1 if key in self._owners else 0
                self._stats[key] = LockStats(holders=held, peak=held)

    def clear(self) -> None:
        """Drop every held lock and wake waiters. Used when a session shuts down."""
        with self._lock:
            for key in self._owners:
                self._stats[key].holders = 0
            self._owners.clear()
            self._released.notify_all()


__all__ = ["UpdateLockRegistry", "LockStats"]
