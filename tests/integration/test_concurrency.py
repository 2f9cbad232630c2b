"""Integration tests for multi-threaded use of a session."""

import threading
import time

import pytest

from persynx import INTEGER, KeyValueStore, Observable, StorageSession


class GatedStore(KeyValueStore):
    """Store whose first write to ``gated_key`` blocks until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gated_key = None
        self.entered = threading.Event()
        self.gate = threading.Event()

    def write(self, key, value):
        if key == self.gated_key and not self.gate.is_set():
            self.entered.set()
            self.gate.wait(timeout=5)
        super().write(key, value)


def wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


@pytest.mark.integration
@pytest.mark.binding
def test_concurrent_updates_never_hold_a_key_twice(session):
    """Threads mutating different bound keys keep the per-key lock invariant"""
    observables = [Observable(f"k{i}", 0) for i in range(4)]
    for obs in observables:
        session.bind(obs.key, obs, INTEGER, default=0)

    def worker(obs):
        for value in range(1, 51):
            obs.set(value)

    threads = [threading.Thread(target=worker, args=(obs,)) for obs in observables]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for obs in observables:
        assert session.get(obs.key) == 50
        stats = session.locks.stats(obs.key)
        assert stats.peak == 1
        assert stats.acquisitions == stats.releases
    assert session.locks.locked_keys() == set()


@pytest.mark.integration
@pytest.mark.binding
def test_change_from_second_thread_waits_for_running_sync():
    """A same-key change arriving mid-sync is written after it, not dropped"""
    # Arrange - the first sync of "k" blocks inside the backend write
    store = GatedStore()
    session = StorageSession(backend=store).initialize()
    value = Observable("k", 0)
    session.bind("k", value, INTEGER, default=0)
    store.gated_key = "k"

    first = threading.Thread(target=value.set, args=(1,))
    first.start()
    assert store.entered.wait(timeout=5)

    # Act - a second thread changes the same key while the first is stuck
    second = threading.Thread(target=value.set, args=(2,))
    second.start()
    assert wait_until(lambda: session.locks.stats("k").waits == 1)
    store.gate.set()
    first.join(timeout=5)
    second.join(timeout=5)

    # Assert - storage converges on the latest observable value
    assert value.value == 2
    assert session.get("k") == 2
    stats = session.locks.stats("k")
    assert stats.skips == 0
    assert stats.peak == 1
    assert session.locks.locked_keys() == set()
    session.close()


@pytest.mark.integration
@pytest.mark.binding
def test_external_write_during_another_threads_sync_is_propagated():
    """Another thread's write is not mistaken for the binding's own write"""
    # Arrange - the binding's own SET notification blocks in a listener, so
    # its write is still in progress when the other thread writes
    session = StorageSession(backend=KeyValueStore()).initialize()
    value = Observable("k", 0)
    session.bind("k", value, INTEGER, default=0, propagate_external=True)

    syncing_thread = []
    in_listener = threading.Event()
    release_listener = threading.Event()

    def slow_listener(old, new):
        if threading.current_thread() in syncing_thread:
            in_listener.set()
            release_listener.wait(timeout=5)

    session.on_change("k", slow_listener)

    syncer = threading.Thread(target=value.set, args=(1,))
    syncing_thread.append(syncer)
    syncer.start()
    assert in_listener.wait(timeout=5)

    # Act
    writer = threading.Thread(target=session.set, args=("k", 5))
    writer.start()
    assert wait_until(lambda: session.locks.stats("k").waits == 1)
    release_listener.set()
    syncer.join(timeout=5)
    writer.join(timeout=5)

    # Assert - the external value reached the observable
    assert session.get("k") == 5
    assert value.value == 5
    session.close()
