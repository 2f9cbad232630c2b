"""Integration tests for end-to-end synchronization scenarios."""

import pytest

from persynx import (
    INTEGER,
    STRING,
    Observable,
    ObservableList,
    ObservableMap,
    StorageConfig,
    StorageSession,
)


@pytest.mark.integration
@pytest.mark.binding
def test_counter_default_is_loaded_then_changes_persist_once(session, store):
    """Bound counter starts from its default and only writes real changes"""
    # Arrange
    loads = []
    counter = Observable("counter", None)

    # Act - bind against an empty store
    session.bind("counter", counter, INTEGER, default=0, on_initial_load=loads.append)

    # Assert - the default was loaded and written exactly once
    assert loads == [0]
    assert store.get_stats()["writes"] == 1

    # Act - mutate to 5
    counter.set(5)

    # Assert - store holds the envelope with data 5
    assert store.read("counter")["data"] == 5
    writes_after_first_change = store.get_stats()["writes"]

    # Act - mutate to 5 again
    counter.set(5)

    # Assert - no second write
    assert store.get_stats()["writes"] == writes_after_first_change


@pytest.mark.integration
@pytest.mark.binding
@pytest.mark.edge_case
def test_todos_with_malformed_item_load_partially(session, todo_codec):
    """A malformed stored item is skipped while the rest of the list loads"""
    # Arrange
    session.set("todos", [{"id": "1", "title": "x"}, "not-an-object"])
    errors = []
    todos = ObservableList("todos")

    # Act
    session.bind_list("todos", todos, todo_codec, on_error=errors.append)

    # Assert
    assert len(todos) == 1
    assert todos[0].id == "1"
    assert len(errors) == 1


@pytest.mark.integration
@pytest.mark.binding
def test_second_write_while_lock_held_is_skipped(session, store):
    """A write attempted during another sync cycle on the same key is skipped"""
    # Arrange - the on_update hook fires inside the first cycle, lock held
    value = Observable("a", 0)
    held_during_update = []

    def write_again(_):
        held_during_update.append(session.locks.is_locked("a"))
        value.set(2)

    session.bind("a", value, INTEGER, default=0, on_update=write_again)
    session.locks.reset_stats()
    writes = store.get_stats()["writes"]

    # Act
    value.set(1)

    # Assert - only the first write reached storage
    assert held_during_update == [True]
    assert store.get_stats()["writes"] == writes + 1
    assert session.get("a") == 1

    # The lock was taken and released exactly once; the nested attempt skipped
    stats = session.locks.stats("a")
    assert stats.acquisitions == 1
    assert stats.releases == 1
    assert stats.skips == 1
    assert stats.peak == 1
    assert not session.locks.is_locked("a")


@pytest.mark.integration
@pytest.mark.binding
def test_batch_of_writes_reaches_bound_observable_once(session):
    """without_notifications collapses a batch into one observable update"""
    # Arrange
    todos = ObservableList("todos")
    session.bind_list("todos", todos, STRING, default=[], propagate_external=True)
    observed = []
    todos.subscribe(observed.append)

    # Act
    def batch():
        session.set("todos", ["a"])
        session.set("todos", ["a", "b"])
        session.set("todos", ["a", "b", "c"])

    session.without_notifications(batch, notify_keys_after=["todos"])

    # Assert
    assert observed == [["a", "b", "c"]]
    assert todos.value == ["a", "b", "c"]


@pytest.mark.integration
@pytest.mark.binding
def test_two_observables_bound_to_linked_keys_stay_consistent(session):
    """An observable bound with propagation follows writes from another binding"""
    # Arrange - a writer binding and a reader session listener on the same key
    prefs = ObservableMap("prefs")
    session.bind_map("prefs", prefs, STRING, default={})
    mirror = Observable("prefs-mirror", {})
    session.on_change("prefs", lambda old, new: mirror.set(new))

    # Act
    prefs["theme"] = "dark"
    prefs["lang"] = "en"

    # Assert
    assert mirror.value == {"theme": "dark", "lang": "en"}


@pytest.mark.integration
@pytest.mark.store
def test_state_survives_session_restart(tmp_path, todo_codec, todo_cls):
    """Values bound in one session are loaded by the next one"""
    config = StorageConfig(storage_path=str(tmp_path / "state.json"), enable_encryption=True)

    with StorageSession(config=config) as session:
        todos = ObservableList("todos")
        session.bind_list("todos", todos, todo_codec, default=[])
        todos.append(todo_cls("1", "persist me"))

    with StorageSession(config=config) as session:
        restored = ObservableList("todos")
        session.bind_list("todos", restored, todo_codec)

        assert restored.value == [todo_cls("1", "persist me")]
