"""Unit tests for the key-value backends."""

import json

import pytest

from persynx import InitializationError, JsonFileStore, KeyValueBackend, KeyValueStore
from persynx.util.kv_store import create_store


@pytest.mark.unit
@pytest.mark.store
class TestKeyValueStore:
    """In-memory backend."""

    def test_satisfies_backend_protocol(self):
        assert isinstance(KeyValueStore(), KeyValueBackend)

    def test_write_read_has_remove(self):
        store = KeyValueStore()
        store.write("a", {"data": 1})

        assert store.has("a")
        assert "a" in store
        assert store.read("a") == {"data": 1}

        store.remove("a")

        assert not store.has("a")
        assert store.read("a") is None

    def test_remove_absent_key_is_noop(self):
        store = KeyValueStore()
        store.remove("missing")
        assert len(store) == 0

    def test_erase_all_and_list_keys(self):
        store = KeyValueStore({"a": 1, "b": 2})
        assert sorted(store.list_keys()) == ["a", "b"]

        store.erase_all()

        assert store.list_keys() == []

    def test_stats_count_operations(self):
        store = KeyValueStore()
        store.write("a", 1)
        store.read("a")
        store.remove("a")

        stats = store.get_stats()
        assert stats["writes"] == 1
        assert stats["reads"] == 1
        assert stats["removes"] == 1
        assert stats["total_keys"] == 0

    def test_create_store_without_path_is_memory_store(self, tmp_path):
        assert type(create_store()) is KeyValueStore
        assert isinstance(create_store(tmp_path / "s.json"), JsonFileStore)


@pytest.mark.unit
@pytest.mark.store
class TestJsonFileStore:
    """File-backed backend."""

    def test_missing_file_initializes_empty(self, tmp_path):
        store = JsonFileStore(tmp_path / "storage.json")
        store.init()
        assert store.list_keys() == []

    def test_mutations_are_written_to_file(self, tmp_path):
        path = tmp_path / "nested" / "storage.json"
        store = JsonFileStore(path)
        store.init()

        store.write("a", {"data": [1, 2], "timestamp": 0})

        assert json.loads(path.read_text()) == {"a": {"data": [1, 2], "timestamp": 0}}

        store.remove("a")

        assert json.loads(path.read_text()) == {}

    def test_reopening_loads_previous_contents(self, tmp_path):
        path = tmp_path / "storage.json"
        first = JsonFileStore(path)
        first.init()
        first.write("theme", {"data": "dark"})

        second = JsonFileStore(path)
        second.init()

        assert second.read("theme") == {"data": "dark"}

    def test_no_temporary_files_left_behind(self, tmp_path):
        store = JsonFileStore(tmp_path / "storage.json")
        store.init()
        store.write("a", 1)
        store.write("b", 2)

        assert [p.name for p in tmp_path.iterdir()] == ["storage.json"]

    @pytest.mark.edge_case
    def test_unserializable_write_is_rolled_back(self, tmp_path):
        """A rejected write leaves memory and file as they were; later writes still persist."""
        path = tmp_path / "storage.json"
        store = JsonFileStore(path)
        store.init()
        store.write("a", 1)

        with pytest.raises(TypeError):
            store.write("bad", object())
        with pytest.raises(TypeError):
            store.write("a", object())

        assert not store.has("bad")
        assert store.read("a") == 1

        store.write("good", 2)

        assert json.loads(path.read_text()) == {"a": 1, "good": 2}
        assert sorted(p.name for p in tmp_path.iterdir()) == ["storage.json"]

    @pytest.mark.edge_case
    def test_failed_remove_and_erase_restore_previous_contents(self, tmp_path, monkeypatch):
        """Removals that cannot be persisted are undone in memory."""
        store = JsonFileStore(tmp_path / "storage.json")
        store.init()
        store.write("a", 1)
        store.write("b", 2)

        def fail():
            raise OSError("disk full")

        monkeypatch.setattr(store, "_after_mutation", fail)

        with pytest.raises(OSError):
            store.remove("a")
        with pytest.raises(OSError):
            store.erase_all()

        assert store.read("a") == 1
        assert store.read("b") == 2

    @pytest.mark.edge_case
    def test_corrupt_file_raises_initialization_error(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json")

        with pytest.raises(InitializationError):
            JsonFileStore(path).init()

    @pytest.mark.edge_case
    def test_non_object_file_raises_initialization_error(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(InitializationError):
            JsonFileStore(path).init()
