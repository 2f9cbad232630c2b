"""
Key-Value Store Implementation
==============================

Reference backends for the raw key-value store persynx sits on top of.

Any object with ``has``/``read``/``write``/``remove``/``erase_all``/``list_keys``
satisfies `KeyValueBackend`; these two cover the common cases:

- `KeyValueStore`: thread-safe in-memory store with operation statistics.
- `JsonFileStore`: the same store persisted to a single JSON file, rewritten
  atomically after every mutation.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from ..errors import InitializationError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueBackend(Protocol):
    """Interface persynx consumes from the underlying store."""

    def has(self, key: str) -> bool:
        ...

    def read(self, key: str) -> Any:
        ...

    def write(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def erase_all(self) -> None:
        ...

    def list_keys(self) -> List[str]:
        ...


class KeyValueStore:
    """
    In-memory key-value store.

    Features:
    - O(1) has, read, write, remove operations
    - Thread-safe operations
    - Operation statistics

    Usage:
        store = KeyValueStore()
        store.write("key1", {"data": [1, 2, 3]})
        value = store.read("key1")
        store.remove("key1")
    """

    # Sentinel object for "key not found"
    _MISSING = object()

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        """
        Initialize the store.

        Args:
            initial: Optional entries to start with (copied).
        """
        self._data: Dict[str, Any] = dict(initial or {})

        # Thread safety
        self._lock = threading.RLock()

        # Statistics
        self._stats = {
            "reads": 0,
            "writes": 0,
            "removes": 0,
            "erases": 0,
        }

    def init(self) -> None:
        """Prepare the store for use. Nothing to load for memory storage."""
        pass

    def has(self, key: str) -> bool:
        """Check if key exists. O(1) operation."""
        with self._lock:
            return key in self._data

    def read(self, key: str) -> Any:
        """
        Get the stored value for key. O(1) operation.

        Returns:
            The stored value, or None if the key is absent.
        """
        with self._lock:
            self._stats["reads"] += 1
            value = self._data.get(key, self._MISSING)
            if value is self._MISSING:
                return None
            return value

    def write(self, key: str, value: Any) -> None:
        """Set key to value. O(1) operation."""
        with self._lock:
            self._stats["writes"] += 1
            previous = self._data.get(key, self._MISSING)
            self._data[key] = value
            self._commit({key: previous})

    def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is a no-op."""
        with self._lock:
            self._stats["removes"] += 1
            if key in self._data:
                previous = self._data.pop(key)
                self._commit({key: previous})

    def erase_all(self) -> None:
        """Clear all data from store."""
        with self._lock:
            self._stats["erases"] += 1
            previous = dict(self._data)
            self._data.clear()
            self._commit(previous)

    def list_keys(self) -> List[str]:
        """Return all keys."""
        with self._lock:
            return list(self._data.keys())

    def close(self) -> None:
        """Release resources. Memory storage holds none."""
        pass

    def _commit(self, previous: Dict[str, Any]) -> None:
        """
        Persist a mutation, or undo it in memory when persisting fails.

        ``previous`` maps each touched key to its old value (``_MISSING`` if
        it did not exist), so a rejected write leaves no trace behind.
        """
        try:
            self._after_mutation()
        except BaseException:
            for key, value in previous.items():
                if value is self._MISSING:
                    self._data.pop(key, None)
                else:
                    self._data[key] = value
            raise

    def _after_mutation(self) -> None:
        """Hook for subclasses that persist the mapping; called with the lock held."""
        pass

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about store operations."""
        with self._lock:
            stats = self._stats.copy()
            stats["total_keys"] = len(self._data)
            return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(keys={len(self)})"


class JsonFileStore(KeyValueStore):
    """
    Key-value store persisted to one JSON file.

    The file is read once by `init()`; afterwards every mutation rewrites it
    through a temporary file and ``os.replace`` so a crash never leaves a
    half-written file behind. Values must be JSON-serializable, which holds
    for everything the persynx gateway writes.

    Usage:
        store = JsonFileStore("~/.myapp/storage.json")
        store.init()
        store.write("theme", {"data": "dark", "timestamp": 0})
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self._path = Path(path).expanduser()
        self._initialized = False

    @property
    def path(self) -> Path:
        return self._path

    def init(self) -> None:
        """
        Load the file into memory.

        A missing file means an empty store. An unreadable or corrupt file
        raises `InitializationError`.
        """
        with self._lock:
            if self._initialized:
                return
            if self._path.exists():
                try:
                    with self._path.open("r", encoding="utf-8") as handle:
                        loaded = json.load(handle)
                except (OSError, ValueError) as e:
                    raise InitializationError(
                        f"Cannot load storage file {self._path}: {e}"
                    ) from e
                if not isinstance(loaded, dict):
                    raise InitializationError(
                        f"Storage file {self._path} does not contain a JSON object"
                    )
                self._data = loaded
            logger.debug(f"📦 Loaded {len(self._data)} keys from {self._path}")
            self._initialized = True

    def _after_mutation(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle)
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


def create_store(path: Optional[Union[str, Path]] = None) -> KeyValueStore:
    """
    Create a key-value store.

    Args:
        path: JSON file to persist to. None gives a memory-only store.

    Returns:
        Configured store instance (not yet initialized)
    """
    if path is None:
        return KeyValueStore()
    return JsonFileStore(path)
