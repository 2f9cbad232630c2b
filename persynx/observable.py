"""
Observable - Minimal Reactive Values
====================================

Plain in-memory observables that bindings keep in sync with storage.

Anything that looks like `ObservableLike` can be bound, so applications that
already have their own reactive primitive only need to expose ``value``,
``set()`` and ``subscribe()``. The classes here are the batteries-included
version:

- `Observable`: a single value.
- `ObservableList`, `ObservableMap`, `ObservableSet`: containers that notify
  with a snapshot after every mutation.

Subscribers receive the new value. Assigning a value structurally equal to the
current one does not notify.
"""

from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
    runtime_checkable,
)

from .equality import deep_copy, is_different

Callback = Callable[[Any], None]

_MISSING = object()


# ============================================================================
# PROTOCOL
# ============================================================================


@runtime_checkable
class ObservableLike(Protocol):
    """What the binding engine needs from an observable."""

    @property
    def value(self) -> Any:
        ...

    def set(self, new_value: Any) -> None:
        ...

    def subscribe(
        self, callback: Callback, call_immediately: bool = False
    ) -> Callable[[], None]:
        ...


# ============================================================================
# OBSERVABLE
# ============================================================================


class Observable:
    """
    Single reactive value.

    Usage:
        count = Observable("count", 0)
        unsubscribe = count.subscribe(lambda v: print(f"count={v}"))
        count.value = 1      # prints count=1
        count.set(1)         # equal value, no notification
        unsubscribe()
    """

    __slots__ = ("_key", "_value", "_callbacks", "__weakref__")

    def __init__(self, key: str = "", initial_value: Any = None):
        self._key = key
        self._value = initial_value
        self._callbacks: List[Callback] = []

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, new_value: Any):
        if not is_different(self._value, new_value):
            return
        self._value = new_value
        self._emit(new_value)

    def set(self, new_value: Any) -> None:
        """Explicit setter (alias for value property)."""
        self.value = new_value

    def get(self) -> Any:
        """Explicit getter (alias for value property)."""
        return self.value

    def _emit(self, value: Any) -> None:
        # Iterate over a copy so callbacks may subscribe, unsubscribe or set
        for callback in list(self._callbacks):
            callback(value)

    def subscribe(
        self, callback: Callback, call_immediately: bool = False
    ) -> Callable[[], None]:
        """
        Call ``callback`` with every new value.

        Args:
            callback: Receives the new value.
            call_immediately: Also call it once with the current value.

        Returns:
            Unsubscribe function
        """
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        if call_immediately:
            callback(self.value)

        return unsubscribe

    def unsubscribe(self, callback: Callback) -> None:
        """Remove ``callback`` if it is subscribed."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._key}={self.value!r})"


# ============================================================================
# COLLECTION OBSERVABLES
# ============================================================================


class ObservableList(Observable):
    """
    Reactive list. ``value`` is a copy; mutate through the methods.

    Every mutation notifies subscribers once with a snapshot of the list.
    """

    __slots__ = ()

    def __init__(self, key: str = "", initial: Optional[Iterable[Any]] = None):
        super().__init__(key, list(initial or []))

    @property
    def value(self) -> List[Any]:
        return deep_copy(self._value)

    @value.setter
    def value(self, items: Iterable[Any]):
        self.assign(items)

    def _changed(self) -> None:
        self._emit(self.value)

    def assign(self, items: Iterable[Any]) -> None:
        """Replace the whole contents with one notification (none if unchanged)."""
        new_items = list(items or [])
        if not is_different(self._value, new_items):
            return
        self._value = new_items
        self._changed()

    def append(self, item: Any) -> None:
        self._value.append(item)
        self._changed()

    def extend(self, items: Iterable[Any]) -> None:
        items = list(items)
        if not items:
            return
        self._value.extend(items)
        self._changed()

    def insert(self, index: int, item: Any) -> None:
        self._value.insert(index, item)
        self._changed()

    def remove(self, item: Any) -> None:
        self._value.remove(item)
        self._changed()

    def pop(self, index: int = -1) -> Any:
        item = self._value.pop(index)
        self._changed()
        return item

    def clear(self) -> None:
        if not self._value:
            return
        self._value.clear()
        self._changed()

    def sort(self, *, key: Optional[Callable[[Any], Any]] = None, reverse: bool = False) -> None:
        self._value.sort(key=key, reverse=reverse)
        self._changed()

    def __getitem__(self, index):
        return self._value[index]

    def __setitem__(self, index, item) -> None:
        self._value[index] = item
        self._changed()

    def __delitem__(self, index) -> None:
        del self._value[index]
        self._changed()

    def __len__(self) -> int:
        return len(self._value)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._value))

    def __contains__(self, item: Any) -> bool:
        return item in self._value


class ObservableMap(Observable):
    """Reactive dict. ``value`` is a copy; mutate through the methods."""

    __slots__ = ()

    def __init__(self, key: str = "", initial: Optional[Mapping[Any, Any]] = None):
        super().__init__(key, dict(initial or {}))

    @property
    def value(self) -> Dict[Any, Any]:
        return deep_copy(self._value)

    @value.setter
    def value(self, entries: Mapping[Any, Any]):
        self.assign(entries)

    def _changed(self) -> None:
        self._emit(self.value)

    def assign(self, entries: Mapping[Any, Any]) -> None:
        """Replace the whole contents with one notification (none if unchanged)."""
        new_entries = dict(entries or {})
        if not is_different(self._value, new_entries):
            return
        self._value = new_entries
        self._changed()

    def update(self, entries: Mapping[Any, Any]) -> None:
        entries = dict(entries)
        if not entries:
            return
        self._value.update(entries)
        self._changed()

    def pop(self, key: Any, default: Any = _MISSING) -> Any:
        if key not in self._value:
            if default is _MISSING:
                raise KeyError(key)
            return default
        item = self._value.pop(key)
        self._changed()
        return item

    def setdefault(self, key: Any, default: Any = None) -> Any:
        if key in self._value:
            return self._value[key]
        self._value[key] = default
        self._changed()
        return default

    def clear(self) -> None:
        if not self._value:
            return
        self._value.clear()
        self._changed()

    def get_item(self, key: Any, default: Any = None) -> Any:
        return self._value.get(key, default)

    def keys(self):
        return list(self._value.keys())

    def items(self):
        return list(self._value.items())

    def __getitem__(self, key: Any) -> Any:
        return self._value[key]

    def __setitem__(self, key: Any, item: Any) -> None:
        self._value[key] = item
        self._changed()

    def __delitem__(self, key: Any) -> None:
        del self._value[key]
        self._changed()

    def __len__(self) -> int:
        return len(self._value)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._value))

    def __contains__(self, key: Any) -> bool:
        return key in self._value


class ObservableSet(Observable):
    """Reactive set. ``value`` is a copy; mutate through the methods."""

    __slots__ = ()

    def __init__(self, key: str = "", initial: Optional[Iterable[Any]] = None):
        super().__init__(key, set(initial or ()))

    @property
    def value(self) -> Set[Any]:
        return set(self._value)

    @value.setter
    def value(self, items: Iterable[Any]):
        self.assign(items)

    def _changed(self) -> None:
        self._emit(self.value)

    def assign(self, items: Iterable[Any]) -> None:
        """Replace the whole contents with one notification (none if unchanged)."""
        new_items = set(items or ())
        if new_items == self._value:
            return
        self._value = new_items
        self._changed()

    def add(self, item: Any) -> None:
        if item in self._value:
            return
        self._value.add(item)
        self._changed()

    def discard(self, item: Any) -> None:
        if item not in self._value:
            return
        self._value.discard(item)
        self._changed()

    def remove(self, item: Any) -> None:
        self._value.remove(item)
        self._changed()

    def update(self, items: Iterable[Any]) -> None:
        new_items = set(items) - self._value
        if not new_items:
            return
        self._value.update(new_items)
        self._changed()

    def clear(self) -> None:
        if not self._value:
            return
        self._value.clear()
        self._changed()

    def __len__(self) -> int:
        return len(self._value)

    def __iter__(self) -> Iterator[Any]:
        return iter(set(self._value))

    def __contains__(self, item: Any) -> bool:
        return item in self._value


def observable(initial_value: Any = None, key: str = "") -> Observable:
    """
    Create an observable matching the shape of ``initial_value``.

    Lists, dicts and sets get the collection observables; everything else a
    plain `Observable`.
    """
    if isinstance(initial_value, list):
        return ObservableList(key, initial_value)
    if isinstance(initial_value, dict):
        return ObservableMap(key, initial_value)
    if isinstance(initial_value, (set, frozenset)):
        return ObservableSet(key, initial_value)
    return Observable(key, initial_value)


__all__ = [
    "ObservableLike",
    "Observable",
    "ObservableList",
    "ObservableMap",
    "ObservableSet",
    "observable",
]
