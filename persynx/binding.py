"""
Binding Engine
==============

Keeps one observable and one storage key consistent in both directions.

Per key a binding walks through::

    UNBOUND -> LOADING -> LOADED | LOAD_FAILED -> SYNCING -> UNBOUND

Loading reads the stored value, decodes it through the binding's adapter and
assigns it to the observable (falling back to the default and persisting it
when nothing usable is stored). Syncing writes every observable change back to
storage. With ``propagate_external`` the binding also listens on the
notification bus and pushes changes made by anyone else into the observable.

Loops are broken by the per-key `UpdateLockRegistry`: every sync cycle, the
initial load and every external propagation run with the key locked, and the
observable subscription skips changes that arrive while the key is locked.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from .codec import STRING, Codec
from .config import StorageConfig
from .equality import deep_copy, is_different
from .errors import DecodeError, StoreIOError
from .gateway import RawStoreGateway
from .locks import UpdateLockRegistry
from .notifications import NotificationBus, Subscription
from .observable import ObservableLike

logger = logging.getLogger(__name__)

# Log prefixes
LOAD_LOG_PREFIX = "📥 Loaded"
SYNC_LOG_PREFIX = "💾 Synced"
EXTERNAL_LOG_PREFIX = "🔄 External change"
TIMING_LOG_PREFIX = "⏱️"

ErrorCallback = Callable[[Exception], None]


class BindingState(Enum):
    """Lifecycle state of one key's binding."""

    UNBOUND = "unbound"
    LOADING = "loading"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"
    SYNCING = "syncing"


@dataclass
class BindOptions:
    """
    Per-binding behaviour.

    Attributes:
        default: Value used when nothing usable is stored. None means no default.
        auto_sync: Write observable changes back to storage.
        on_update: Called with the value after each write caused by the observable.
        on_initial_load: Called once with the loaded value (or default, or None).
        on_error: Receives every error the binding recovers from.
        on_change: Called with (old, new) after an external change was applied.
        propagate_external: Push storage changes made elsewhere into the observable.
        verbose: Log every item decoded during collection loads.
    """

    default: Any = None
    auto_sync: bool = True
    on_update: Optional[Callable[[Any], None]] = None
    on_initial_load: Optional[Callable[[Any], None]] = None
    on_error: Optional[ErrorCallback] = None
    on_change: Optional[Callable[[Any, Any], None]] = None
    propagate_external: bool = False
    verbose: bool = False


# ============================================================================
# ADAPTERS
# ============================================================================


class ValueAdapter:
    """Codec wrapper for a scalar (or any single-valued) binding."""

    kind = "value"

    def __init__(self, codec: Optional[Codec] = None):
        self.codec = codec or Codec.identity()

    def encode(self, value: Any) -> Any:
        return self.codec.encode(value)

    def decode(
        self,
        raw: Any,
        on_item_error: Optional[ErrorCallback] = None,
        verbose: bool = False,
    ) -> Any:
        return _decode_one(self.codec, raw)

    def empty(self) -> Any:
        """Value pushed into the observable when the key is removed and no default exists."""
        return None


def _decode_one(codec: Codec, raw: Any) -> Any:
    try:
        return codec.decode(raw)
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f"{codec.name} decode failed: {e}", raw=raw) from e


def _stable_order(items: List[Any]) -> List[Any]:
    try:
        return sorted(items)
    except TypeError:
        # Mixed item types: keep the set's iteration order
        return items


class _ItemAdapter:
    """Shared per-item decode loop for collection adapters."""

    kind = "collection"

    def __init__(self, item_codec: Optional[Codec] = None):
        self.item_codec = item_codec or Codec.identity()

    def _check_array(self, raw: Any) -> List[Any]:
        if isinstance(raw, (list, tuple)):
            return list(raw)
        raise DecodeError(
            f"Expected a JSON array for {self.kind} binding, got {type(raw).__name__}",
            raw=raw,
        )

    def _decode_items(
        self,
        raw_items: List[Any],
        on_item_error: Optional[ErrorCallback],
        verbose: bool,
    ) -> List[Any]:
        decoded = []
        for index, raw_item in enumerate(raw_items):
            try:
                item = _decode_one(self.item_codec, raw_item)
            except DecodeError as e:
                logger.warning(f"⚠️ Skipping item {index}: {e}")
                if on_item_error is not None:
                    on_item_error(e)
                continue
            if verbose:
                logger.debug(f"   item {index}: {item!r}")
            decoded.append(item)
        return decoded


class ListAdapter(_ItemAdapter):
    kind = "list"

    def encode(self, value: Any) -> List[Any]:
        return [self.item_codec.encode(item) for item in value]

    def decode(
        self,
        raw: Any,
        on_item_error: Optional[ErrorCallback] = None,
        verbose: bool = False,
    ) -> List[Any]:
        return self._decode_items(self._check_array(raw), on_item_error, verbose)

    def empty(self) -> List[Any]:
        return []


class SetAdapter(_ItemAdapter):
    """Sets are stored as JSON arrays, sorted when the items allow it."""

    kind = "set"

    def encode(self, value: Any) -> List[Any]:
        return _stable_order([self.item_codec.encode(item) for item in value])

    def decode(
        self,
        raw: Any,
        on_item_error: Optional[ErrorCallback] = None,
        verbose: bool = False,
    ) -> Set[Any]:
        if isinstance(raw, (set, frozenset)):
            raw = list(raw)
        return set(self._decode_items(self._check_array(raw), on_item_error, verbose))

    def empty(self) -> Set[Any]:
        return set()


class MapAdapter:
    """
    Maps are stored as JSON objects, so keys go through a key codec whose
    encoded form is turned into a string.
    """

    kind = "map"

    def __init__(self, value_codec: Optional[Codec] = None, key_codec: Codec = STRING):
        self.value_codec = value_codec or Codec.identity()
        self.key_codec = key_codec

    def encode(self, value: Mapping[Any, Any]) -> Dict[str, Any]:
        return {
            str(self.key_codec.encode(k)): self.value_codec.encode(v)
            for k, v in value.items()
        }

    def decode(
        self,
        raw: Any,
        on_item_error: Optional[ErrorCallback] = None,
        verbose: bool = False,
    ) -> Dict[Any, Any]:
        if not isinstance(raw, Mapping):
            raise DecodeError(
                f"Expected a JSON object for map binding, got {type(raw).__name__}",
                raw=raw,
            )
        decoded = {}
        for raw_key, raw_value in raw.items():
            try:
                entry_key = _decode_one(self.key_codec, raw_key)
                entry_value = _decode_one(self.value_codec, raw_value)
            except DecodeError as e:
                logger.warning(f"⚠️ Skipping entry {raw_key!r}: {e}")
                if on_item_error is not None:
                    on_item_error(e)
                continue
            if verbose:
                logger.debug(f"   entry {entry_key!r}: {entry_value!r}")
            decoded[entry_key] = entry_value
        return decoded

    def empty(self) -> Dict[Any, Any]:
        return {}


# ============================================================================
# BINDING
# ============================================================================


@dataclass(eq=False)
class Binding:
    """One active key <-> observable link and the handles to tear it down."""

    key: str
    observable: ObservableLike
    adapter: Any
    options: BindOptions
    state: BindingState = BindingState.UNBOUND
    unsubscribe_observable: Optional[Callable[[], None]] = None
    bus_subscription: Optional[Subscription] = None
    writes: int = 0
    errors: List[Exception] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return self.adapter.kind

    def dispose(self) -> None:
        """Remove the observable subscription and the storage listener."""
        if self.unsubscribe_observable is not None:
            self.unsubscribe_observable()
            self.unsubscribe_observable = None
        if self.bus_subscription is not None:
            self.bus_subscription.unsubscribe()
            self.bus_subscription = None
        self.state = BindingState.UNBOUND


class BindingEngine:
    """
    Registry of active bindings plus the load and sync logic.

    Usage:
        engine = BindingEngine(gateway, UpdateLockRegistry(), bus)
        counter = Observable("counter", 0)
        engine.bind("counter", counter, ValueAdapter(INTEGER), BindOptions(default=0))
        counter.set(5)  # persisted
        engine.unbind("counter")
    """

    def __init__(
        self,
        gateway: RawStoreGateway,
        locks: UpdateLockRegistry,
        bus: NotificationBus,
        config: Optional[StorageConfig] = None,
    ):
        self._gateway = gateway
        self._locks = locks
        self._bus = bus
        self._config = config or StorageConfig()
        self._bindings: Dict[str, Binding] = {}
        # (key, thread) pairs with an engine write in progress; bus events
        # raised on that thread for that key are our own
        self._propagating: Set[Tuple[str, int]] = set()
        self._lock = threading.RLock()

    # ========================================================================
    # REGISTRY
    # ========================================================================

    def get(self, key: str) -> Optional[Binding]:
        with self._lock:
            return self._bindings.get(key)

    def is_bound(self, key: str) -> bool:
        return self.get(key) is not None

    def state(self, key: str) -> BindingState:
        binding = self.get(key)
        return binding.state if binding is not None else BindingState.UNBOUND

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._bindings.keys())

    def _is_current(self, binding: Binding) -> bool:
        with self._lock:
            return self._bindings.get(binding.key) is binding

    # ========================================================================
    # BIND / UNBIND
    # ========================================================================

    def bind(
        self,
        key: str,
        observable: ObservableLike,
        adapter: Any,
        options: Optional[BindOptions] = None,
    ) -> Binding:
        """
        Bind ``observable`` to ``key`` and load the stored value into it.

        An existing binding for ``key`` is torn down first. Subscriptions are
        installed before the initial assignment; the assignment itself runs
        with the key locked so it is never written back.
        """
        options = options or BindOptions()
        binding = Binding(key=key, observable=observable, adapter=adapter, options=options)

        with self._lock:
            previous = self._bindings.get(key)
            if previous is not None:
                logger.debug(f"🔁 Rebinding {key!r}, tearing down previous binding")
                previous.dispose()
            self._bindings[key] = binding

        if options.auto_sync:
            binding.unsubscribe_observable = observable.subscribe(
                lambda value: self._on_observable_change(binding, value)
            )
        if options.propagate_external:
            binding.bus_subscription = self._bus.subscribe(
                key, lambda old, new: self._on_external_change(binding, old, new)
            )

        with self._locks.hold(key):
            self._load(binding)

        if options.auto_sync and self._is_current(binding):
            binding.state = BindingState.SYNCING
        return binding

    def unbind(self, key: str) -> bool:
        """Tear down the binding for ``key``. Returns False if none existed."""
        with self._lock:
            binding = self._bindings.pop(key, None)
        if binding is None:
            return False
        binding.dispose()
        logger.debug(f"🔓 Unbound {key!r}")
        return True

    def unbind_all(self) -> None:
        for key in self.keys():
            self.unbind(key)

    # ========================================================================
    # LOADING
    # ========================================================================

    def _load(self, binding: Binding) -> None:
        key = binding.key
        options = binding.options
        binding.state = BindingState.LOADING

        try:
            raw = self._gateway.read(key) if self._gateway.has(key) else None
        except StoreIOError as e:
            logger.error(f"❌ Could not load {key!r}: {e}")
            binding.state = BindingState.LOAD_FAILED
            self._report(binding, e)
            self._fire(binding, options.on_initial_load, None)
            return

        if raw is None:
            if options.default is not None:
                self._apply_default(binding)
            else:
                self._fire(binding, options.on_initial_load, None)
            binding.state = BindingState.LOADED
            return

        verbose = options.verbose or self._config.verbose_logging
        try:
            decoded = binding.adapter.decode(
                raw, lambda e: self._report(binding, e), verbose
            )
        except DecodeError as e:
            e.key = key
            logger.warning(f"⚠️ Stored value for {key!r} could not be decoded: {e}")
            binding.state = BindingState.LOAD_FAILED
            self._report(binding, e)
            if options.default is not None:
                self._apply_default(binding)
            else:
                self._fire(binding, options.on_initial_load, None)
            return

        if is_different(binding.observable.value, decoded):
            binding.observable.set(decoded)
        binding.state = BindingState.LOADED
        logger.debug(f"{LOAD_LOG_PREFIX} {key!r} ({binding.kind})")
        self._fire(binding, options.on_initial_load, decoded)

    def _apply_default(self, binding: Binding) -> None:
        """Assign the default, persist it once and report it as the loaded value."""
        default = deep_copy(binding.options.default)
        if is_different(binding.observable.value, default):
            binding.observable.set(default)
        try:
            self._write(binding, binding.adapter.encode(default))
        except Exception as e:
            logger.error(f"❌ Could not persist default for {binding.key!r}: {e}")
            self._report(binding, e)
        self._fire(binding, binding.options.on_initial_load, default)

    # ========================================================================
    # SYNCING
    # ========================================================================

    def _on_observable_change(self, binding: Binding, value: Any) -> None:
        if not self._is_current(binding):
            return
        self._locks.with_lock(binding.key, lambda: self._sync(binding, value))

    def _sync(self, binding: Binding, value: Any) -> bool:
        """
        One observable -> storage cycle. Caller holds the key lock.

        Returns:
            True if a write happened.
        """
        key = binding.key
        started = time.perf_counter()
        try:
            encoded = binding.adapter.encode(value)
            stored = self._gateway.read(key)
            if not is_different(stored, encoded):
                return False
            self._write(binding, encoded)
        except Exception as e:
            logger.error(f"❌ Sync failed for {key!r}: {e}")
            self._report(binding, e)
            return False

        logger.debug(f"{SYNC_LOG_PREFIX} {key!r}")
        self._fire(binding, binding.options.on_update, value)
        if self._config.track_timing:
            elapsed = (time.perf_counter() - started) * 1000
            logger.debug(f"{TIMING_LOG_PREFIX} Sync of {key!r} took {elapsed:.2f} ms")
        return True

    def _write(self, binding: Binding, encoded: Any) -> None:
        marker = (binding.key, threading.get_ident())
        self._propagating.add(marker)
        try:
            self._gateway.write(binding.key, encoded)
            binding.writes += 1
        finally:
            self._propagating.discard(marker)

    def flush(self, key: str) -> bool:
        """
        Write the bound observable's current value now.

        Returns:
            True if a write happened; False when unchanged, locked or unbound.
        """
        binding = self.get(key)
        if binding is None:
            return False
        result = self._locks.with_lock(
            key, lambda: self._sync(binding, binding.observable.value)
        )
        return bool(result)

    # ========================================================================
    # EXTERNAL PROPAGATION
    # ========================================================================

    def _on_external_change(self, binding: Binding, old: Any, new: Any) -> None:
        key = binding.key
        if (key, threading.get_ident()) in self._propagating:
            return
        if not self._is_current(binding):
            return
        self._locks.with_lock(key, lambda: self._apply_external(binding, new))

    def _apply_external(self, binding: Binding, new_raw: Any) -> None:
        options = binding.options
        if new_raw is None:
            if options.default is not None:
                value = deep_copy(options.default)
            else:
                value = binding.adapter.empty()
                if value is None:
                    # Scalar without default: keep the current value
                    return
        else:
            verbose = options.verbose or self._config.verbose_logging
            try:
                value = binding.adapter.decode(
                    new_raw, lambda e: self._report(binding, e), verbose
                )
            except DecodeError as e:
                e.key = binding.key
                logger.warning(f"⚠️ External value for {binding.key!r} ignored: {e}")
                self._report(binding, e)
                return

        previous = binding.observable.value
        if not is_different(previous, value):
            return
        binding.observable.set(value)
        logger.debug(f"{EXTERNAL_LOG_PREFIX} applied to {binding.key!r}")
        self._fire(binding, options.on_change, previous, value)

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def _report(self, binding: Binding, error: Exception) -> None:
        binding.errors.append(error)
        if binding.options.on_error is not None:
            self._fire(binding, binding.options.on_error, error)

    def _fire(self, binding: Binding, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"❌ Callback for {binding.key!r} failed")


__all__ = [
    "BindingState",
    "BindOptions",
    "Binding",
    "BindingEngine",
    "ValueAdapter",
    "ListAdapter",
    "MapAdapter",
    "SetAdapter",
]
