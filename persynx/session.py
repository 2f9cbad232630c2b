"""
Storage Session
===============

`StorageSession` owns one backend together with the gateway, lock registry,
notification bus and binding engine that sit on top of it. It is the API
applications use:

    with StorageSession(config=StorageConfig(storage_path="state.json")) as session:
        counter = Observable("counter", 0)
        session.bind("counter", counter, INTEGER, default=0)
        counter.set(5)                        # persisted
        session.get("counter")                # 5

Every operation raises `InitializationError` until `initialize()` has run
(entering the context manager initializes). `close()` unbinds everything.

Failures inside individual operations are recovered rather than raised:
`set` returns False, `get` returns the default and bindings report through
their ``on_error`` hook.
"""

import dataclasses
import logging
from datetime import timedelta
from typing import Any, Callable, Iterable, List, Optional, TypeVar, Union

from .binding import (
    Binding,
    BindingEngine,
    BindingState,
    BindOptions,
    ListAdapter,
    MapAdapter,
    SetAdapter,
    ValueAdapter,
)
from .codec import STRING, Codec
from .config import StorageConfig
from .crypto import Cipher, XorHmacCipher
from .errors import InitializationError, StoreIOError, TypeMismatchError
from .gateway import RawStoreGateway, epoch_ms, expiration_key
from .inspect import StorageEntry, describe_storage
from .locks import UpdateLockRegistry
from .notifications import Listener, NotificationBus, Subscription
from .observable import ObservableLike
from .util.kv_store import KeyValueBackend, create_store

logger = logging.getLogger(__name__)

R = TypeVar("R")

Decoder = Union[Codec, Callable[[Any], Any], None]
Encoder = Union[Codec, Callable[[Any], Any], None]


def _decoder(decode: Decoder) -> Optional[Callable[[Any], Any]]:
    return decode.decode if isinstance(decode, Codec) else decode


def _encoder(encode: Encoder) -> Optional[Callable[[Any], Any]]:
    return encode.encode if isinstance(encode, Codec) else encode


def _ttl_ms(ttl: Union[timedelta, int, float]) -> int:
    """A timedelta, or a number of seconds, as milliseconds."""
    if isinstance(ttl, timedelta):
        return int(ttl.total_seconds() * 1000)
    return int(ttl * 1000)


class StorageSession:
    """
    Explicit context for reactive storage.

    Args:
        backend: Raw key-value store. Defaults to a `JsonFileStore` at
            ``config.storage_path``, or an in-memory store without one.
        config: Session settings. Defaults to `StorageConfig()`.
        cipher: Overrides the cipher derived from the configuration.
        clock: Epoch-millisecond clock, used for envelope timestamps and
            expiration.
    """

    def __init__(
        self,
        backend: Optional[KeyValueBackend] = None,
        config: Optional[StorageConfig] = None,
        cipher: Optional[Cipher] = None,
        clock: Callable[[], int] = epoch_ms,
    ):
        self.config = config or StorageConfig()
        self._backend = backend if backend is not None else create_store(
            self.config.storage_path
        )
        if cipher is None and self.config.enable_encryption:
            cipher = XorHmacCipher(self.config.resolved_encryption_key())
        self._clock = clock

        self._bus = NotificationBus()
        self._locks = UpdateLockRegistry()
        self._gateway = RawStoreGateway(
            self._backend,
            bus=self._bus,
            cipher=cipher,
            cache_size=self.config.cache_size,
            clock=clock,
        )
        self._engine = BindingEngine(self._gateway, self._locks, self._bus, self.config)
        self._initialized = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def initialize(self) -> "StorageSession":
        """
        Prepare the backend. Safe to call more than once.

        Raises:
            InitializationError: The backend could not be loaded.
        """
        if self._initialized:
            return self
        self.config.apply_logging()

        init = getattr(self._backend, "init", None)
        if callable(init):
            try:
                init()
            except InitializationError:
                raise
            except Exception as e:
                raise InitializationError(f"Backend failed to initialize: {e}") from e

        self._initialized = True
        logger.debug(
            f"✅ Session initialized (encryption="
            f"{'on' if self._gateway.encrypted else 'off'})"
        )
        return self

    def close(self) -> None:
        """Unbind every key, drop listeners and release the backend."""
        if not self._initialized:
            return
        self._engine.unbind_all()
        self._bus.clear()
        self._locks.clear()
        close = getattr(self._backend, "close", None)
        if callable(close):
            close()
        self._initialized = False
        logger.debug("👋 Session closed")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def __enter__(self) -> "StorageSession":
        return self.initialize()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise InitializationError(
                "StorageSession is not initialized; call initialize() first"
            )

    # Collaborators, mainly for diagnostics and tests
    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    @property
    def gateway(self) -> RawStoreGateway:
        return self._gateway

    @property
    def bus(self) -> NotificationBus:
        return self._bus

    @property
    def locks(self) -> UpdateLockRegistry:
        return self._locks

    @property
    def engine(self) -> BindingEngine:
        return self._engine

    # ========================================================================
    # BINDINGS
    # ========================================================================

    @staticmethod
    def _options(options: Optional[BindOptions], overrides: dict) -> BindOptions:
        if options is None:
            return BindOptions(**overrides)
        return dataclasses.replace(options, **overrides) if overrides else options

    def bind(
        self,
        key: str,
        observable: ObservableLike,
        codec: Optional[Codec] = None,
        options: Optional[BindOptions] = None,
        **overrides: Any,
    ) -> Binding:
        """
        Bind a single-valued observable to ``key``.

        Keyword arguments are `BindOptions` fields (``default``,
        ``auto_sync``, ``on_update``, ``on_initial_load``, ``on_error``,
        ``on_change``, ``propagate_external``, ``verbose``) and override
        ``options``.
        """
        self._ensure_initialized()
        return self._engine.bind(
            key, observable, ValueAdapter(codec), self._options(options, overrides)
        )

    def bind_list(
        self,
        key: str,
        observable: ObservableLike,
        item_codec: Optional[Codec] = None,
        options: Optional[BindOptions] = None,
        **overrides: Any,
    ) -> Binding:
        """Bind a list observable; items are decoded one by one and bad ones skipped."""
        self._ensure_initialized()
        return self._engine.bind(
            key, observable, ListAdapter(item_codec), self._options(options, overrides)
        )

    def bind_map(
        self,
        key: str,
        observable: ObservableLike,
        value_codec: Optional[Codec] = None,
        key_codec: Codec = STRING,
        options: Optional[BindOptions] = None,
        **overrides: Any,
    ) -> Binding:
        """Bind a dict observable. Keys are stored as strings through ``key_codec``."""
        self._ensure_initialized()
        return self._engine.bind(
            key,
            observable,
            MapAdapter(value_codec, key_codec),
            self._options(options, overrides),
        )

    def bind_set(
        self,
        key: str,
        observable: ObservableLike,
        item_codec: Optional[Codec] = None,
        options: Optional[BindOptions] = None,
        **overrides: Any,
    ) -> Binding:
        """Bind a set observable, stored as a JSON array."""
        self._ensure_initialized()
        return self._engine.bind(
            key, observable, SetAdapter(item_codec), self._options(options, overrides)
        )

    def unbind(self, key: str) -> bool:
        self._ensure_initialized()
        return self._engine.unbind(key)

    def is_bound(self, key: str) -> bool:
        self._ensure_initialized()
        return self._engine.is_bound(key)

    def binding_state(self, key: str) -> BindingState:
        self._ensure_initialized()
        return self._engine.state(key)

    def flush(self, key: str) -> bool:
        """Write the bound observable's current value to storage now."""
        self._ensure_initialized()
        return self._engine.flush(key)

    # ========================================================================
    # VALUES
    # ========================================================================

    def get(
        self,
        key: str,
        decode: Decoder = None,
        default: Any = None,
        expected_type: Optional[type] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Any:
        """
        Read ``key``.

        Args:
            decode: Codec or function applied to the stored value.
            default: Returned when the key is absent or anything fails.
            expected_type: When given, a decoded value of another type is
                reported as `TypeMismatchError` and ``default`` returned.
            on_error: Receives the recovered error.
        """
        self._ensure_initialized()
        try:
            raw = self._gateway.read(key)
        except StoreIOError as e:
            logger.error(f"❌ Could not read {key!r}: {e}")
            self._notify_error(on_error, e)
            return default
        if raw is None:
            return default

        value = raw
        decoder = _decoder(decode)
        if decoder is not None:
            try:
                value = decoder(raw)
            except Exception as e:
                logger.warning(f"⚠️ Could not decode {key!r}: {e}")
                self._notify_error(on_error, e)
                return default

        if expected_type is not None and not isinstance(value, expected_type):
            error = TypeMismatchError(key, expected_type, type(value))
            logger.warning(f"⚠️ {error}")
            self._notify_error(on_error, error)
            return default
        return value

    def set(self, key: str, value: Any, encode: Encoder = None) -> bool:
        """
        Write ``value`` under ``key``.

        Returns:
            True on success, False if encoding or the store failed.
        """
        self._ensure_initialized()
        encoder = _encoder(encode)
        try:
            raw = encoder(value) if encoder is not None else value
            self._gateway.write(key, raw)
        except Exception as e:
            logger.error(f"❌ Could not write {key!r}: {e}")
            return False
        return True

    def has_key(self, key: str) -> bool:
        self._ensure_initialized()
        try:
            return self._gateway.has(key)
        except StoreIOError as e:
            logger.error(f"❌ Could not check {key!r}: {e}")
            return False

    def remove(self, key: str) -> bool:
        """Delete ``key`` and its expiration record."""
        self._ensure_initialized()
        try:
            self._gateway.remove(key)
            self._gateway.remove(expiration_key(key))
        except StoreIOError as e:
            logger.error(f"❌ Could not remove {key!r}: {e}")
            return False
        return True

    def clear_all(self) -> bool:
        self._ensure_initialized()
        try:
            self._gateway.erase_all()
        except StoreIOError as e:
            logger.error(f"❌ Could not clear storage: {e}")
            return False
        return True

    def keys(self) -> List[str]:
        self._ensure_initialized()
        return self._gateway.list_keys()

    @staticmethod
    def _notify_error(callback: Optional[Callable[[Exception], None]], error: Exception):
        if callback is None:
            return
        try:
            callback(error)
        except Exception:
            logger.exception("❌ on_error callback failed")

    # ========================================================================
    # EXPIRATION
    # ========================================================================

    def set_with_expiration(
        self,
        key: str,
        value: Any,
        ttl: Union[timedelta, int, float],
        encode: Encoder = None,
    ) -> bool:
        """
        Write ``value`` and an expiration record ``ttl`` from now.

        ``ttl`` is a timedelta or a number of seconds. The record is written
        first, so a failed value write leaves at most a dangling record.
        """
        self._ensure_initialized()
        deadline = self._clock() + _ttl_ms(ttl)
        try:
            self._gateway.write(expiration_key(key), deadline)
        except StoreIOError as e:
            logger.error(f"❌ Could not write expiration for {key!r}: {e}")
            return False
        return self.set(key, value, encode)

    def get_expiration(self, key: str) -> Optional[int]:
        """Deadline of ``key`` in epoch milliseconds, or None if it never expires."""
        self._ensure_initialized()
        try:
            deadline = self._gateway.read(expiration_key(key))
        except StoreIOError as e:
            logger.error(f"❌ Could not read expiration for {key!r}: {e}")
            return None
        if isinstance(deadline, bool) or not isinstance(deadline, (int, float)):
            return None
        return int(deadline)

    def get_with_expiration(
        self, key: str, decode: Decoder = None, default: Any = None
    ) -> Any:
        """Read ``key`` unless its deadline passed; expired entries are evicted."""
        self._ensure_initialized()
        deadline = self.get_expiration(key)
        if deadline is not None and self._clock() > deadline:
            logger.debug(f"⌛ {key!r} expired, removing")
            self.remove(key)
            return default
        return self.get(key, decode, default)

    # ========================================================================
    # NOTIFICATIONS
    # ========================================================================

    def on_change(self, key: str, listener: Listener) -> Subscription:
        """
        Call ``listener(old, new)`` whenever ``key`` changes in storage.

        Returns:
            Subscription; call it (or its ``unsubscribe``) to stop listening.
        """
        self._ensure_initialized()
        return self._bus.subscribe(key, listener)

    def _read_quietly(self, key: str) -> Any:
        try:
            return self._gateway.read(key)
        except StoreIOError as e:
            logger.error(f"❌ Could not read {key!r}: {e}")
            return None

    def without_notifications(
        self, action: Callable[[], R], notify_keys_after: Iterable[str] = ()
    ) -> R:
        """
        Run ``action`` with storage notifications disabled.

        Afterwards each key in ``notify_keys_after`` whose value changed gets
        one notification from its value before the batch to its value after.
        """
        self._ensure_initialized()
        return self._bus.with_suppressed(action, self._read_quietly, notify_keys_after)

    # ========================================================================
    # LIST HELPERS
    # ========================================================================

    def save_list(self, key: str, items: Iterable[Any], codec: Optional[Codec] = None) -> bool:
        """Store ``items`` as an array. An empty list removes the key."""
        self._ensure_initialized()
        items = list(items)
        if not items:
            return self.remove(key)
        encode = codec.encode if codec is not None else None
        try:
            raw = [encode(item) for item in items] if encode else items
        except Exception as e:
            logger.error(f"❌ Could not encode list {key!r}: {e}")
            return False
        return self.set(key, raw)

    def load_list(self, key: str, codec: Optional[Codec] = None) -> List[Any]:
        """Load an array, skipping items that fail to decode."""
        self._ensure_initialized()
        raw = self.get(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning(f"⚠️ Value for {key!r} is not a list")
            return []
        return ListAdapter(codec).decode(raw)

    def add_item_to_list(self, key: str, item: Any, codec: Optional[Codec] = None) -> bool:
        items = self.load_list(key, codec)
        items.append(item)
        return self.save_list(key, items, codec)

    def remove_item_from_list(
        self, key: str, predicate: Callable[[Any], bool], codec: Optional[Codec] = None
    ) -> bool:
        """Remove every item matching ``predicate``."""
        items = self.load_list(key, codec)
        kept = [item for item in items if not predicate(item)]
        if len(kept) == len(items):
            return False
        return self.save_list(key, kept, codec)

    def update_item_in_list(
        self,
        key: str,
        predicate: Callable[[Any], bool],
        update: Callable[[Any], Any],
        codec: Optional[Codec] = None,
    ) -> bool:
        """Replace every item matching ``predicate`` with ``update(item)``."""
        items = self.load_list(key, codec)
        changed = False
        for index, item in enumerate(items):
            if predicate(item):
                items[index] = update(item)
                changed = True
        if not changed:
            return False
        return self.save_list(key, items, codec)

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def now(self) -> int:
        """Current time of the session clock, in epoch milliseconds."""
        return self._clock()

    def describe(self) -> List[StorageEntry]:
        """Snapshot of every stored entry; see `persynx.inspect`."""
        self._ensure_initialized()
        return describe_storage(self)

    def __repr__(self) -> str:
        state = "initialized" if self._initialized else "closed"
        return f"StorageSession({state}, bindings={len(self._engine.keys())})"


__all__ = ["StorageSession"]
