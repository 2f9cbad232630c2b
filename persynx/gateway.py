"""
Raw Store Gateway
=================

The only component that talks to the key-value backend.

Values are written inside an envelope, ``{"data": <value>, "timestamp":
<epoch-ms>}``; with a cipher configured the envelope is serialized to JSON,
encrypted and stored as ``"ENCRYPTED:" + ciphertext``.

Reads are tolerant of the formats older versions left behind and try, in
order:

1. an already-structured value (an envelope mapping or a bare value),
2. a JSON string holding an object or array (unwrapped if it is an envelope),
3. an encrypted blob carrying the marker prefix.

When none of these decode, the raw value is returned as-is. Malformed data
never raises; backend failures surface as `StoreIOError`.

Decoded values are kept in an LRU cache and handed out as copies, so callers
can mutate what they get back without touching the cache.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from cachetools import LRUCache

from .crypto import ENCRYPTED_PREFIX, Cipher
from .equality import deep_copy, is_different
from .errors import PersynxError, StoreIOError
from .notifications import ChangeEvent, ChangeType, NotificationBus
from .util.kv_store import KeyValueBackend

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = frozenset({"data", "timestamp"})

# Sibling key holding a value's epoch-ms deadline
EXPIRATION_SUFFIX = "_expiration"


def expiration_key(key: str) -> str:
    return f"{key}{EXPIRATION_SUFFIX}"


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def wrap_envelope(value: Any, timestamp: int) -> Dict[str, Any]:
    return {"data": value, "timestamp": timestamp}


def is_envelope(value: Any) -> bool:
    """A mapping with a ``data`` key and nothing besides ``data``/``timestamp``."""
    return (
        isinstance(value, Mapping)
        and "data" in value
        and _ENVELOPE_KEYS.issuperset(value.keys())
    )


def unwrap_envelope(value: Any) -> Any:
    return value["data"] if is_envelope(value) else value


class RawStoreGateway:
    """
    Envelope, encryption and cache layer over a `KeyValueBackend`.

    Usage:
        gateway = RawStoreGateway(KeyValueStore(), bus=NotificationBus())
        gateway.write("counter", 5)
        gateway.read("counter")  # 5
        gateway.remove("counter")
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        bus: Optional[NotificationBus] = None,
        cipher: Optional[Cipher] = None,
        cache_size: int = 1024,
        clock: Callable[[], int] = epoch_ms,
    ):
        """
        Args:
            backend: Raw key-value store.
            bus: Receives SET/DELETE/CLEAR events. None disables events.
            cipher: Encrypts serialized envelopes. None stores them in clear.
            cache_size: Maximum number of decoded values cached.
            clock: Epoch-millisecond clock used for envelope timestamps.
        """
        self._backend = backend
        self._bus = bus
        self._cipher = cipher
        self._clock = clock
        self._cache: LRUCache = LRUCache(maxsize=max(cache_size, 1))
        self._lock = threading.RLock()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    @property
    def encrypted(self) -> bool:
        return self._cipher is not None

    # ========================================================================
    # BACKEND ACCESS
    # ========================================================================

    def _call(self, operation: str, key: Optional[str], fn: Callable, *args: Any) -> Any:
        """Invoke a backend method, reporting any failure as `StoreIOError`."""
        try:
            return fn(*args)
        except PersynxError:
            raise
        except Exception as e:
            target = f" for key {key!r}" if key is not None else ""
            raise StoreIOError(
                f"Store {operation} failed{target}: {e}", key=key, operation=operation
            ) from e

    # ========================================================================
    # ENCODING
    # ========================================================================

    def _encode(self, value: Any) -> Any:
        envelope = wrap_envelope(deep_copy(value), self._clock())
        if self._cipher is None:
            return envelope
        payload = json.dumps(envelope)
        return ENCRYPTED_PREFIX + self._cipher.encrypt(payload)

    def _decode(self, key: str, raw: Any) -> Any:
        if not isinstance(raw, str):
            return unwrap_envelope(raw)

        stripped = raw.strip()
        if stripped[:1] in ("{", "["):
            try:
                return unwrap_envelope(json.loads(stripped))
            except ValueError:
                logger.debug(f"🔎 Value for {key!r} looks like JSON but does not parse")

        if raw.startswith(ENCRYPTED_PREFIX):
            if self._cipher is None:
                logger.warning(f"⚠️ Encrypted value for {key!r} but no cipher configured")
                return raw
            plain = self._cipher.decrypt(raw[len(ENCRYPTED_PREFIX) :])
            try:
                return unwrap_envelope(json.loads(plain))
            except ValueError:
                logger.warning(f"⚠️ Could not decode encrypted value for {key!r}")
                return raw

        return raw

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def _watched(self, key: str) -> bool:
        return self._bus is not None and self._bus.has_listeners(key)

    def has(self, key: str) -> bool:
        return bool(self._call("has", key, self._backend.has, key))

    def read(self, key: str) -> Any:
        """
        Return the decoded value for ``key``, or None when it has no entry.
        """
        with self._lock:
            if key in self._cache:
                return deep_copy(self._cache[key])

            if not self._call("has", key, self._backend.has, key):
                return None
            raw = self._call("read", key, self._backend.read, key)
            if raw is None:
                return None

            value = self._decode(key, raw)
            self._cache[key] = deep_copy(value)
            return value

    def write(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key`` inside a fresh envelope."""
        watched = self._watched(key)
        with self._lock:
            old_value = self.read(key) if watched else None
            self._cache.pop(key, None)
            self._call("write", key, self._backend.write, key, self._encode(value))
            self._cache[key] = deep_copy(value)

        if watched and is_different(old_value, value):
            self._bus.notify(ChangeEvent(key, ChangeType.SET, old_value, deep_copy(value)))

    def remove(self, key: str) -> None:
        """Delete ``key``. Removing an absent key is a no-op."""
        watched = self._watched(key)
        with self._lock:
            old_value = self.read(key) if watched else None
            self._cache.pop(key, None)
            self._call("remove", key, self._backend.remove, key)

        if watched and old_value is not None:
            self._bus.notify(ChangeEvent(key, ChangeType.DELETE, old_value, None))

    def erase_all(self) -> None:
        """Delete every key, emitting CLEAR for each watched key that had a value."""
        with self._lock:
            previous: Dict[str, Any] = {}
            for key in self.list_keys():
                if self._watched(key):
                    previous[key] = self.read(key)
            self._cache.clear()
            self._call("erase_all", None, self._backend.erase_all)

        for key, old_value in previous.items():
            if old_value is not None:
                self._bus.notify(ChangeEvent(key, ChangeType.CLEAR, old_value, None))

    def list_keys(self) -> List[str]:
        return list(self._call("list_keys", None, self._backend.list_keys))

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop cached values (one key, or all) so the next read hits the backend."""
        with self._lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    def cache_info(self) -> Dict[str, int]:
        with self._lock:
            return {"cached": len(self._cache), "maxsize": int(self._cache.maxsize)}


__all__ = [
    "RawStoreGateway",
    "epoch_ms",
    "expiration_key",
    "EXPIRATION_SUFFIX",
    "wrap_envelope",
    "unwrap_envelope",
    "is_envelope",
]
