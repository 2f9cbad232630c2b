"""
Persynx - Reactive Values Persisted to Key-Value Storage

Binds in-memory observables (scalars, lists, maps and sets) to keys of a
persistent key-value store and keeps both sides consistent without update
loops.
"""

# Session API
from .session import StorageSession
from .config import StorageConfig

# Bindings
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

# Codecs
from .codec import (
    BOOLEAN,
    FLOAT,
    INTEGER,
    STRING,
    Codec,
    dataclass_codec,
    mapping_codec,
)

# Lower layers
from .crypto import ENCRYPTED_PREFIX, Cipher, XorHmacCipher
from .equality import deep_copy, is_different, is_same
from .gateway import RawStoreGateway
from .locks import LockStats, UpdateLockRegistry
from .notifications import ChangeEvent, ChangeType, NotificationBus, Subscription

# Observables
from .observable import (
    Observable,
    ObservableLike,
    ObservableList,
    ObservableMap,
    ObservableSet,
    observable,
)

# Exceptions
from .errors import (
    DecodeError,
    InitializationError,
    PersynxError,
    StoreIOError,
    TypeMismatchError,
)

# Backends
from .util.kv_store import JsonFileStore, KeyValueBackend, KeyValueStore

__version__ = "0.1.0"

__all__ = [
    "StorageSession",
    "StorageConfig",
    "Binding",
    "BindingEngine",
    "BindingState",
    "BindOptions",
    "ValueAdapter",
    "ListAdapter",
    "MapAdapter",
    "SetAdapter",
    "Codec",
    "STRING",
    "INTEGER",
    "FLOAT",
    "BOOLEAN",
    "mapping_codec",
    "dataclass_codec",
    "Cipher",
    "XorHmacCipher",
    "ENCRYPTED_PREFIX",
    "is_different",
    "is_same",
    "deep_copy",
    "RawStoreGateway",
    "UpdateLockRegistry",
    "LockStats",
    "NotificationBus",
    "Subscription",
    "ChangeEvent",
    "ChangeType",
    "Observable",
    "ObservableLike",
    "ObservableList",
    "ObservableMap",
    "ObservableSet",
    "observable",
    "PersynxError",
    "DecodeError",
    "StoreIOError",
    "InitializationError",
    "TypeMismatchError",
    "KeyValueBackend",
    "KeyValueStore",
    "JsonFileStore",
]
