"""
Persynx Utils - Key-Value Backends
==================================

Reference implementations of the raw key-value store a session persists to.

Classes:
- KeyValueBackend: Protocol every backend satisfies
- KeyValueStore: Thread-safe in-memory store
- JsonFileStore: In-memory store mirrored to a JSON file
"""

from .kv_store import JsonFileStore, KeyValueBackend, KeyValueStore, create_store

__all__ = ["KeyValueBackend", "KeyValueStore", "JsonFileStore", "create_store"]
