"""
Persynx Errors
==============

Exception hierarchy shared by every persynx component.

Only `InitializationError` is meant to stop a caller: the others are recovered
locally (default values, ``None`` results, ``False`` return values) and are
handed to ``on_error`` hooks so callers can still observe them.
"""

from typing import Any, Optional


class PersynxError(Exception):
    """Base exception for all persynx errors."""

    pass


class DecodeError(PersynxError):
    """A stored raw value could not be converted to the target type."""

    def __init__(self, message: str, key: Optional[str] = None, raw: Any = None):
        self.key = key
        self.raw = raw
        super().__init__(message)


class StoreIOError(PersynxError):
    """The underlying key-value store failed to read or write."""

    def __init__(self, message: str, key: Optional[str] = None, operation: str = ""):
        self.key = key
        self.operation = operation
        super().__init__(message)


class InitializationError(PersynxError):
    """The store was used before it was initialized, or could not be initialized."""

    pass


class TypeMismatchError(PersynxError):
    """A decoded value does not have the type the caller asked for."""

    def __init__(self, key: str, expected: type, actual: type):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Type mismatch for key {key!r}: expected {expected.__name__}, "
            f"got {actual.__name__}"
        )


__all__ = [
    "PersynxError",
    "DecodeError",
    "StoreIOError",
    "InitializationError",
    "TypeMismatchError",
]
