"""
Shared pytest fixtures and configuration for persynx tests.
"""

import logging
from dataclasses import dataclass

import pytest

from persynx import KeyValueStore, StorageConfig, StorageSession, dataclass_codec
from persynx.config import PACKAGE_LOGGER_NAME


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FlakyStore(KeyValueStore):
    """In-memory store whose operations can be made to fail on demand."""

    def __init__(self):
        super().__init__()
        self.failing = set()

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise OSError(f"simulated {operation} failure")

    def has(self, key):
        self._maybe_fail("has")
        return super().has(key)

    def read(self, key):
        self._maybe_fail("read")
        return super().read(key)

    def write(self, key, value):
        self._maybe_fail("write")
        super().write(key, value)

    def remove(self, key):
        self._maybe_fail("remove")
        super().remove(key)

    def erase_all(self):
        self._maybe_fail("erase_all")
        super().erase_all()


@dataclass
class Todo:
    id: str
    title: str
    done: bool = False


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Sessions set the package logger level; restore it after each test."""
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    level = package_logger.level
    yield
    package_logger.setLevel(level)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Provide a fresh in-memory backend."""
    return KeyValueStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def session(store, clock):
    """Initialized session over the in-memory backend."""
    session = StorageSession(backend=store, clock=clock).initialize()
    yield session
    session.close()


@pytest.fixture
def encrypted_session(store, clock):
    config = StorageConfig(enable_encryption=True, encryption_key="test-secret")
    session = StorageSession(backend=store, config=config, clock=clock).initialize()
    yield session
    session.close()


@pytest.fixture
def todo_codec():
    return dataclass_codec(Todo)


@pytest.fixture
def todo_cls():
    return Todo
