"""
Persynx Configuration
=====================

Immutable session configuration, built in code or from ``PERSYNX_*``
environment variables.
"""

import dataclasses
import hashlib
import logging
import os
from typing import Any, Optional

PACKAGE_LOGGER_NAME = "persynx"

# Suffix mixed into the derived encryption key
_KEY_DERIVATION_SUFFIX = "persynx-storage"


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclasses.dataclass(frozen=True)
class StorageConfig:
    """
    Settings for a `StorageSession`.

    Attributes:
        enable_logging: Emit debug logs from the ``persynx`` logger.
        enable_encryption: Encrypt envelopes before they reach the backend.
        encryption_key: Explicit key. When encryption is enabled and no key is
            given, one is derived from ``app_id``.
        app_id: Application identity used for key derivation.
        cache_size: Maximum number of decoded values kept by the gateway.
        track_timing: Log the duration of every sync cycle.
        verbose_logging: Log every item decoded during collection loads.
        storage_path: File used by `JsonFileStore` when the session builds
            its own backend.
    """

    enable_logging: bool = False
    enable_encryption: bool = False
    encryption_key: Optional[str] = None
    app_id: str = "persynx"
    cache_size: int = 1024
    track_timing: bool = False
    verbose_logging: bool = False
    storage_path: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides: Any) -> "StorageConfig":
        """
        Create configuration from environment variables.

        Reads ``PERSYNX_ENABLE_LOGGING``, ``PERSYNX_ENABLE_ENCRYPTION``,
        ``PERSYNX_ENCRYPTION_KEY``, ``PERSYNX_APP_ID``, ``PERSYNX_CACHE_SIZE``,
        ``PERSYNX_TRACK_TIMING``, ``PERSYNX_VERBOSE_LOGGING`` and
        ``PERSYNX_STORAGE_PATH``. Explicit keyword arguments win over the
        environment.
        """
        defaults = cls()
        values = {
            "enable_logging": _env_bool(
                os.environ.get("PERSYNX_ENABLE_LOGGING"), defaults.enable_logging
            ),
            "enable_encryption": _env_bool(
                os.environ.get("PERSYNX_ENABLE_ENCRYPTION"),
                defaults.enable_encryption,
            ),
            "encryption_key": os.environ.get("PERSYNX_ENCRYPTION_KEY")
            or defaults.encryption_key,
            "app_id": os.environ.get("PERSYNX_APP_ID") or defaults.app_id,
            "cache_size": _env_int(
                os.environ.get("PERSYNX_CACHE_SIZE"), defaults.cache_size
            ),
            "track_timing": _env_bool(
                os.environ.get("PERSYNX_TRACK_TIMING"), defaults.track_timing
            ),
            "verbose_logging": _env_bool(
                os.environ.get("PERSYNX_VERBOSE_LOGGING"), defaults.verbose_logging
            ),
            "storage_path": os.environ.get("PERSYNX_STORAGE_PATH")
            or defaults.storage_path,
        }
        values.update(overrides)
        return cls(**values)

    def resolved_encryption_key(self) -> str:
        """
        Return the key the cipher should use.

        Empty when encryption is disabled, which makes the cipher a
        pass-through.
        """
        if not self.enable_encryption:
            return ""
        if self.encryption_key:
            return self.encryption_key
        base = f"{self.app_id}-{_KEY_DERIVATION_SUFFIX}"
        return hashlib.sha256(base.encode("utf-8")).hexdigest()

    def apply_logging(self) -> None:
        """Set the ``persynx`` logger level. Handlers are left to the application."""
        level = logging.DEBUG if self.enable_logging else logging.WARNING
        logging.getLogger(PACKAGE_LOGGER_NAME).setLevel(level)
