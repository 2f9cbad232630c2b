"""
Persynx Crypto - Pluggable Payload Transform
============================================

The gateway only needs a string-to-string transform with an exact inverse.
`XorHmacCipher` is the built-in one: the UTF-8 payload is XORed with the
repeating key, base64-encoded and followed by the hex HMAC-SHA256 of the
plaintext, e.g. ``"aGVsbG8=.5d41..."``.

This is obfuscation with integrity checking, not confidentiality against a
determined attacker. Plug in a real cipher through the `Cipher` protocol
when that matters.
"""

import base64
import binascii
import hashlib
import hmac
import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENCRYPTED:"


@runtime_checkable
class Cipher(Protocol):
    """String transform applied to serialized envelopes."""

    def encrypt(self, text: str) -> str:
        ...

    def decrypt(self, text: str) -> str:
        ...


class XorHmacCipher:
    """
    Deterministic keyed XOR transform with an HMAC-SHA256 tag.

    An empty key turns both directions into pass-throughs. Decryption never
    raises: anything that fails to decode or verify comes back unchanged.
    """

    def __init__(self, key: str = ""):
        self._key = key.encode("utf-8")

    @property
    def enabled(self) -> bool:
        return bool(self._key)

    def _xor(self, data: bytes) -> bytes:
        key = self._key
        return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))

    def _digest(self, data: bytes) -> str:
        return hmac.new(self._key, data, hashlib.sha256).hexdigest()

    def encrypt(self, text: str) -> str:
        if not self.enabled:
            return text
        plain = text.encode("utf-8")
        encoded = base64.b64encode(self._xor(plain)).decode("ascii")
        return f"{encoded}.{self._digest(plain)}"

    def decrypt(self, text: str) -> str:
        if not self.enabled:
            return text

        parts = text.split(".")
        if len(parts) != 2:
            logger.warning("⚠️ Decryption skipped: payload is not in cipher format")
            return text

        encoded, digest = parts
        try:
            plain = self._xor(base64.b64decode(encoded, validate=True))
            decoded = plain.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            logger.warning(f"⚠️ Decryption error: {e}")
            return text

        if not hmac.compare_digest(self._digest(plain), digest):
            logger.warning("⚠️ Decryption error: integrity check failed")
            return text
        return decoded


__all__ = ["Cipher", "XorHmacCipher", "ENCRYPTED_PREFIX"]
