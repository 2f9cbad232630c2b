"""Unit tests for the XOR + HMAC cipher."""

import base64

import pytest

from persynx import Cipher, XorHmacCipher


@pytest.mark.unit
class TestXorHmacCipher:
    """Encryption format and verification."""

    def test_satisfies_cipher_protocol(self):
        assert isinstance(XorHmacCipher("k"), Cipher)

    def test_encrypt_produces_base64_dot_hex_digest(self):
        """Ciphertext is base64 payload, a dot and a 64-char hex HMAC."""
        encrypted = XorHmacCipher("secret").encrypt('{"data": 1}')

        payload, digest = encrypted.split(".")
        base64.b64decode(payload, validate=True)
        assert len(digest) == 64
        int(digest, 16)

    def test_decrypt_reverses_encrypt(self):
        cipher = XorHmacCipher("secret")
        text = '{"data": ["ünïcödé", 1, null], "timestamp": 5}'
        assert cipher.decrypt(cipher.encrypt(text)) == text

    def test_encryption_is_deterministic(self):
        cipher = XorHmacCipher("secret")
        assert cipher.encrypt("hello") == cipher.encrypt("hello")

    def test_empty_key_is_pass_through(self):
        cipher = XorHmacCipher("")
        assert not cipher.enabled
        assert cipher.encrypt("hello") == "hello"
        assert cipher.decrypt("hello") == "hello"


@pytest.mark.unit
@pytest.mark.edge_case
class TestXorHmacCipherFailures:
    """Decryption never raises; bad input comes back unchanged."""

    def test_text_without_separator_is_returned_unchanged(self):
        assert XorHmacCipher("k").decrypt("plain text") == "plain text"

    def test_invalid_base64_is_returned_unchanged(self):
        assert XorHmacCipher("k").decrypt("!!!.abcd") == "!!!.abcd"

    def test_tampered_digest_is_returned_unchanged(self):
        cipher = XorHmacCipher("k")
        payload, _ = cipher.encrypt("hello").split(".")
        tampered = f"{payload}.{'0' * 64}"

        assert cipher.decrypt(tampered) == tampered

    def test_wrong_key_fails_integrity_check(self):
        encrypted = XorHmacCipher("right").encrypt("hello")
        assert XorHmacCipher("wrong").decrypt(encrypted) == encrypted
