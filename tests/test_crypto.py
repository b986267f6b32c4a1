"""Tests for the crypto layer -- key derivation, sealing, integrity."""

from __future__ import annotations

import base64
import hashlib

import pytest

from walletsync.sync.crypto import (
    IV_LENGTH,
    SnapshotCipher,
    decrypt,
    default_passphrase,
    derive_key,
    encrypt,
    integrity_hash,
    make_salt,
    verify_integrity,
)
from walletsync.sync.errors import DecryptionError, IntegrityError

ITERATIONS = 1000


@pytest.fixture
def key() -> bytes:
    return derive_key("correct horse", make_salt("user_123", "ada@example.com"), ITERATIONS)


class TestKeyDerivation:
    """Salts and keys depend only on identity and passphrase."""

    def test_salt_is_deterministic(self):
        assert make_salt("u1", "a@b.c") == make_salt("u1", "a@b.c")

    def test_salt_is_32_bytes(self):
        assert len(make_salt("u1", "a@b.c")) == 32

    def test_salt_differs_per_identity(self):
        assert make_salt("u1", "a@b.c") != make_salt("u2", "a@b.c")
        assert make_salt("u1", "a@b.c") != make_salt("u1", "x@b.c")

    def test_key_is_256_bits(self, key: bytes):
        assert len(key) == 32

    def test_same_inputs_same_key(self):
        salt = make_salt("u1", "a@b.c")
        assert derive_key("pw", salt, ITERATIONS) == derive_key("pw", salt, ITERATIONS)

    def test_different_passphrase_different_key(self):
        salt = make_salt("u1", "a@b.c")
        assert derive_key("pw", salt, ITERATIONS) != derive_key("pw2", salt, ITERATIONS)

    def test_default_passphrase(self):
        assert default_passphrase("u1", "a@b.c") == "walletsync_u1_a@b.c"


class TestEncryptDecrypt:
    """AES-256-GCM with a fresh IV per call."""

    def test_round_trip(self, key: bytes):
        plaintext = '{"note": "Café ☕", "amount": 12.5}'
        assert decrypt(encrypt(plaintext, key), key) == plaintext

    def test_fresh_iv_per_encryption(self, key: bytes):
        assert encrypt("same", key) != encrypt("same", key)

    def test_wire_format(self, key: bytes):
        """base64 of iv || ciphertext || 16-byte tag."""
        raw = base64.b64decode(encrypt("hello", key))
        assert len(raw) == IV_LENGTH + len(b"hello") + 16

    def test_wrong_key_fails(self, key: bytes):
        other = derive_key("wrong", make_salt("user_123", "ada@example.com"), ITERATIONS)
        with pytest.raises(DecryptionError):
            decrypt(encrypt("secret", key), other)

    def test_tampered_ciphertext_fails(self, key: bytes):
        raw = bytearray(base64.b64decode(encrypt("secret", key)))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(bytes(raw)).decode(), key)

    def test_not_base64_fails(self, key: bytes):
        with pytest.raises(DecryptionError, match="not base64"):
            decrypt("@@@ not base64 @@@", key)

    def test_too_short_fails(self, key: bytes):
        with pytest.raises(DecryptionError, match="too short"):
            decrypt(base64.b64encode(b"tiny").decode(), key)


class TestIntegrity:
    """SHA-256 hex of the plaintext, verified fail-closed."""

    def test_hash_is_sha256_hex(self):
        assert integrity_hash("abc") == hashlib.sha256(b"abc").hexdigest()

    def test_verify_passes(self):
        verify_integrity("abc", integrity_hash("abc"))

    def test_verify_mismatch_raises(self):
        with pytest.raises(IntegrityError, match="mismatch"):
            verify_integrity("abc", integrity_hash("abd"))

    def test_missing_hash_raises(self):
        with pytest.raises(IntegrityError):
            verify_integrity("abc", "")

    def test_integrity_error_is_a_decryption_error(self):
        assert issubclass(IntegrityError, DecryptionError)


class TestSnapshotCipher:
    """Per-identity sealing shared by every device."""

    def test_seal_and_open(self):
        cipher = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        ciphertext, data_hash = cipher.seal('{"x": 1}')
        assert data_hash == integrity_hash('{"x": 1}')
        assert cipher.open(ciphertext, data_hash) == '{"x": 1}'

    def test_other_device_can_open(self):
        """Two ciphers built from the same identity interoperate."""
        laptop = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        phone = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        ciphertext, data_hash = laptop.seal("shared", "pin-1234")
        assert phone.open(ciphertext, data_hash, "pin-1234") == "shared"

    def test_other_identity_cannot_open(self):
        mine = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        theirs = SnapshotCipher("u2", "a@b.c", iterations=ITERATIONS)
        ciphertext, data_hash = mine.seal("private")
        with pytest.raises(DecryptionError):
            theirs.open(ciphertext, data_hash)

    def test_wrong_passphrase_cannot_open(self):
        cipher = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        ciphertext, data_hash = cipher.seal("private", "right")
        with pytest.raises(DecryptionError):
            cipher.open(ciphertext, data_hash, "wrong")

    def test_open_rejects_hash_mismatch(self):
        cipher = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        ciphertext, _ = cipher.seal("payload")
        with pytest.raises(IntegrityError):
            cipher.open(ciphertext, integrity_hash("other payload"))

    def test_open_without_verification_ignores_mismatch(self):
        cipher = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        ciphertext, _ = cipher.seal("payload")
        assert cipher.open(ciphertext, "bogus", verify=False) == "payload"

    def test_keys_are_cached(self):
        cipher = SnapshotCipher("u1", "a@b.c", iterations=ITERATIONS)
        assert cipher.key_for(None) is cipher.key_for(None)
        assert cipher.key_for(None) == cipher.key_for(default_passphrase("u1", "a@b.c"))
