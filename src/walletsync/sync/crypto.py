"""
Crypto layer -- passphrase keys, sealed snapshots, integrity hashes.

Every device must be able to open what any other device sealed, with
no shared runtime state. So the key is derived with PBKDF2-HMAC-SHA256
from the passphrase and a salt computed only from identity fields.

Wire format of a sealed payload:
    base64( iv[12] || AES-256-GCM ciphertext || tag[16] )

The integrity hash is the SHA-256 hex digest of the plaintext JSON and
travels next to the ciphertext in the remote record.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError, EncryptionError, IntegrityError

logger = logging.getLogger("walletsync.sync.crypto")

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32
IV_LENGTH = 12
SALT_LENGTH = 32


def make_salt(user_id: str, user_email: str) -> bytes:
    """Compute the deterministic 32-byte salt for an identity.

    Args:
        user_id: Stable account id.
        user_email: Account email.

    Returns:
        32 bytes, identical on every device for the same identity.
    """
    material = f"{user_id}_{user_email}_walletsync_salt".encode("utf-8")
    return hashlib.sha256(material).digest()


def derive_key(
    passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 256-bit AES key from a passphrase.

    Args:
        passphrase: User secret (PIN or sync password).
        salt: Output of make_salt().
        iterations: PBKDF2 rounds.

    Returns:
        Raw key bytes.
    """
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt a string with AES-256-GCM.

    Raises:
        EncryptionError: If the key is unusable.
    """
    try:
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    except (ValueError, TypeError) as exc:
        raise EncryptionError(f"Encryption failed: {exc}") from exc
    return base64.b64encode(iv + sealed).decode("ascii")


def decrypt(ciphertext: str, key: bytes) -> str:
    """Decrypt a payload produced by encrypt().

    Raises:
        DecryptionError: Wrong key, truncated or tampered ciphertext.
    """
    try:
        combined = base64.b64decode(ciphertext.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise DecryptionError("Decryption failed: payload is not base64") from exc

    if len(combined) <= IV_LENGTH:
        raise DecryptionError("Decryption failed: payload too short")

    iv, sealed = combined[:IV_LENGTH], combined[IV_LENGTH:]
    try:
        plain = AESGCM(key).decrypt(iv, sealed, None)
    except InvalidTag as exc:
        raise DecryptionError("Decryption failed: wrong passphrase or tampered data") from exc
    except ValueError as exc:
        raise DecryptionError(f"Decryption failed: {exc}") from exc

    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decryption failed: plaintext is not UTF-8") from exc


def integrity_hash(plaintext: str) -> str:
    """SHA-256 hex digest of the plaintext."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def verify_integrity(plaintext: str, expected: str) -> None:
    """Fail closed if the plaintext does not match its recorded hash.

    Raises:
        IntegrityError: On mismatch.
    """
    actual = integrity_hash(plaintext)
    if not hmac.compare_digest(actual, expected or ""):
        raise IntegrityError(
            f"Integrity hash mismatch: expected {expected}, got {actual}"
        )


def default_passphrase(user_id: str, user_email: str) -> str:
    """Passphrase used when the caller supplies none."""
    return f"walletsync_{user_id}_{user_email}"


class SnapshotCipher:
    """Seals and opens snapshot JSON for one identity.

    Derived keys are cached per passphrase, PBKDF2 is slow on purpose.

    Args:
        user_id: Identity id (salt input).
        user_email: Identity email (salt input).
        iterations: PBKDF2 rounds.
    """

    def __init__(
        self,
        user_id: str,
        user_email: str,
        iterations: int = PBKDF2_ITERATIONS,
    ):
        self.salt = make_salt(user_id, user_email)
        self.iterations = iterations
        self._default = default_passphrase(user_id, user_email)
        self._keys: dict[str, bytes] = {}

    def key_for(self, passphrase: Optional[str]) -> bytes:
        secret = passphrase or self._default
        if secret not in self._keys:
            self._keys[secret] = derive_key(secret, self.salt, self.iterations)
        return self._keys[secret]

    def seal(self, plaintext: str, passphrase: Optional[str] = None) -> tuple[str, str]:
        """Encrypt plaintext and hash it.

        Returns:
            (ciphertext, integrity hash)
        """
        return encrypt(plaintext, self.key_for(passphrase)), integrity_hash(plaintext)

    def open(
        self,
        ciphertext: str,
        data_hash: Optional[str] = None,
        passphrase: Optional[str] = None,
        verify: bool = True,
    ) -> str:
        """Decrypt ciphertext and, when asked, check it against its hash."""
        plaintext = decrypt(ciphertext, self.key_for(passphrase))
        if verify:
            verify_integrity(plaintext, data_hash or "")
        elif data_hash and integrity_hash(plaintext) != data_hash:
            logger.warning("Integrity hash mismatch ignored (verification disabled)")
        return plaintext
