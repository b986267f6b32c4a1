"""
Sync error taxonomy.

Engine operations catch these at their own boundary and turn them
into a SyncResult. Only remote_is_newer lets them through, for the
scheduler to log.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync failures."""


class AuthenticationRequiredError(SyncError):
    """Sync attempted without a signed-in identity."""


class EncryptionError(SyncError):
    """Snapshot could not be encrypted."""


class DecryptionError(SyncError):
    """Ciphertext could not be decrypted (wrong key or tampered)."""


class IntegrityError(DecryptionError):
    """Decrypted payload does not match its stored integrity hash."""


class MalformedSnapshotError(SyncError):
    """Decrypted payload is not a valid snapshot."""


class SnapshotImportError(SyncError):
    """The local store rejected the merged snapshot."""


class TransportError(SyncError):
    """The remote store call itself failed."""
