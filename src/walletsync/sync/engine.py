"""
Sync Engine -- push, pull, and the state machine around them.

    push  ->  build snapshot -> seal -> remote.put -> remote.update_metadata
    pull  ->  remote.get_latest -> peer records -> open -> parse -> merge -> import

One engine per signed-in session. At most one push or pull is in
flight; a call that arrives while one is running is dropped, not
queued. Push, pull and the device operations return a SyncResult
and never raise.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol, Union

from ..identity import Identity
from .backends import RemoteStore
from .crypto import SnapshotCipher
from .devices import DeviceRegistry
from .errors import (
    AuthenticationRequiredError,
    SnapshotImportError,
    SyncError,
)
from .merge import MergeResult, merge_snapshots
from .models import DeviceRecord, RemoteRecord, SyncConfig, SyncPhase, SyncResult
from .settings import SettingsStore
from .snapshot import Snapshot, build_snapshot, parse_snapshot, snapshot_to_json

logger = logging.getLogger("walletsync.sync.engine")

NO_REMOTE_DATA = "No remote data to sync"
ALREADY_SYNCING = "Sync already in progress"
NOT_ENABLED = "Sync not enabled"
DISABLED_IN_FLIGHT = "Sync was disabled while the operation was in flight"


class LocalStore(Protocol):
    """What the engine needs from local storage: read everything, import once."""

    def collections(self) -> dict[str, Any]: ...

    def import_data(self, snapshot: Snapshot) -> bool: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Superseded(Exception):
    """The session changed (disable) while an operation was in flight."""


class SyncEngine:
    """Orchestrates encrypted multi-device wallet sync.

    Args:
        identity: Current identity, or a callable returning it.
        local: Local store collaborator (collections + import_data).
        remote: Remote blob store.
        settings: Durable sync settings.
        config: Sync configuration.
        clock: Epoch-millis source.
        user_agent: Environment string for the device name.
    """

    def __init__(
        self,
        identity: Union[Identity, Callable[[], Identity]],
        local: LocalStore,
        remote: RemoteStore,
        settings: SettingsStore,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], int] = _now_ms,
        user_agent: Optional[str] = None,
    ):
        self._identity = identity if callable(identity) else (lambda: identity)
        self.local = local
        self.remote = remote
        self.settings = settings
        self.config = config or SyncConfig()
        self.clock = clock
        self.devices = DeviceRegistry(settings, remote, user_agent)

        self._lock = threading.RLock()
        self._syncing = False
        self._error: Optional[str] = None
        self._epoch = 0
        self._ciphers: dict[tuple[str, str], SnapshotCipher] = {}

        self._phase = SyncPhase.IDLE if self.is_enabled else SyncPhase.DISABLED

    # ------------------------------------------------------------------
    # State exposed to the UI
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Identity:
        return self._identity()

    @property
    def is_enabled(self) -> bool:
        return self.settings.load().is_enabled

    @property
    def last_sync_time(self) -> Optional[int]:
        return self.settings.load().last_sync_time

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    def status(self) -> dict:
        """Serializable view of the sync state."""
        settings = self.settings.load()
        return {
            "is_enabled": settings.is_enabled,
            "is_syncing": self._syncing,
            "phase": self._phase.value,
            "last_sync_time": settings.last_sync_time,
            "error": self._error,
            "device_id": settings.device_id,
            "device_name": settings.device_name,
            "backend": self.remote.name,
        }

    # ------------------------------------------------------------------
    # Worker slot
    # ------------------------------------------------------------------

    def _begin(self, phase: SyncPhase) -> Optional[int]:
        """Claim the single worker slot. Returns the session epoch, or None if busy."""
        with self._lock:
            if self._syncing:
                return None
            self._syncing = True
            self._error = None
            self._phase = phase
            return self._epoch

    def _finish(self, error: Optional[str] = None) -> None:
        with self._lock:
            self._syncing = False
            self._error = error
            if error:
                self._phase = SyncPhase.ERROR
            elif self.is_enabled:
                self._phase = SyncPhase.IDLE
            else:
                self._phase = SyncPhase.DISABLED

    def _ensure_current(self, epoch: int, require_enabled: bool) -> None:
        # caller holds self._lock
        if epoch != self._epoch or (require_enabled and not self.is_enabled):
            raise _Superseded(DISABLED_IN_FLIGHT)

    def _commit(self, epoch: int, require_enabled: bool = True, **changes) -> None:
        """Verify the session and persist settings as one step.

        disable_sync() takes the same lock, so it lands either before the
        check (and the write is skipped) or after the write (and clears it).
        """
        with self._lock:
            self._ensure_current(epoch, require_enabled)
            self.settings.update(**changes)

    def _require_identity(self) -> Identity:
        identity = self.identity
        if not identity.is_authenticated or not identity.user_id:
            raise AuthenticationRequiredError("User not authenticated")
        return identity

    def _cipher(self, identity: Identity) -> SnapshotCipher:
        key = (identity.user_id, identity.user_email)
        if key not in self._ciphers:
            self._ciphers[key] = SnapshotCipher(
                identity.user_id,
                identity.user_email,
                iterations=self.config.pbkdf2_iterations,
            )
        return self._ciphers[key]

    def _run(
        self,
        phase: SyncPhase,
        label: str,
        operation: Callable[[int], SyncResult],
    ) -> SyncResult:
        """Run one push or pull in the worker slot, mapping failures to results."""
        epoch = self._begin(phase)
        if epoch is None:
            logger.warning("%s skipped: %s", label, ALREADY_SYNCING)
            return SyncResult(success=False, error=ALREADY_SYNCING)

        try:
            result = operation(epoch)
        except _Superseded as exc:
            logger.warning("%s discarded: %s", label, exc)
            self._finish()
            return SyncResult(success=False, error=str(exc))
        except SyncError as exc:
            logger.error("%s failed: %s", label, exc)
            self._finish(str(exc))
            return SyncResult(success=False, error=str(exc))
        except Exception as exc:
            logger.exception("%s failed unexpectedly", label)
            self._finish(str(exc) or exc.__class__.__name__)
            return SyncResult(success=False, error=str(exc) or exc.__class__.__name__)

        self._finish()
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def enable_sync(self, passphrase: Optional[str] = None) -> SyncResult:
        """Opt in. Pushes once and flips the flag only if that push worked."""
        try:
            self._require_identity()
        except AuthenticationRequiredError as exc:
            return SyncResult(success=False, error=str(exc))

        result = self._run(
            SyncPhase.PUSHING,
            "Enable",
            lambda epoch: self._push(epoch, passphrase, enabling=True),
        )
        if result.success:
            logger.info("Sync enabled")
            result.message = "Sync enabled"
        return result

    def disable_sync(self) -> SyncResult:
        """Opt out now. In-flight work is not awaited and will not be applied."""
        with self._lock:
            self._epoch += 1
            self._error = None
            self._phase = SyncPhase.DISABLED
            self.settings.clear_sync_state()
        logger.info("Sync disabled")
        return SyncResult(success=True, message="Sync disabled")

    def push(self, passphrase: Optional[str] = None) -> SyncResult:
        """Encrypt the local snapshot and upload it."""
        gate = self._gate()
        if gate is not None:
            return gate
        return self._run(
            SyncPhase.PUSHING,
            "Push",
            lambda epoch: self._push(epoch, passphrase),
        )

    def pull(self, passphrase: Optional[str] = None) -> SyncResult:
        """Download remote snapshots, merge them in, and import the result.

        Only needs a signed-in identity: a device that has not opted in
        can still pull by hand. Scheduled pulls check is_enabled first.
        """
        gate = self._gate(require_enabled=False)
        if gate is not None:
            return gate
        was_enabled = self.is_enabled
        return self._run(
            SyncPhase.PULLING,
            "Pull",
            lambda epoch: self._pull(epoch, passphrase, require_enabled=was_enabled),
        )

    sync_to_remote = push
    sync_from_remote = pull

    def sync_now(self, passphrase: Optional[str] = None) -> SyncResult:
        """Full round trip: pull and merge, then push the merged state."""
        pulled = self.pull(passphrase)
        if not pulled.success:
            return pulled
        pushed = self.push(passphrase)
        if not pushed.success:
            return pushed
        return SyncResult(success=True, message=pulled.message, changes=pulled.changes)

    def remote_is_newer(self) -> bool:
        """Whether another device pushed since our last successful sync.

        Raises:
            SyncError: On authentication or transport failure.
        """
        identity = self._require_identity()
        freshness = self.remote.get_latest(identity.user_id)
        if freshness is None:
            return False
        settings = self.settings.load()
        if freshness.device_id and freshness.device_id == settings.device_id:
            return False
        return freshness.last_modified > (settings.last_sync_time or 0)

    def _gate(self, require_enabled: bool = True) -> Optional[SyncResult]:
        try:
            self._require_identity()
        except AuthenticationRequiredError as exc:
            return SyncResult(success=False, error=str(exc))
        if require_enabled and not self.is_enabled:
            return SyncResult(success=False, error=NOT_ENABLED)
        return None

    def _push(
        self, epoch: int, passphrase: Optional[str], enabling: bool = False
    ) -> SyncResult:
        identity = self._require_identity()
        device_id, device_name = self.devices.register(identity.user_id)

        snapshot = build_snapshot(self.local.collections(), exported_at=self.clock())
        encrypted, data_hash = self._cipher(identity).seal(
            snapshot_to_json(snapshot), passphrase
        )

        self.remote.put(
            identity.user_id, device_id, encrypted, data_hash, self.config.sync_version
        )
        self.remote.update_metadata(
            identity.user_id, device_id, device_name, self.config.sync_version
        )

        if enabling:
            self._commit(
                epoch, require_enabled=False, last_sync_time=self.clock(), is_enabled=True
            )
        else:
            self._commit(epoch, last_sync_time=self.clock())
        logger.info(
            "Pushed snapshot from %s (%d transactions)",
            device_id,
            len(snapshot.transactions),
        )
        return SyncResult(success=True, message="Pushed local data")

    def _remote_records(self, user_id: str) -> list[RemoteRecord]:
        """Records pushed by other devices, oldest first.

        Each device owns one record, so the newest record overall is
        often our own last push. Falls back to that record when no peer
        has pushed yet.
        """
        own_id = self.settings.load().device_id
        peers = [r for r in self.remote.history(user_id) if r.device_id != own_id]
        if not peers:
            latest = self.remote.get(user_id)
            return [latest] if latest is not None else []
        return sorted(peers, key=lambda r: r.last_modified)

    def _pull(
        self, epoch: int, passphrase: Optional[str], require_enabled: bool = True
    ) -> SyncResult:
        identity = self._require_identity()

        if self.remote.get_latest(identity.user_id) is None:
            logger.info(NO_REMOTE_DATA)
            return SyncResult(success=True, message=NO_REMOTE_DATA)
        records = self._remote_records(identity.user_id)
        if not records:
            return SyncResult(success=True, message=NO_REMOTE_DATA)

        cipher = self._cipher(identity)
        merged_snapshot = build_snapshot(self.local.collections(), exported_at=0)
        changes: list[str] = []
        added = updated = 0
        for record in records:
            plaintext = cipher.open(
                record.encrypted_data,
                record.data_hash,
                passphrase,
                verify=self.config.verify_integrity,
            )
            merged: MergeResult = merge_snapshots(
                merged_snapshot, parse_snapshot(plaintext), self.config.profile_merge
            )
            merged_snapshot = merged.snapshot
            changes.extend(merged.changes)
            added += merged.added
            updated += merged.updated

        # disable_sync cannot land between the import and last_sync_time
        with self._lock:
            self._ensure_current(epoch, require_enabled)
            if not self.local.import_data(merged_snapshot):
                raise SnapshotImportError("Import failed")
            self._commit(epoch, require_enabled, last_sync_time=self.clock())
        logger.info(
            "Pulled %d remote record(s): %d added, %d updated",
            len(records),
            added,
            updated,
        )
        return SyncResult(
            success=True,
            message=f"Merged {added} new and {updated} updated records",
            changes=changes,
        )

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def get_current_device(self) -> dict[str, str]:
        device_id, device_name = self.devices.current_device()
        return {"device_id": device_id, "device_name": device_name}

    def list_devices(self) -> list[DeviceRecord]:
        """Registered devices; empty on failure (logged)."""
        try:
            identity = self._require_identity()
            return self.devices.list_devices(identity.user_id)
        except SyncError as exc:
            logger.error("Failed to list devices: %s", exc)
            return []

    def remove_device(self, device_id: str) -> SyncResult:
        try:
            identity = self._require_identity()
            result = self.devices.remove_device(identity.user_id, device_id)
        except SyncError as exc:
            return SyncResult(success=False, error=str(exc))
        if not result.success:
            return SyncResult(success=False, error=result.error or "Failed to remove device")
        return SyncResult(
            success=True, message=f"Removed {result.device_name or 'device'}"
        )

    def rename_device(self, device_id: str, new_name: str) -> SyncResult:
        try:
            identity = self._require_identity()
            result = self.devices.rename_device(identity.user_id, device_id, new_name)
        except SyncError as exc:
            return SyncResult(success=False, error=str(exc))
        if not result.success:
            return SyncResult(success=False, error=result.error or "Failed to rename device")
        return SyncResult(success=True, message=f"Renamed to {result.device_name}")
