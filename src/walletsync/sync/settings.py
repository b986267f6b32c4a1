"""
Local persistence for the few things the sync engine owns durably:
the enabled flag, the last successful sync time, and the device
descriptor. Everything lives in sync/state.json.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from .models import SyncSettings

logger = logging.getLogger("walletsync.sync.settings")


class SettingsStore:
    """Load and save SyncSettings for one installation.

    Args:
        sync_dir: Directory holding state.json.
    """

    def __init__(self, sync_dir: Path):
        self.sync_dir = Path(sync_dir).expanduser()
        self.state_file = self.sync_dir / "state.json"
        self._lock = threading.RLock()

    def load(self) -> SyncSettings:
        """Read settings from disk, defaults if absent or unreadable."""
        if self.state_file.exists():
            try:
                data = json.loads(self.state_file.read_text(encoding="utf-8"))
                return SyncSettings(**data)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncSettings()

    def save(self, settings: SyncSettings) -> None:
        """Persist settings atomically."""
        with self._lock:
            self.sync_dir.mkdir(parents=True, exist_ok=True)
            tmp = self.state_file.with_suffix(".json.tmp")
            tmp.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self.state_file)

    def update(self, **changes) -> SyncSettings:
        """Load, apply field changes, save, and return the result.

        The read and the write happen under one lock, so concurrent
        updates never resurrect fields another update just changed.
        """
        with self._lock:
            settings = self.load().model_copy(update=changes)
            self.save(settings)
            return settings

    def clear_sync_state(self) -> SyncSettings:
        """Drop the enabled flag and last sync time, keep the device descriptor."""
        return self.update(is_enabled=False, last_sync_time=None)

    def clear(self) -> None:
        """Forget everything: enabled flag, last sync, device descriptor."""
        with self._lock:
            if self.state_file.exists():
                self.state_file.unlink()
        logger.info("Sync state cleared")
