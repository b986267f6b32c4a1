"""
Sync data models -- configuration, persisted state, and remote records.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class RemoteBackendType(str, Enum):
    """Supported remote blob stores."""

    FILE = "file"
    HTTP = "http"


class ProfileMergeStrategy(str, Enum):
    """How the user profile record is reconciled."""

    NEWEST = "newest"
    REMOTE = "remote"


class SyncPhase(str, Enum):
    """Orchestrator state machine positions."""

    DISABLED = "disabled"
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    ERROR = "error"


class SyncConfig(BaseModel):
    """Sync configuration loaded from config/config.yaml."""

    backend: RemoteBackendType = RemoteBackendType.FILE
    remote_path: Optional[Path] = None
    remote_url: Optional[str] = None
    token_env_var: Optional[str] = "WALLETSYNC_TOKEN"
    timeout: float = 30.0

    debounce_ms: int = 500
    burst_debounce_ms: int = 3000
    burst_window_ms: int = 5000
    burst_threshold: int = 3
    poll_interval: float = 30.0
    backup_interval: float = 300.0
    backup_staleness: float = 600.0

    profile_merge: ProfileMergeStrategy = ProfileMergeStrategy.NEWEST
    verify_integrity: bool = True
    pbkdf2_iterations: int = 100_000
    sync_version: str = "1.0"


class SyncSettings(BaseModel):
    """Durable sync state owned by this installation (sync/state.json)."""

    is_enabled: bool = False
    last_sync_time: Optional[int] = None
    device_id: Optional[str] = None
    device_name: Optional[str] = None


class RemoteRecord(BaseModel):
    """One encrypted snapshot as held by the remote store."""

    user_id: str
    device_id: str
    encrypted_data: str
    data_hash: str
    last_modified: int
    version: str = "1.0"


class RemoteFreshness(BaseModel):
    """Lightweight answer to 'is there anything newer?'."""

    last_modified: int
    device_id: Optional[str] = None


class DeviceRecord(BaseModel):
    """A device as listed by the remote registry."""

    device_id: str
    device_name: str
    last_seen: int = 0
    sync_version: Optional[str] = None
    is_active: bool = True
    is_current_device: bool = False


class DeviceResult(BaseModel):
    """Outcome of a device registry mutation (remove, rename)."""

    success: bool
    device_name: Optional[str] = None
    error: Optional[str] = None


class SyncResult(BaseModel):
    """Boundary result of every engine operation."""

    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    changes: list[str] = Field(default_factory=list)
