"""
Remote store adapters -- where the sealed snapshots live.

The remote store is a dumb blob holder. It keeps one record per
(user, device), answers "which record is newest", and keeps a small
device registry. It never merges anything.

File: a shared directory (NAS, USB stick, Syncthing folder).
HTTP: a JSON REST service reached through requests.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .errors import TransportError
from .models import (
    DeviceRecord,
    DeviceResult,
    RemoteBackendType,
    RemoteFreshness,
    RemoteRecord,
    SyncConfig,
)

logger = logging.getLogger("walletsync.sync.backends")

MAX_DEVICE_NAME = 50


def _now_ms() -> int:
    return int(time.time() * 1000)


def validate_device_name(name: str) -> Optional[str]:
    """Trimmed name, or None if empty or too long."""
    cleaned = (name or "").strip()
    if not cleaned or len(cleaned) > MAX_DEVICE_NAME:
        return None
    return cleaned


class RemoteStore(ABC):
    """Abstract remote blob store."""

    @abstractmethod
    def put(
        self,
        user_id: str,
        device_id: str,
        encrypted_data: str,
        data_hash: str,
        version: str = "1.0",
    ) -> RemoteRecord:
        """Store (create or overwrite) this device's sealed snapshot."""

    @abstractmethod
    def history(self, user_id: str) -> list[RemoteRecord]:
        """All per-device records for a user."""

    @abstractmethod
    def register_device(self, user_id: str, device_id: str, device_name: str) -> None:
        """Add or refresh a device in the registry."""

    @abstractmethod
    def update_metadata(
        self,
        user_id: str,
        device_id: str,
        device_name: Optional[str],
        sync_version: str,
    ) -> None:
        """Record that a device just synced, and with which protocol version."""

    @abstractmethod
    def list_devices(self, user_id: str) -> list[DeviceRecord]:
        """Registered devices, most recently seen first."""

    @abstractmethod
    def remove_device(self, user_id: str, device_id: str) -> DeviceResult:
        """Revoke a device. Its pushed data is kept."""

    @abstractmethod
    def rename_device(self, user_id: str, device_id: str, new_name: str) -> DeviceResult:
        """Change a device's display name."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""

    def available(self) -> bool:
        return True

    def get(self, user_id: str) -> Optional[RemoteRecord]:
        """Most recently modified record across devices, or None."""
        records = self.history(user_id)
        if not records:
            return None
        latest = records[0]
        for record in records[1:]:
            if record.last_modified > latest.last_modified:
                latest = record
        return latest

    def get_latest(self, user_id: str) -> Optional[RemoteFreshness]:
        """Lightweight freshness check."""
        record = self.get(user_id)
        if record is None:
            return None
        return RemoteFreshness(
            last_modified=record.last_modified, device_id=record.device_id
        )


def _safe(component: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.@-]", "_", component)
    if not cleaned.strip("."):
        return "_" * max(len(cleaned), 1)
    return cleaned


class FileRemoteStore(RemoteStore):
    """Shared-directory remote store.

    Layout::

        <root>/<user>/data/<device>.json   one RemoteRecord per device
        <root>/<user>/devices.json         device registry

    Args:
        root: Shared directory.
        clock: Epoch-millis source, injectable for tests.
    """

    def __init__(self, root: Path, clock: Callable[[], int] = _now_ms):
        self.root = Path(root).expanduser()
        self.clock = clock

    @property
    def name(self) -> str:
        return "file"

    def available(self) -> bool:
        return self.root.exists()

    def _user_dir(self, user_id: str) -> Path:
        return self.root / _safe(user_id)

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise TransportError(f"Write to {path} failed: {exc}") from exc

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise TransportError(f"Read of {path} failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise TransportError(f"Corrupt remote file {path}: {exc}") from exc

    def _load_registry(self, user_id: str) -> dict[str, dict]:
        return self._read_json(self._user_dir(user_id) / "devices.json", {})

    def _save_registry(self, user_id: str, registry: dict[str, dict]) -> None:
        self._write_json(self._user_dir(user_id) / "devices.json", registry)

    def put(self, user_id, device_id, encrypted_data, data_hash, version="1.0"):
        record = RemoteRecord(
            user_id=user_id,
            device_id=device_id,
            encrypted_data=encrypted_data,
            data_hash=data_hash,
            last_modified=self.clock(),
            version=version,
        )
        path = self._user_dir(user_id) / "data" / f"{_safe(device_id)}.json"
        action = "updated" if path.exists() else "created"
        self._write_json(path, record.model_dump(mode="json"))
        logger.info("Remote record %s for device %s", action, device_id)
        return record

    def history(self, user_id):
        data_dir = self._user_dir(user_id) / "data"
        if not data_dir.exists():
            return []
        records = []
        for path in sorted(data_dir.glob("*.json")):
            try:
                records.append(RemoteRecord.model_validate(self._read_json(path, {})))
            except ValidationError as exc:
                logger.warning("Skipping invalid remote record %s: %s", path.name, exc)
        return records

    def register_device(self, user_id, device_id, device_name):
        registry = self._load_registry(user_id)
        entry = registry.get(device_id, {})
        entry.update({
            "device_id": device_id,
            "device_name": device_name,
            "last_seen": self.clock(),
            "is_active": True,
        })
        registry[device_id] = entry
        self._save_registry(user_id, registry)

    def update_metadata(self, user_id, device_id, device_name, sync_version):
        registry = self._load_registry(user_id)
        entry = registry.get(device_id, {"device_id": device_id})
        entry.update({
            "device_name": device_name or entry.get("device_name") or f"Device {device_id[:8]}",
            "last_seen": self.clock(),
            "sync_version": sync_version,
            "is_active": True,
        })
        registry[device_id] = entry
        self._save_registry(user_id, registry)

    def list_devices(self, user_id):
        registry = self._load_registry(user_id)
        devices = [DeviceRecord.model_validate(entry) for entry in registry.values()]
        return sorted(devices, key=lambda d: d.last_seen, reverse=True)

    def remove_device(self, user_id, device_id):
        registry = self._load_registry(user_id)
        entry = registry.pop(device_id, None)
        if entry is None:
            return DeviceResult(success=False, error="Device not found")
        self._save_registry(user_id, registry)
        logger.info("Device %s removed from registry", device_id)
        return DeviceResult(success=True, device_name=entry.get("device_name"))

    def rename_device(self, user_id, device_id, new_name):
        registry = self._load_registry(user_id)
        if device_id not in registry:
            return DeviceResult(success=False, error="Device not found")
        cleaned = validate_device_name(new_name)
        if cleaned is None:
            return DeviceResult(success=False, error="Invalid device name")
        registry[device_id]["device_name"] = cleaned
        registry[device_id]["last_seen"] = self.clock()
        self._save_registry(user_id, registry)
        return DeviceResult(success=True, device_name=cleaned)


class HttpRemoteStore(RemoteStore):
    """JSON REST remote store.

    Endpoints are rooted at ``<url>/users/<user_id>``; the bearer token
    is read from the environment variable named in the config.
    """

    def __init__(self, config: SyncConfig):
        if not config.remote_url:
            raise ValueError("http backend requires remote_url")
        self.base_url = config.remote_url.rstrip("/")
        self.timeout = config.timeout
        self._token = os.environ.get(config.token_env_var or "", "")

    @property
    def name(self) -> str:
        return "http"

    def _call(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        allow_404: bool = False,
    ) -> Any:
        """Make one API call.

        Raises:
            TransportError: Connection failure or HTTP status >= 400.
        """
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method, url, headers=headers, json=data, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if allow_404 and resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise TransportError(f"{method} {path}: {resp.status_code} {resp.text}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path}: invalid JSON response") from exc

    def _users(self, user_id: str) -> str:
        return f"/users/{quote(user_id, safe='')}"

    def put(self, user_id, device_id, encrypted_data, data_hash, version="1.0"):
        body = self._call(
            "PUT",
            f"{self._users(user_id)}/data/{quote(device_id, safe='')}",
            {"encrypted_data": encrypted_data, "data_hash": data_hash, "version": version},
        )
        return RemoteRecord.model_validate(body)

    def get(self, user_id):
        body = self._call("GET", f"{self._users(user_id)}/data/latest", allow_404=True)
        return RemoteRecord.model_validate(body) if body else None

    def get_latest(self, user_id):
        body = self._call("GET", f"{self._users(user_id)}/data/latest/meta", allow_404=True)
        return RemoteFreshness.model_validate(body) if body else None

    def history(self, user_id):
        body = self._call("GET", f"{self._users(user_id)}/data") or []
        return [RemoteRecord.model_validate(item) for item in body]

    def register_device(self, user_id, device_id, device_name):
        self._call(
            "PUT",
            f"{self._users(user_id)}/devices/{quote(device_id, safe='')}",
            {"device_name": device_name},
        )

    def update_metadata(self, user_id, device_id, device_name, sync_version):
        self._call(
            "POST",
            f"{self._users(user_id)}/devices/{quote(device_id, safe='')}/metadata",
            {"device_name": device_name, "sync_version": sync_version},
        )

    def list_devices(self, user_id):
        body = self._call("GET", f"{self._users(user_id)}/devices") or []
        devices = [DeviceRecord.model_validate(item) for item in body]
        return sorted(devices, key=lambda d: d.last_seen, reverse=True)

    def remove_device(self, user_id, device_id):
        body = self._call(
            "DELETE",
            f"{self._users(user_id)}/devices/{quote(device_id, safe='')}",
            allow_404=True,
        )
        if body is None:
            return DeviceResult(success=False, error="Device not found")
        return DeviceResult.model_validate(body)

    def rename_device(self, user_id, device_id, new_name):
        cleaned = validate_device_name(new_name)
        if cleaned is None:
            return DeviceResult(success=False, error="Invalid device name")
        body = self._call(
            "PATCH",
            f"{self._users(user_id)}/devices/{quote(device_id, safe='')}",
            {"device_name": cleaned},
            allow_404=True,
        )
        if body is None:
            return DeviceResult(success=False, error="Device not found")
        return DeviceResult.model_validate(body)


def create_remote_store(config: SyncConfig, home: Path) -> RemoteStore:
    """Factory for the configured remote store.

    Args:
        config: Sync configuration.
        home: Wallet home; the file backend defaults to <home>/remote.

    Raises:
        ValueError: If the backend type is not supported.
    """
    if config.backend == RemoteBackendType.FILE:
        root = config.remote_path or (Path(home).expanduser() / "remote")
        return FileRemoteStore(root)
    if config.backend == RemoteBackendType.HTTP:
        return HttpRemoteStore(config)
    raise ValueError(f"Unsupported backend: {config.backend}")
