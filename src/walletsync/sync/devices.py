"""
Device registry client -- who is this device, and who else is out there.

The device id and name are created once and then never recomputed,
even if the environment would now be detected differently.
"""

from __future__ import annotations

import logging
import platform
import secrets
import string
import time
from typing import Optional

from .backends import RemoteStore
from .models import DeviceRecord, DeviceResult
from .settings import SettingsStore

logger = logging.getLogger("walletsync.sync.devices")

_BASE36 = string.digits + string.ascii_lowercase

_OS_NAMES = {
    "Darwin": "macOS",
    "Windows": "Windows",
    "Linux": "Linux",
}


def generate_device_id() -> str:
    """``device_<epoch ms>_<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"device_{int(time.time() * 1000)}_{suffix}"


def detect_device_name(user_agent: Optional[str] = None) -> str:
    """Human device name like "Chrome on macOS".

    With a user-agent string the browser and OS are sniffed from it.
    Without one the host platform is used.
    """
    if user_agent is None:
        system = platform.system()
        return f"walletsync on {_OS_NAMES.get(system, system or 'Device')}"

    browser = "Browser"
    if "Edg" in user_agent:
        browser = "Edge"
    elif "Chrome" in user_agent:
        browser = "Chrome"
    elif "Firefox" in user_agent:
        browser = "Firefox"
    elif "Safari" in user_agent:
        browser = "Safari"

    os_name = "Device"
    if "iPhone" in user_agent or "iPad" in user_agent:
        os_name = "iOS"
    elif "Android" in user_agent:
        os_name = "Android"
    elif "Windows" in user_agent:
        os_name = "Windows"
    elif "Mac" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"

    return f"{browser} on {os_name}"


class DeviceRegistry:
    """Current-device descriptor plus pass-throughs to the remote registry.

    Args:
        settings: Where the descriptor is persisted.
        remote: Remote store holding the registry.
        user_agent: Optional environment string to derive the name from.
    """

    def __init__(
        self,
        settings: SettingsStore,
        remote: RemoteStore,
        user_agent: Optional[str] = None,
    ):
        self.settings = settings
        self.remote = remote
        self.user_agent = user_agent

    def get_or_create_device_id(self) -> str:
        current = self.settings.load()
        if current.device_id:
            return current.device_id
        device_id = generate_device_id()
        self.settings.update(device_id=device_id)
        logger.info("Generated device id %s", device_id)
        return device_id

    def get_or_create_device_name(self) -> str:
        current = self.settings.load()
        if current.device_name:
            return current.device_name
        name = detect_device_name(self.user_agent)
        self.settings.update(device_name=name)
        return name

    def current_device(self) -> tuple[str, str]:
        """(device_id, device_name), creating both on first call."""
        return self.get_or_create_device_id(), self.get_or_create_device_name()

    def register(self, user_id: str) -> tuple[str, str]:
        """Register this device remotely.

        Raises:
            TransportError: If the remote call fails.
        """
        device_id, device_name = self.current_device()
        self.remote.register_device(user_id, device_id, device_name)
        return device_id, device_name

    def list_devices(self, user_id: str) -> list[DeviceRecord]:
        """Known devices, most recently seen first, current one flagged."""
        current_id = self.settings.load().device_id
        devices = self.remote.list_devices(user_id)
        for device in devices:
            device.is_current_device = device.device_id == current_id
        return devices

    def remove_device(self, user_id: str, device_id: str) -> DeviceResult:
        """Revoke a device's registry entry. Its past data stays merged."""
        result = self.remote.remove_device(user_id, device_id)
        if result.success:
            logger.info("Removed device %s (%s)", device_id, result.device_name)
        return result

    def rename_device(self, user_id: str, device_id: str, new_name: str) -> DeviceResult:
        result = self.remote.rename_device(user_id, device_id, new_name)
        if result.success and device_id == self.settings.load().device_id:
            self.settings.update(device_name=result.device_name)
        return result
