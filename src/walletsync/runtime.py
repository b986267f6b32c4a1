"""
Runtime wiring -- turn a wallet home directory into a ready SyncEngine.

    ~/.walletsync/
        config/config.yaml   SyncConfig
        identity.json        Identity
        wallet.json          local store
        sync/state.json      SyncSettings
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml

from . import WALLET_HOME
from .identity import load_identity
from .store import JsonWalletStore
from .sync.backends import create_remote_store
from .sync.engine import SyncEngine
from .sync.models import SyncConfig
from .sync.settings import SettingsStore

logger = logging.getLogger("walletsync.runtime")

CONFIG_FILE = Path("config") / "config.yaml"


def resolve_home(home: Optional[Path] = None) -> Path:
    return Path(home or WALLET_HOME).expanduser()


def load_config(home: Path) -> SyncConfig:
    """Load config/config.yaml, defaults if missing or invalid."""
    config_file = Path(home) / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return SyncConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load sync config: %s", exc)
    return SyncConfig()


def save_config(home: Path, config: SyncConfig) -> Path:
    config_file = Path(home) / CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    return config_file


class WalletRuntime:
    """Everything one wallet home needs, built once.

    Args:
        home: Wallet home directory. Defaults to $WALLETSYNC_HOME.
        config: Override the on-disk config.
    """

    def __init__(self, home: Optional[Path] = None, config: Optional[SyncConfig] = None):
        self.home = resolve_home(home)
        self.home.mkdir(parents=True, exist_ok=True)
        self.config = config or load_config(self.home)
        self.store = JsonWalletStore(self.home)
        self.settings = SettingsStore(self.home / "sync")
        self.remote = create_remote_store(self.config, self.home)
        self.engine = SyncEngine(
            identity=lambda: load_identity(self.home),
            local=self.store,
            remote=self.remote,
            settings=self.settings,
            config=self.config,
        )
