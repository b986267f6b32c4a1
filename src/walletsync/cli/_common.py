"""Shared helpers for the CLI command modules."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import WALLET_HOME
from ..runtime import WalletRuntime
from ..sync.models import SyncResult

console = Console()
logger = logging.getLogger("walletsync.cli")


def get_runtime(home: str) -> WalletRuntime:
    return WalletRuntime(Path(home).expanduser())


def format_millis(value: Optional[int]) -> str:
    """Epoch millis as a UTC timestamp, or 'never'."""
    if not value:
        return "never"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def report(result: SyncResult, ok_label: str = "done") -> None:
    """Print a SyncResult; exit 1 on failure."""
    if result.success:
        console.print(f"  [green]{result.message or ok_label}[/]")
        for change in result.changes:
            console.print(f"    [dim]{change}[/]")
        return
    console.print(f"  [bold red]Failed:[/] {result.error}")
    sys.exit(1)


__all__ = ["WALLET_HOME", "console", "format_millis", "get_runtime", "logger", "report"]
