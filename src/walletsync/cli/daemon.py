"""Daemon commands: start, stop, status."""

from __future__ import annotations

import os
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from ._common import WALLET_HOME, console


def register_daemon_commands(main: click.Group) -> None:
    """Register the daemon command group."""

    @main.group()
    def daemon():
        """Background sync daemon.

        Watches the local wallet for edits, polls the remote store for
        other devices' pushes, and runs a periodic safety-net sync.
        """

    @daemon.command("start")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @click.option("--poll", type=float, default=None, help="Remote poll interval in seconds.")
    @click.option("--backup", type=float, default=None, help="Backup sync interval in seconds.")
    @click.option("--passphrase", envvar="WALLETSYNC_PASSPHRASE", default=None)
    def daemon_start(home: str, poll: Optional[float], backup: Optional[float], passphrase: Optional[str]):
        """Run the sync daemon in the foreground (Ctrl+C to stop)."""
        from ..daemon import DaemonConfig, SyncDaemon, is_running

        home_path = Path(home).expanduser()
        if not home_path.exists():
            console.print("[bold red]No wallet found.[/] Run walletsync init first.")
            sys.exit(1)

        if is_running(home_path):
            console.print("[yellow]Daemon is already running.[/]")
            sys.exit(0)

        config = DaemonConfig(
            home=home_path,
            poll_interval=poll,
            backup_interval=backup,
            passphrase=passphrase,
        )
        svc = SyncDaemon(config)

        console.print("\n  [green]Starting sync daemon[/]")
        console.print(f"  Poll: {svc.poll_interval}s | Backup: {svc.backup_interval}s")
        console.print(f"  Log: {config.log_file}")
        console.print(f"  PID: {os.getpid()}\n")

        svc.start()
        svc.run_forever()

    @daemon.command("stop")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def daemon_stop(home: str):
        """Stop the running daemon."""
        from ..daemon import is_running, read_pid

        home_path = Path(home).expanduser()
        pid = read_pid(home_path)
        if pid is None or not is_running(home_path):
            console.print("[yellow]Daemon is not running.[/]")
            return

        os.kill(pid, signal.SIGTERM)
        console.print(f"  [green]Sent SIGTERM to PID {pid}[/]")

    @daemon.command("status")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def daemon_status(home: str):
        """Show whether the daemon is running."""
        from ..daemon import is_running, read_pid

        home_path = Path(home).expanduser()
        if is_running(home_path):
            console.print(f"  [green]running[/] (PID {read_pid(home_path)})")
        else:
            console.print("  [yellow]stopped[/]")
