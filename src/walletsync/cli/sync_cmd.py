"""Sync commands: enable, disable, push, pull, now, status."""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.panel import Panel

from ._common import WALLET_HOME, console, format_millis, get_runtime, report


def _passphrase_option(func):
    return click.option(
        "--passphrase",
        envvar="WALLETSYNC_PASSPHRASE",
        default=None,
        help="Sync passphrase (defaults to one derived from the identity).",
    )(func)


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Encrypted multi-device sync.

        Push seals the local wallet and uploads it. Pull downloads the
        newest remote snapshot and merges it in: newer wins, nothing is lost.
        """

    @sync.command("enable")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @_passphrase_option
    def sync_enable(home: str, passphrase: Optional[str]):
        """Opt in to sync (performs a first push)."""
        runtime = get_runtime(home)
        console.print("\n  Enabling sync...")
        report(runtime.engine.enable_sync(passphrase))

    @sync.command("disable")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def sync_disable(home: str):
        """Opt out of sync and clear sync state."""
        runtime = get_runtime(home)
        report(runtime.engine.disable_sync())

    @sync.command("push")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @_passphrase_option
    def sync_push(home: str, passphrase: Optional[str]):
        """Push the local wallet to the remote store."""
        runtime = get_runtime(home)
        console.print("\n  Pushing...")
        report(runtime.engine.push(passphrase))

    @sync.command("pull")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @_passphrase_option
    def sync_pull(home: str, passphrase: Optional[str]):
        """Pull and merge the newest remote snapshot."""
        runtime = get_runtime(home)
        console.print("\n  Pulling...")
        report(runtime.engine.pull(passphrase))

    @sync.command("now")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @_passphrase_option
    def sync_now(home: str, passphrase: Optional[str]):
        """Pull, merge, then push the merged wallet."""
        runtime = get_runtime(home)
        console.print("\n  Syncing...")
        report(runtime.engine.sync_now(passphrase))

    @sync.command("status")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @click.option("--json", "json_out", is_flag=True, help="Output as JSON.")
    def sync_status(home: str, json_out: bool):
        """Show sync state for this device."""
        runtime = get_runtime(home)
        status = runtime.engine.status()
        identity = runtime.engine.identity

        if json_out:
            click.echo(json.dumps(status, indent=2))
            return

        enabled = "[green]enabled[/]" if status["is_enabled"] else "[yellow]disabled[/]"
        lines = [
            f"Sync:       {enabled}",
            f"Signed in:  {identity.user_email if identity.is_authenticated else '[red]no[/]'}",
            f"Backend:    {status['backend']}",
            f"Device:     {status['device_name'] or '[dim]not registered[/]'}",
            f"Last sync:  {format_millis(status['last_sync_time'])}",
        ]
        if status["error"]:
            lines.append(f"Error:      [red]{status['error']}[/]")
        console.print()
        console.print(Panel("\n".join(lines), title="walletsync", border_style="cyan"))
        console.print()
