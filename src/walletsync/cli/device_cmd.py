"""Device commands: show, list, remove, rename."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import WALLET_HOME, console, format_millis, get_runtime, report


def register_device_commands(main: click.Group) -> None:
    """Register the device command group."""

    @main.group()
    def device():
        """Devices that sync this wallet."""

    @device.command("show")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def device_show(home: str):
        """Show this device's id and name."""
        runtime = get_runtime(home)
        current = runtime.engine.get_current_device()
        console.print(f"  [cyan]{current['device_name']}[/]  [dim]{current['device_id']}[/]")

    @device.command("list")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def device_list(home: str):
        """List devices registered for this account."""
        runtime = get_runtime(home)
        devices = runtime.engine.list_devices()
        if not devices:
            console.print("  [dim]No devices registered.[/]")
            return

        table = Table(title="Devices")
        table.add_column("Name", no_wrap=True)
        table.add_column("ID", style="dim")
        table.add_column("Last seen")
        table.add_column("Version")
        for dev in devices:
            name = f"{dev.device_name} [green](this device)[/]" if dev.is_current_device else dev.device_name
            table.add_row(name, dev.device_id, format_millis(dev.last_seen), dev.sync_version or "-")
        console.print(table)

    @device.command("remove")
    @click.argument("device_id")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def device_remove(device_id: str, home: str):
        """Revoke a device. Data it already pushed stays merged."""
        runtime = get_runtime(home)
        report(runtime.engine.remove_device(device_id))

    @device.command("rename")
    @click.argument("device_id")
    @click.argument("name")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def device_rename(device_id: str, name: str, home: str):
        """Rename a device (max 50 characters)."""
        runtime = get_runtime(home)
        report(runtime.engine.rename_device(device_id, name))
