"""Wallet commands: init, login, logout, tx add/list/rm, fund."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ..identity import Identity, clear_identity, load_identity, save_identity
from ..runtime import load_config, save_config
from ..sync.models import RemoteBackendType
from ..sync.settings import SettingsStore
from ._common import WALLET_HOME, console, format_millis, get_runtime


def register_wallet_commands(main: click.Group) -> None:
    """Register init/login/logout and the local wallet editing commands."""

    @main.command("init")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    @click.option(
        "--backend",
        type=click.Choice([b.value for b in RemoteBackendType]),
        default=RemoteBackendType.FILE.value,
        help="Remote store type.",
    )
    @click.option("--remote-path", type=click.Path(), help="Shared directory (file backend).")
    @click.option("--remote-url", help="Base URL (http backend).")
    def init(home: str, backend: str, remote_path: Optional[str], remote_url: Optional[str]):
        """Create the wallet home and write config/config.yaml."""
        home_path = Path(home).expanduser()
        home_path.mkdir(parents=True, exist_ok=True)

        config = load_config(home_path)
        config.backend = RemoteBackendType(backend)
        if remote_path:
            config.remote_path = Path(remote_path).expanduser()
        if remote_url:
            config.remote_url = remote_url
        if config.backend == RemoteBackendType.HTTP and not config.remote_url:
            console.print("[bold red]--remote-url is required for the http backend.[/]")
            sys.exit(1)

        path = save_config(home_path, config)
        console.print(f"\n  [green]Initialized[/] {home_path}")
        console.print(f"  [dim]Config: {path}[/]\n")

    @main.command("login")
    @click.argument("user_id")
    @click.argument("email")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def login(user_id: str, email: str, home: str):
        """Record the signed-in identity used to gate and key sync."""
        home_path = Path(home).expanduser()
        save_identity(
            home_path,
            Identity(user_id=user_id, user_email=email, is_authenticated=True),
        )
        console.print(f"  [green]Signed in[/] as [cyan]{email}[/]")

    @main.command("logout")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def logout(home: str):
        """Sign out: forget the identity and all sync state."""
        home_path = Path(home).expanduser()
        clear_identity(home_path)
        SettingsStore(home_path / "sync").clear()
        console.print("  [green]Signed out.[/] Sync state cleared.")

    @main.command("whoami")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def whoami(home: str):
        """Show the signed-in identity."""
        identity = load_identity(Path(home).expanduser())
        if not identity.is_authenticated:
            console.print("  [yellow]Not signed in.[/]")
            return
        console.print(f"  [cyan]{identity.user_email}[/] ({identity.user_id})")

    @main.group()
    def tx():
        """Local transactions."""

    @tx.command("add")
    @click.argument("amount", type=float)
    @click.argument("description")
    @click.option("--category", default="Other")
    @click.option("--type", "tx_type", type=click.Choice(["expense", "income"]), default="expense")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def tx_add(amount: float, description: str, category: str, tx_type: str, home: str):
        """Add a transaction to the local wallet."""
        runtime = get_runtime(home)
        item = runtime.store.add("transactions", {
            "amount": amount,
            "description": description,
            "category": category,
            "type": tx_type,
        })
        console.print(f"  [green]Added[/] {item['id']}")

    @tx.command("list")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def tx_list(home: str):
        """List local transactions."""
        runtime = get_runtime(home)
        transactions = runtime.store.collections()["transactions"]
        if not transactions:
            console.print("  [dim]No transactions.[/]")
            return

        table = Table(title="Transactions")
        table.add_column("ID", style="dim")
        table.add_column("Amount", justify="right")
        table.add_column("Description", no_wrap=True)
        table.add_column("Category")
        table.add_column("Modified")
        for item in transactions:
            table.add_row(
                str(item["id"]),
                f"{item.get('amount', 0):.2f}",
                str(item.get("description", "")),
                str(item.get("category", "")),
                format_millis(item.get("lastModified")),
            )
        console.print(table)

    @tx.command("rm")
    @click.argument("tx_id")
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def tx_rm(tx_id: str, home: str):
        """Remove a local transaction."""
        runtime = get_runtime(home)
        if not runtime.store.remove("transactions", tx_id):
            console.print(f"  [bold red]No transaction {tx_id}[/]")
            sys.exit(1)
        console.print(f"  [green]Removed[/] {tx_id}")

    @main.command("fund")
    @click.argument("amount", type=float)
    @click.option("--home", default=WALLET_HOME, type=click.Path())
    def fund(amount: float, home: str):
        """Set the emergency fund amount."""
        runtime = get_runtime(home)
        runtime.store.set_emergency_fund(amount)
        console.print(f"  [green]Emergency fund set to {amount:g}[/]")
