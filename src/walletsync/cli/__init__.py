"""
walletsync CLI -- drive the sync engine from a terminal.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: walletsync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="walletsync")
def main():
    """walletsync -- encrypted multi-device wallet sync."""


from .wallet_cmd import register_wallet_commands
from .sync_cmd import register_sync_commands
from .device_cmd import register_device_commands
from .daemon import register_daemon_commands

register_wallet_commands(main)
register_sync_commands(main)
register_device_commands(main)
register_daemon_commands(main)
