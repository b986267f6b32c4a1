"""
walletsync -- offline-first wallet sync.

Every device keeps the whole wallet. Snapshots travel encrypted
through a dumb blob store and are merged back per entity, newest wins,
nothing dropped.
"""

import os

__version__ = "0.1.0"

WALLET_HOME = os.environ.get("WALLETSYNC_HOME", "~/.walletsync")
