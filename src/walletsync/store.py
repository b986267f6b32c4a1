"""
Local wallet store -- the plaintext working set on this device.

The sync engine reads collections from here to build a snapshot and
writes back only through import_data(). Everything else (the CLI's
tx commands, a UI) mutates through add()/remove(), which stamp
lastModified and notify change listeners.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

from .sync.snapshot import COLLECTIONS, Snapshot

logger = logging.getLogger("walletsync.store")

WALLET_FILE = "wallet.json"

DEFAULT_EXPENSE_CATEGORIES = [
    "Food & Dining", "Transportation", "Shopping", "Entertainment",
    "Bills & Utilities", "Healthcare", "Education", "Travel",
    "Groceries", "Housing", "Insurance", "Other",
]
DEFAULT_INCOME_CATEGORIES = [
    "Salary", "Freelance", "Business", "Investment", "Gift",
    "Bonus", "Side Hustle", "Rental Income", "Refund", "Other",
]

KINDS = tuple(wire for wire, _label in COLLECTIONS.values())

ChangeListener = Callable[[str], None]


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def default_categories() -> list[dict[str, Any]]:
    """Built-in categories, identical on every device."""
    cats = []
    for kind, names in (("expense", DEFAULT_EXPENSE_CATEGORIES), ("income", DEFAULT_INCOME_CATEGORIES)):
        for name in names:
            cats.append({
                "id": f"default_{kind}_{_slug(name)}",
                "name": name,
                "type": kind,
                "isDefault": True,
            })
    return cats


def _empty_wallet() -> dict[str, Any]:
    return {
        "userProfile": None,
        "transactions": [],
        "budgets": [],
        "goals": [],
        "debtAccounts": [],
        "creditAccounts": [],
        "categories": default_categories(),
        "emergencyFund": 0,
    }


class JsonWalletStore:
    """wallet.json-backed local store.

    Args:
        home: Wallet home directory.
    """

    def __init__(self, home: Path):
        self.path = Path(home).expanduser() / WALLET_FILE
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []
        self._imported_mtime: Optional[float] = None

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind)
            except Exception as exc:
                logger.error("Change listener failed: %s", exc)

    def load(self) -> dict[str, Any]:
        with self._lock:
            if not self.path.exists():
                return _empty_wallet()
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load wallet, starting empty: %s", exc)
                return _empty_wallet()
            wallet = _empty_wallet()
            wallet.update(data)
            return wallet

    def _write(self, wallet: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(wallet, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def collections(self) -> dict[str, Any]:
        return copy.deepcopy(self.load())

    def import_data(self, snapshot: Snapshot) -> bool:
        """Replace synced collections with the snapshot's.

        Local default categories are kept ahead of the synced ones.
        Does not notify listeners: an import is not a local edit.
        """
        with self._lock:
            try:
                wallet = self.load()
                incoming = snapshot.to_wire()
                defaults = [c for c in wallet["categories"] if c.get("isDefault")]
                default_ids = {c["id"] for c in defaults}
                for wire in KINDS:
                    wallet[wire] = copy.deepcopy(incoming[wire])
                wallet["categories"] = defaults + [
                    c for c in wallet["categories"] if c["id"] not in default_ids
                ]
                wallet["userProfile"] = copy.deepcopy(incoming["userProfile"])
                wallet["emergencyFund"] = incoming["emergencyFund"]
                self._write(wallet)
                self._imported_mtime = self.mtime()
            except (OSError, KeyError, TypeError, ValueError) as exc:
                logger.error("Wallet import failed: %s", exc)
                return False
        logger.info("Wallet imported from snapshot")
        return True

    def add(self, kind: str, entity: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace an entity, stamping id and lastModified.

        Raises:
            ValueError: Unknown collection.
        """
        if kind not in KINDS:
            raise ValueError(f"Unknown collection: {kind}")
        now = int(time.time() * 1000)
        item = dict(entity)
        item.setdefault("id", uuid.uuid4().hex)
        item.setdefault("createdAt", now)
        item["lastModified"] = now
        with self._lock:
            wallet = self.load()
            entities = wallet[kind]
            for i, existing in enumerate(entities):
                if existing["id"] == item["id"]:
                    entities[i] = item
                    break
            else:
                entities.append(item)
            self._write(wallet)
        self._notify(kind)
        return item

    def remove(self, kind: str, entity_id: str) -> bool:
        if kind not in KINDS:
            raise ValueError(f"Unknown collection: {kind}")
        with self._lock:
            wallet = self.load()
            before = len(wallet[kind])
            wallet[kind] = [e for e in wallet[kind] if e["id"] != entity_id]
            if len(wallet[kind]) == before:
                return False
            self._write(wallet)
        self._notify(kind)
        return True

    def set_emergency_fund(self, amount: float) -> None:
        with self._lock:
            wallet = self.load()
            wallet["emergencyFund"] = amount
            self._write(wallet)
        self._notify("emergencyFund")

    def update_profile(self, **fields: Any) -> dict[str, Any]:
        with self._lock:
            wallet = self.load()
            profile = dict(wallet.get("userProfile") or {})
            profile.update(fields)
            profile["lastModified"] = int(time.time() * 1000)
            wallet["userProfile"] = profile
            self._write(wallet)
        self._notify("userProfile")
        return profile

    def mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def mtime_state(self) -> tuple[Optional[float], Optional[float]]:
        """(current mtime, mtime left by the last import_data), read atomically.

        A watcher comparing the two can tell a sync import from an edit.
        """
        with self._lock:
            return self.mtime(), self._imported_mtime
