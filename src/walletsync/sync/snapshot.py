"""
Snapshot codec -- the wallet as one serializable bundle.

A snapshot carries exactly the mutable collections every device
shares. Built-in categories stay home: each device re-derives them.

    local collections -> build_snapshot() -> snapshot_to_json() -> crypto
    crypto -> parse_snapshot() -> merge -> split_snapshot() -> local store
"""

from __future__ import annotations

import copy
import json
import logging
import time
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedSnapshotError

logger = logging.getLogger("walletsync.sync.snapshot")

# snapshot attribute -> (wire key, human label used in change logs)
COLLECTIONS: dict[str, tuple[str, str]] = {
    "transactions": ("transactions", "transaction"),
    "budgets": ("budgets", "budget"),
    "goals": ("goals", "goal"),
    "debt_accounts": ("debtAccounts", "debt account"),
    "credit_accounts": ("creditAccounts", "credit account"),
    "categories": ("categories", "category"),
}

REQUIRED_KEYS = ("transactions", "budgets", "goals", "categories", "exportedAt")


def _now_ms() -> int:
    return int(time.time() * 1000)


class Snapshot(BaseModel):
    """Complete synced state of one device at one moment."""

    model_config = ConfigDict(populate_by_name=True)

    user_profile: Optional[dict[str, Any]] = Field(default=None, alias="userProfile")
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    budgets: list[dict[str, Any]] = Field(default_factory=list)
    goals: list[dict[str, Any]] = Field(default_factory=list)
    debt_accounts: list[dict[str, Any]] = Field(default_factory=list, alias="debtAccounts")
    credit_accounts: list[dict[str, Any]] = Field(default_factory=list, alias="creditAccounts")
    categories: list[dict[str, Any]] = Field(default_factory=list)
    emergency_fund: float = Field(default=0, alias="emergencyFund")
    exported_at: int = Field(default_factory=_now_ms, alias="exportedAt")

    def to_wire(self) -> dict[str, Any]:
        """Camel-cased dict, as it travels and as the local store reads it."""
        return self.model_dump(by_alias=True)


def build_snapshot(
    collections: Mapping[str, Any], exported_at: Optional[int] = None
) -> Snapshot:
    """Assemble a snapshot from the local store's collections.

    Pure: the input is deep-copied, never mutated. Categories flagged
    ``isDefault`` are dropped.

    Args:
        collections: Wire-keyed mapping (``transactions``, ``debtAccounts``, ...).
        exported_at: Epoch millis stamp. Defaults to now.

    Returns:
        A fresh Snapshot.
    """
    data: dict[str, Any] = {}
    for attr, (wire, _label) in COLLECTIONS.items():
        items = collections.get(wire) or []
        data[attr] = [copy.deepcopy(dict(item)) for item in items]

    data["categories"] = [
        cat for cat in data["categories"] if not cat.get("isDefault")
    ]

    profile = collections.get("userProfile")
    data["user_profile"] = copy.deepcopy(dict(profile)) if profile else None
    data["emergency_fund"] = collections.get("emergencyFund") or 0
    data["exported_at"] = exported_at if exported_at is not None else _now_ms()
    return Snapshot(**data)


def snapshot_to_json(snapshot: Snapshot) -> str:
    """Serialize a snapshot to the plaintext JSON that gets encrypted."""
    return json.dumps(snapshot.to_wire(), separators=(",", ":"))


def parse_snapshot(text: str) -> Snapshot:
    """Decode decrypted JSON into a Snapshot.

    Raises:
        MalformedSnapshotError: Invalid JSON, missing top-level keys,
            or entities without an ``id``.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedSnapshotError(f"Snapshot is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedSnapshotError("Snapshot must be a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise MalformedSnapshotError(
            f"Snapshot is missing required keys: {', '.join(missing)}"
        )

    if data.get("emergencyFund") is None:
        data["emergencyFund"] = 0

    try:
        snapshot = Snapshot.model_validate(data)
    except ValidationError as exc:
        raise MalformedSnapshotError(f"Snapshot failed validation: {exc}") from exc

    for attr, (wire, _label) in COLLECTIONS.items():
        for entity in getattr(snapshot, attr):
            if "id" not in entity:
                raise MalformedSnapshotError(f"Entity in {wire} has no id")

    return snapshot


def split_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Inverse of build_snapshot: wire-keyed collections for the local store."""
    wire = snapshot.to_wire()
    wire.pop("exportedAt", None)
    return wire
