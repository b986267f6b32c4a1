"""
Merge engine -- reconcile a local and a remote snapshot.

Pure and synchronous: no I/O, no clocks. Two strategies:

    merge_by_id       entity collections, union by id, newer timestamp wins,
                      ties keep local
    merge_fieldwise   the user profile record, shallow field merge

plus one domain rule for the emergency fund: the larger amount wins.
Nothing present on either side is ever dropped.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from .models import ProfileMergeStrategy
from .snapshot import COLLECTIONS, Snapshot

DEFAULT_TIME_FIELDS = ("lastModified", "updatedAt", "createdAt")

TIME_FIELDS: dict[str, tuple[str, ...]] = {
    "transaction": ("lastModified", "updatedAt", "createdAt", "timestamp", "date"),
    "budget": DEFAULT_TIME_FIELDS,
    "goal": DEFAULT_TIME_FIELDS,
    "debt account": ("lastModified", "updatedAt", "createdAt"),
    "credit account": ("lastModified", "updatedAt", "createdAt"),
    "category": DEFAULT_TIME_FIELDS,
}

DESCRIPTION_FIELDS = ("description", "name", "title", "category")


@dataclass
class MergeResult:
    """Outcome of merging two snapshots.

    Attributes:
        snapshot: The merged snapshot.
        changes: Human-readable log of every addition and update.
        added: Number of entities appended from remote.
        updated: Number of local entities replaced by newer remote ones.
    """

    snapshot: Snapshot
    changes: list[str] = field(default_factory=list)
    added: int = 0
    updated: int = 0


def _to_millis(value: Any) -> Optional[int]:
    """Coerce an epoch-millis number or ISO-8601 string to epoch millis."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def resolve_timestamp(
    entity: dict[str, Any], fields: Sequence[str] = DEFAULT_TIME_FIELDS
) -> int:
    """Modification time of an entity in epoch millis, 0 if unknown.

    The first field in ``fields`` that holds a usable time wins.
    """
    for name in fields:
        millis = _to_millis(entity.get(name))
        if millis is not None:
            return millis
    return 0


def describe(entity: dict[str, Any]) -> str:
    for name in DESCRIPTION_FIELDS:
        value = entity.get(name)
        if value:
            return str(value)
    return str(entity.get("id", "?"))


def merge_by_id(
    local: Sequence[dict[str, Any]],
    remote: Sequence[dict[str, Any]],
    kind: str,
    fields: Sequence[str] = DEFAULT_TIME_FIELDS,
) -> tuple[list[dict[str, Any]], list[str], int, int]:
    """Union two entity lists by id.

    Local order is preserved, remote-only entities are appended in the
    order they are met. A shared id takes the remote entity only when its
    resolved timestamp is strictly greater.

    Args:
        local: Local entities.
        remote: Remote entities.
        kind: Label for change-log lines ("transaction", "budget", ...).
        fields: Timestamp fields tried in order.

    Returns:
        (merged entities, change log, added count, updated count)
    """
    merged = [copy.deepcopy(item) for item in local]
    position = {item["id"]: i for i, item in enumerate(merged)}
    changes: list[str] = []
    added = updated = 0

    for item in remote:
        entity_id = item["id"]
        if entity_id not in position:
            position[entity_id] = len(merged)
            merged.append(copy.deepcopy(item))
            changes.append(f"added {kind}: {describe(item)}")
            added += 1
            continue

        index = position[entity_id]
        if resolve_timestamp(item, fields) > resolve_timestamp(merged[index], fields):
            merged[index] = copy.deepcopy(item)
            changes.append(f"updated {kind}: {describe(item)}")
            updated += 1

    return merged, changes, added, updated


def merge_fieldwise(
    local: Optional[dict[str, Any]],
    remote: Optional[dict[str, Any]],
    strategy: ProfileMergeStrategy = ProfileMergeStrategy.NEWEST,
) -> tuple[Optional[dict[str, Any]], list[str]]:
    """Shallow-merge two settings records.

    REMOTE: every remote field overwrites its local counterpart.
    NEWEST: remote fields overwrite only when the remote record is strictly
    newer; otherwise only fields missing locally are taken from remote.

    Either way ``lastModified`` ends up as the max of both sides.
    """
    if remote is None:
        return copy.deepcopy(local), []
    if local is None:
        return copy.deepcopy(remote), ["added profile"]

    local_ts = resolve_timestamp(local, ("lastModified", "updatedAt"))
    remote_ts = resolve_timestamp(remote, ("lastModified", "updatedAt"))

    if strategy == ProfileMergeStrategy.REMOTE or remote_ts > local_ts:
        merged = {**local, **remote}
    else:
        merged = {**local, **{k: v for k, v in remote.items() if k not in local}}

    if "lastModified" in local or "lastModified" in remote:
        merged["lastModified"] = max(local_ts, remote_ts)

    merged = copy.deepcopy(merged)
    changed = sorted(
        key for key in merged
        if key != "lastModified" and local.get(key) != merged[key]
    )
    if changed:
        return merged, [f"updated profile: {', '.join(changed)}"]
    return merged, []


def merge_emergency_fund(local: float, remote: float) -> tuple[float, list[str]]:
    """Money already set aside is never forgotten: the larger amount wins."""
    local = local or 0
    remote = remote or 0
    if remote > local:
        return remote, [f"updated emergency fund: {local:g} -> {remote:g}"]
    if local > remote:
        return local, [f"kept emergency fund: {local:g} (remote had {remote:g})"]
    return local, []


def merge_snapshots(
    local: Snapshot,
    remote: Snapshot,
    profile_strategy: ProfileMergeStrategy = ProfileMergeStrategy.NEWEST,
) -> MergeResult:
    """Merge a decoded remote snapshot into the local one.

    Args:
        local: Snapshot built from the current local state.
        remote: Snapshot decrypted from the remote store.
        profile_strategy: Rule for the user profile record.

    Returns:
        MergeResult holding the merged snapshot and its change log.
    """
    data: dict[str, Any] = {}
    changes: list[str] = []
    added = updated = 0

    for attr, (_wire, kind) in COLLECTIONS.items():
        entities, log, n_added, n_updated = merge_by_id(
            getattr(local, attr),
            getattr(remote, attr),
            kind,
            TIME_FIELDS.get(kind, DEFAULT_TIME_FIELDS),
        )
        data[attr] = entities
        changes.extend(log)
        added += n_added
        updated += n_updated

    profile, log = merge_fieldwise(local.user_profile, remote.user_profile, profile_strategy)
    data["user_profile"] = profile
    changes.extend(log)

    fund, log = merge_emergency_fund(local.emergency_fund, remote.emergency_fund)
    data["emergency_fund"] = fund
    changes.extend(log)

    data["exported_at"] = max(local.exported_at, remote.exported_at)

    return MergeResult(
        snapshot=Snapshot(**data),
        changes=changes,
        added=added,
        updated=updated,
    )
