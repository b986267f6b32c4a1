"""Tests for local persistence -- wallet store, sync settings, identity."""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from walletsync.identity import Identity, clear_identity, load_identity, save_identity
from walletsync.store import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    JsonWalletStore,
    default_categories,
)
from walletsync.sync.models import SyncSettings
from walletsync.sync.settings import SettingsStore
from walletsync.sync.snapshot import build_snapshot


@pytest.fixture
def store(tmp_path) -> JsonWalletStore:
    return JsonWalletStore(tmp_path)


class TestDefaultCategories:
    def test_all_present_and_flagged(self):
        cats = default_categories()
        assert len(cats) == len(DEFAULT_EXPENSE_CATEGORIES) + len(DEFAULT_INCOME_CATEGORIES)
        assert all(c["isDefault"] for c in cats)

    def test_ids_are_stable(self):
        assert default_categories() == default_categories()
        assert "default_expense_food-dining" in {c["id"] for c in default_categories()}


class TestJsonWalletStore:
    """wallet.json read/write and change notification."""

    def test_empty_wallet(self, store):
        data = store.collections()
        assert data["transactions"] == []
        assert data["emergencyFund"] == 0
        assert data["userProfile"] is None
        assert len(data["categories"]) == len(default_categories())
        assert store.mtime() is None

    def test_add_stamps_and_persists(self, store, tmp_path):
        item = store.add("transactions", {"amount": 4.5, "description": "Tea"})
        assert item["id"]
        assert item["lastModified"] >= item["createdAt"]

        reopened = JsonWalletStore(tmp_path)
        assert reopened.collections()["transactions"] == [item]
        assert store.mtime() is not None

    def test_add_replaces_same_id(self, store):
        store.add("budgets", {"id": "b1", "limit": 100})
        store.add("budgets", {"id": "b1", "limit": 200})
        assert [b["limit"] for b in store.collections()["budgets"]] == [200]

    def test_add_unknown_collection(self, store):
        with pytest.raises(ValueError, match="Unknown collection"):
            store.add("receipts", {})

    def test_remove(self, store):
        item = store.add("goals", {"name": "Trip"})
        assert store.remove("goals", item["id"]) is True
        assert store.remove("goals", item["id"]) is False

    def test_listeners_notified_on_edits(self, store):
        seen = []
        store.add_listener(seen.append)
        item = store.add("transactions", {"amount": 1})
        store.remove("transactions", item["id"])
        store.set_emergency_fund(100)
        store.update_profile(currency="EUR")
        assert seen == ["transactions", "transactions", "emergencyFund", "userProfile"]

    def test_removed_listener_not_called(self, store):
        seen = []
        store.add_listener(seen.append)
        store.remove_listener(seen.append)
        store.add("transactions", {"amount": 1})
        assert seen == []

    def test_failing_listener_does_not_break_edit(self, store):
        def broken(kind):
            raise RuntimeError("listener bug")

        store.add_listener(broken)
        store.add("transactions", {"amount": 1})
        assert len(store.collections()["transactions"]) == 1

    def test_import_replaces_synced_collections(self, store):
        store.add("transactions", {"id": "old", "amount": 1})
        seen = []
        store.add_listener(seen.append)

        snapshot = build_snapshot({
            "transactions": [{"id": "new", "amount": 2}],
            "categories": [{"id": "c1", "name": "Pets"}],
            "emergencyFund": 250,
            "userProfile": {"currency": "EUR"},
        }, exported_at=1)
        assert store.import_data(snapshot) is True

        data = store.collections()
        assert [t["id"] for t in data["transactions"]] == ["new"]
        assert data["emergencyFund"] == 250
        assert data["userProfile"] == {"currency": "EUR"}
        assert seen == []

    def test_import_keeps_local_defaults(self, store):
        store.import_data(build_snapshot({"categories": [{"id": "c1"}]}, exported_at=1))
        ids = [c["id"] for c in store.collections()["categories"]]
        assert ids[-1] == "c1"
        assert len(ids) == len(default_categories()) + 1

    def test_import_failure_returns_false(self, store):
        with patch.object(store, "_write", side_effect=OSError("disk full")):
            assert store.import_data(build_snapshot({}, exported_at=1)) is False

    def test_mtime_state_marks_imports(self, store):
        assert store.mtime_state() == (None, None)
        store.import_data(build_snapshot({}, exported_at=1))
        mtime, imported = store.mtime_state()
        assert mtime is not None
        assert imported == mtime

    def test_corrupt_file_loads_empty(self, store):
        store.path.write_text("{not json")
        assert store.collections()["transactions"] == []

    def test_update_profile_stamps(self, store):
        profile = store.update_profile(currency="EUR")
        assert profile["currency"] == "EUR"
        assert profile["lastModified"] > 0


class TestSettingsStore:
    """sync/state.json persistence."""

    def test_defaults(self, tmp_path):
        assert SettingsStore(tmp_path / "sync").load() == SyncSettings()

    def test_update_persists(self, tmp_path):
        SettingsStore(tmp_path / "sync").update(is_enabled=True, last_sync_time=5)
        loaded = SettingsStore(tmp_path / "sync").load()
        assert loaded.is_enabled is True
        assert loaded.last_sync_time == 5

    def test_concurrent_updates_keep_both_fields(self, tmp_path):
        settings = SettingsStore(tmp_path / "sync")

        def write(**changes):
            for _ in range(25):
                settings.update(**changes)

        workers = [
            threading.Thread(target=write, kwargs={"last_sync_time": 25}),
            threading.Thread(target=write, kwargs={"device_id": "device_1"}),
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        loaded = settings.load()
        assert loaded.last_sync_time == 25
        assert loaded.device_id == "device_1"

    def test_clear_sync_state_keeps_device(self, tmp_path):
        settings = SettingsStore(tmp_path / "sync")
        settings.update(is_enabled=True, last_sync_time=5, device_id="device_1", device_name="Laptop")
        cleared = settings.clear_sync_state()
        assert cleared == SyncSettings(device_id="device_1", device_name="Laptop")

    def test_clear_forgets_everything(self, tmp_path):
        settings = SettingsStore(tmp_path / "sync")
        settings.update(device_id="device_1")
        settings.clear()
        assert not settings.state_file.exists()
        assert settings.load() == SyncSettings()

    def test_corrupt_file_loads_defaults(self, tmp_path):
        settings = SettingsStore(tmp_path / "sync")
        settings.sync_dir.mkdir(parents=True)
        settings.state_file.write_text("][")
        assert settings.load() == SyncSettings()


class TestIdentity:
    def test_missing_is_unauthenticated(self, tmp_path):
        assert load_identity(tmp_path).is_authenticated is False

    def test_save_load_clear(self, tmp_path):
        save_identity(tmp_path, Identity(user_id="u1", user_email="a@b.c", is_authenticated=True))
        assert load_identity(tmp_path).user_email == "a@b.c"
        clear_identity(tmp_path)
        assert load_identity(tmp_path) == Identity()

    def test_corrupt_is_unauthenticated(self, tmp_path):
        (tmp_path / "identity.json").write_text("nope")
        assert load_identity(tmp_path).is_authenticated is False
