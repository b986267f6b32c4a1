"""Tests for the sync scheduler -- debounce, polling, backup, work slot."""

from __future__ import annotations

import threading

import pytest

from walletsync.sync.models import SyncResult
from walletsync.sync.scheduler import SyncScheduler


@pytest.fixture
def scheduler(device, clock, timers) -> SyncScheduler:
    return SyncScheduler(device.engine, clock=clock, timer_factory=timers)


@pytest.fixture
def enabled(device, scheduler):
    assert device.engine.enable_sync().success
    return device


class TestDebounce:
    """Local edits coalesce into one push."""

    def test_ignored_while_disabled(self, scheduler, timers):
        assert scheduler.on_local_change("transactions") is None
        assert timers.timers == []
        assert scheduler.pending is False

    def test_single_change_short_window(self, enabled, scheduler, timers):
        assert scheduler.on_local_change("transactions") == 500
        assert timers.last.interval == 0.5
        assert timers.last.started is True
        assert scheduler.pending is True

    def test_burst_gets_long_window(self, enabled, scheduler, timers, clock):
        scheduler.on_local_change()
        clock.advance(100)
        scheduler.on_local_change()
        clock.advance(100)
        assert scheduler.on_local_change() == 3000
        assert timers.last.interval == 3.0

    def test_rearm_cancels_previous_timer(self, enabled, scheduler, timers):
        scheduler.on_local_change()
        first = timers.last
        scheduler.on_local_change()
        assert first.cancelled is True
        assert timers.last is not first

    def test_burst_window_expires(self, enabled, scheduler, clock):
        scheduler.on_local_change()
        scheduler.on_local_change()
        clock.advance(6000)
        assert scheduler.on_local_change() == 500

    def test_fired_timer_pushes(self, enabled, scheduler, timers, clock):
        enabled.seed(transactions=[{"id": "t1", "amount": 3, "lastModified": 1}])
        scheduler.on_local_change()
        clock.advance()

        timers.last.fire()

        assert scheduler.pending is False
        assert enabled.engine.last_sync_time == clock()
        assert enabled.remote.history("user_123")[0].last_modified == clock()

    def test_cancel_drops_pending_push(self, enabled, scheduler, timers):
        scheduler.on_local_change()
        scheduler.cancel()
        assert scheduler.pending is False
        assert timers.last.cancelled is True


class TestPolling:
    """Pull only when another device pushed."""

    def test_nothing_newer(self, enabled, scheduler):
        assert scheduler.on_poll_tick() is None

    def test_pulls_when_peer_pushed(self, enabled, scheduler, make_device, clock):
        phone = make_device("phone")
        phone.seed(transactions=[{"id": "t9", "amount": 1, "lastModified": 5}])
        clock.advance()
        phone.engine.enable_sync()

        result = scheduler.on_poll_tick()

        assert result is not None and result.success
        assert enabled.ids() == ["t9"]

    def test_disabled_does_nothing(self, scheduler):
        assert scheduler.on_poll_tick() is None


class TestBackup:
    """Safety-net round trip once the last sync is stale."""

    def test_skipped_when_recent(self, enabled, scheduler, clock):
        clock.advance(60_000)
        assert scheduler.on_backup_tick() is None

    def test_runs_when_stale(self, enabled, scheduler, clock):
        clock.advance(601_000)
        result = scheduler.on_backup_tick()
        assert result is not None and result.success
        assert enabled.engine.last_sync_time == clock()


class TestWorkSlot:
    """Depth-1 slot: a trigger that finds it busy is dropped."""

    def test_busy_trigger_dropped(self, enabled, scheduler):
        started = threading.Event()
        release = threading.Event()

        def slow(passphrase):
            started.set()
            release.wait(timeout=5)
            return SyncResult(success=True)

        worker = threading.Thread(target=scheduler._submit, args=("slow", slow))
        worker.start()
        assert started.wait(timeout=5)

        assert scheduler._submit("push", enabled.engine.push) is None
        assert scheduler.dropped == 1

        release.set()
        worker.join(timeout=5)
        assert scheduler._submit("push", enabled.engine.push).success

    def test_passphrase_forwarded(self, device, clock, timers):
        seen = []
        scheduler = SyncScheduler(
            device.engine, clock=clock, timer_factory=timers, passphrase="pin"
        )
        scheduler._submit("probe", lambda p: seen.append(p) or SyncResult(success=True))
        assert seen == ["pin"]
