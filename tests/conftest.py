"""Shared test fixtures for walletsync."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from walletsync.identity import Identity
from walletsync.store import JsonWalletStore
from walletsync.sync.backends import FileRemoteStore
from walletsync.sync.engine import SyncEngine
from walletsync.sync.models import SyncConfig
from walletsync.sync.settings import SettingsStore
from walletsync.sync.snapshot import build_snapshot

USER_ID = "user_123"
USER_EMAIL = "ada@example.com"


class FakeClock:
    """Epoch-millis clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now


class ManualTimer:
    """Drop-in for threading.Timer that fires only via fire()."""

    def __init__(self, interval: float, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class TimerRecorder:
    """Timer factory that keeps every timer it builds."""

    def __init__(self):
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]


class GatedRemoteStore(FileRemoteStore):
    """FileRemoteStore that can park callers on history() and put().

    Set ``gate`` to a threading.Event to hold callers until it is set;
    ``entered`` fires when the first caller arrives.
    """

    def __init__(self, root: Path, clock):
        super().__init__(root, clock=clock)
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def _wait(self) -> None:
        if self.gate is not None:
            self.entered.set()
            self.gate.wait(timeout=5)

    def history(self, user_id):
        self._wait()
        return super().history(user_id)

    def put(self, *args, **kwargs):
        self._wait()
        return super().put(*args, **kwargs)


class Device:
    """One installation: own home, store, settings and engine; shared remote."""

    def __init__(
        self,
        home: Path,
        remote: FileRemoteStore,
        clock: FakeClock,
        config: SyncConfig,
        identity: Identity,
        user_agent: Optional[str] = None,
    ):
        self.home = home
        self.remote = remote
        self.identity = identity
        self.store = JsonWalletStore(home)
        self.settings = SettingsStore(home / "sync")
        self.engine = SyncEngine(
            identity=lambda: self.identity,
            local=self.store,
            remote=remote,
            settings=self.settings,
            config=config,
            clock=clock,
            user_agent=user_agent,
        )

    def seed(self, **wire: Any) -> None:
        """Overwrite local collections without going through add()."""
        collections = self.store.collections()
        collections.update(wire)
        assert self.store.import_data(build_snapshot(collections, exported_at=0))

    def ids(self, kind: str = "transactions") -> list[str]:
        return [item["id"] for item in self.store.collections()[kind]]

    def entity(self, entity_id: str, kind: str = "transactions") -> dict:
        for item in self.store.collections()[kind]:
            if item["id"] == entity_id:
                return item
        raise KeyError(entity_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SyncConfig:
    """Sync config with cheap key derivation."""
    return SyncConfig(pbkdf2_iterations=1000)


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id=USER_ID, user_email=USER_EMAIL, is_authenticated=True)


@pytest.fixture
def remote(tmp_path: Path, clock: FakeClock) -> GatedRemoteStore:
    return GatedRemoteStore(tmp_path / "remote", clock)


@pytest.fixture
def make_device(tmp_path: Path, remote, clock, config, identity):
    """Factory for devices that share one remote store and clock."""

    def _make(name: str, user_agent: Optional[str] = None) -> Device:
        home = tmp_path / name
        home.mkdir()
        return Device(home, remote, clock, config, identity, user_agent=user_agent)

    return _make


@pytest.fixture
def device(make_device) -> Device:
    return make_device("laptop")


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()
