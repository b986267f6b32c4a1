"""
Sync scheduler -- decides WHEN the engine runs.

Three named triggers feed one work slot of depth 1:

    on_local_change   debounced push; a burst of edits gets a longer window
    on_poll_tick      pull if another device pushed since our last sync
    on_backup_tick    full pull+push, only if nothing succeeded recently

A trigger that finds the slot busy is dropped. The next debounce,
poll, or backup tick is the retry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional, Protocol

from .engine import SyncEngine
from .errors import SyncError
from .models import SyncConfig, SyncResult

logger = logging.getLogger("walletsync.sync.scheduler")


class Cancellable(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Cancellable]


def _thread_timer(interval: float, function: Callable[[], None]) -> Cancellable:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncScheduler:
    """Single scheduler in front of a SyncEngine.

    Args:
        engine: The engine to drive.
        config: Timing configuration. Defaults to the engine's.
        clock: Epoch-millis source.
        timer_factory: Builds the debounce timer (threading.Timer by default).
        passphrase: Passphrase handed to every background operation.
    """

    def __init__(
        self,
        engine: SyncEngine,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], int] = _now_ms,
        timer_factory: TimerFactory = _thread_timer,
        passphrase: Optional[str] = None,
    ):
        self.engine = engine
        self.config = config or engine.config
        self.clock = clock
        self.timer_factory = timer_factory
        self.passphrase = passphrase

        self._lock = threading.Lock()
        self._busy = False
        self._timer: Optional[Cancellable] = None
        self._recent: deque[int] = deque()
        self.dropped = 0

    @property
    def pending(self) -> bool:
        """Whether a debounced push is waiting to fire."""
        return self._timer is not None

    def debounce_delay(self) -> int:
        """Window in millis for the change just recorded."""
        if len(self._recent) >= self.config.burst_threshold:
            return self.config.burst_debounce_ms
        return self.config.debounce_ms

    def on_local_change(self, kind: Optional[str] = None) -> Optional[int]:
        """Record a local mutation and (re)arm the debounce timer.

        Returns:
            The chosen delay in millis, or None if sync is disabled.
        """
        if not self.engine.is_enabled:
            return None

        now = self.clock()
        with self._lock:
            self._recent.append(now)
            horizon = now - self.config.burst_window_ms
            while self._recent and self._recent[0] < horizon:
                self._recent.popleft()

            delay = self.debounce_delay()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self.timer_factory(delay / 1000.0, self._fire_debounced)
            self._timer.start()

        logger.debug("Local change (%s): push in %d ms", kind or "?", delay)
        return delay

    def _fire_debounced(self) -> None:
        with self._lock:
            self._timer = None
        self._submit("push", self.engine.push)

    def on_poll_tick(self) -> Optional[SyncResult]:
        """Pull when the remote holds something newer from another device."""
        if not self.engine.is_enabled:
            return None
        try:
            newer = self.engine.remote_is_newer()
        except SyncError as exc:
            logger.warning("Freshness check failed: %s", exc)
            return None
        if not newer:
            return None
        return self._submit("pull", self.engine.pull)

    def on_backup_tick(self) -> Optional[SyncResult]:
        """Safety-net round trip if no sync succeeded within the staleness window."""
        if not self.engine.is_enabled:
            return None
        last = self.engine.last_sync_time
        if last is not None and self.clock() - last < self.config.backup_staleness * 1000:
            return None
        return self._submit("backup", self.engine.sync_now)

    def _submit(
        self, name: str, operation: Callable[[Optional[str]], SyncResult]
    ) -> Optional[SyncResult]:
        with self._lock:
            if self._busy:
                self.dropped += 1
                logger.info("Trigger %s dropped: worker busy", name)
                return None
            self._busy = True

        try:
            result = operation(self.passphrase)
        finally:
            with self._lock:
                self._busy = False

        if result.success:
            logger.info("Background %s succeeded: %s", name, result.message or "ok")
        else:
            logger.warning("Background %s failed: %s", name, result.error)
        return result

    def cancel(self) -> None:
        """Drop any pending debounced push."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._recent.clear()
