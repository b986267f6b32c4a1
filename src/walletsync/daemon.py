"""
walletsync daemon -- background sync for one wallet home.

Runs three loops on their own threads:

    watch    notices wallet.json changing and feeds on_local_change
    poll     asks the remote store whether another device pushed
    backup   round trip if nothing has synced for a while

All of them hand work to the same SyncScheduler, so at most one push
or pull runs at a time. Failures are logged and retried on the next tick.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .runtime import WalletRuntime, resolve_home
from .sync.scheduler import SyncScheduler

logger = logging.getLogger("walletsync.daemon")

PID_FILE = "daemon.pid"
LOG_DIR = "logs"


class DaemonConfig:
    """Configuration for the daemon process.

    Attributes:
        home: Wallet home directory.
        watch_interval: Seconds between wallet.json mtime checks.
        poll_interval: Seconds between remote freshness checks.
        backup_interval: Seconds between backup ticks.
        log_file: Path for daemon log output.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        watch_interval: float = 1.0,
        poll_interval: Optional[float] = None,
        backup_interval: Optional[float] = None,
        passphrase: Optional[str] = None,
    ):
        self.home = resolve_home(home)
        self.watch_interval = watch_interval
        self.poll_interval = poll_interval
        self.backup_interval = backup_interval
        self.passphrase = passphrase

        log_dir = self.home / LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / "daemon.log"


class DaemonState:
    """Thread-safe counters for what the loops have done."""

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_poll: Optional[datetime] = None
        self.changes_seen: int = 0
        self.syncs_completed: int = 0
        self.errors: list[str] = []
        self.running: bool = False

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "running": self.running,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "last_poll": self.last_poll.isoformat() if self.last_poll else None,
                "changes_seen": self.changes_seen,
                "syncs_completed": self.syncs_completed,
                "recent_errors": self.errors[-10:],
                "pid": os.getpid(),
            }

    def record_poll(self) -> None:
        with self._lock:
            self.last_poll = datetime.now(timezone.utc)

    def record_change(self) -> None:
        with self._lock:
            self.changes_seen += 1

    def record_result(self, result) -> None:
        """Count a finished sync; keep only the last 50 errors."""
        if result is None:
            return
        with self._lock:
            if result.success:
                self.syncs_completed += 1
            else:
                ts = datetime.now(timezone.utc).isoformat()
                self.errors.append(f"[{ts}] {result.error}")
                if len(self.errors) > 50:
                    self.errors = self.errors[-50:]


class SyncDaemon:
    """Background sync service.

    Args:
        config: Daemon configuration.
        runtime: Pre-built runtime (tests); built from config.home otherwise.
    """

    def __init__(self, config: DaemonConfig, runtime: Optional[WalletRuntime] = None):
        self.config = config
        self.runtime = runtime or WalletRuntime(config.home)
        self.scheduler = SyncScheduler(
            self.runtime.engine, passphrase=config.passphrase
        )
        self.state = DaemonState()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._mtime_lock = threading.Lock()
        self._last_mtime = self.runtime.store.mtime()

    @property
    def poll_interval(self) -> float:
        return self.config.poll_interval or self.runtime.config.poll_interval

    @property
    def backup_interval(self) -> float:
        return self.config.backup_interval or self.runtime.config.backup_interval

    def start(self, install_signals: bool = True) -> None:
        """Write the PID file and start the watch, poll and backup loops."""
        self._write_pid()
        self._setup_logging()
        if install_signals:
            self._setup_signals()

        self.state.running = True
        self.state.started_at = datetime.now(timezone.utc)
        logger.info(
            "Daemon starting: home=%s poll=%ss backup=%ss",
            self.config.home,
            self.poll_interval,
            self.backup_interval,
        )

        workers = [
            ("watch", self._watch_loop),
            ("poll", self._poll_loop),
            ("backup", self._backup_loop),
        ]
        for name, target in workers:
            t = threading.Thread(target=target, name=f"walletsync-{name}", daemon=True)
            t.start()
            self._threads.append(t)

        logger.info("Daemon started: PID %d", os.getpid())

    def stop(self) -> None:
        """Stop all loops and cancel any pending debounced push."""
        logger.info("Daemon stopping...")
        self._stop_event.set()
        self.state.running = False
        self.scheduler.cancel()

        for t in self._threads:
            t.join(timeout=5)

        self._remove_pid()
        logger.info("Daemon stopped.")

    def run_forever(self) -> None:
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def check_for_local_change(self) -> bool:
        """Compare wallet.json mtime with the last seen one.

        A change written by our own pull (import_data) is not a local edit.
        """
        with self._mtime_lock:
            mtime, imported = self.runtime.store.mtime_state()
            if mtime is None or mtime == self._last_mtime:
                return False
            self._last_mtime = mtime
            if mtime == imported:
                return False
        self.state.record_change()
        self.scheduler.on_local_change("wallet")
        return True

    def _watch_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_for_local_change()
            except Exception as exc:
                logger.error("Watch error: %s", exc)
            self._stop_event.wait(timeout=self.config.watch_interval)

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                result = self.scheduler.on_poll_tick()
                self.state.record_poll()
                self.state.record_result(result)
            except Exception as exc:
                logger.error("Poll error: %s", exc)
            self._stop_event.wait(timeout=self.poll_interval)

    def _backup_loop(self) -> None:
        while not self._stop_event.is_set():
            self._stop_event.wait(timeout=self.backup_interval)
            if self._stop_event.is_set():
                break
            try:
                result = self.scheduler.on_backup_tick()
                self.state.record_result(result)
            except Exception as exc:
                logger.error("Backup sync error: %s", exc)

    def _setup_logging(self) -> None:
        handler = logging.FileHandler(self.config.log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
        )
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    def _setup_signals(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        pid_path = self.config.home / PID_FILE
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        pid_path = self.config.home / PID_FILE
        if pid_path.exists():
            pid_path.unlink()


def read_pid(home: Optional[Path] = None) -> Optional[int]:
    """Daemon PID from the PID file, or None."""
    pid_path = resolve_home(home) / PID_FILE
    if not pid_path.exists():
        return None
    try:
        return int(pid_path.read_text(encoding="utf-8").strip())
    except (ValueError, OSError):
        return None


def is_running(home: Optional[Path] = None) -> bool:
    """Whether the PID in the PID file belongs to a live process."""
    pid = read_pid(home)
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
