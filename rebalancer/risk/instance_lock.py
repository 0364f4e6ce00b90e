"""
Single-instance guard backed by a pid lock file.

Two bots driving the same position would race each other's rebalances, so
the process holds this lock for its whole lifetime. A lock left behind by a
dead process is detected through a liveness check and removed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event


class ConcurrentInstanceError(RuntimeError):
    """Another live process holds the lock."""

    def __init__(self, pid: int, lock_path: Path) -> None:
        super().__init__(f"Another rebalance process is running (PID {pid}). Lock file: {lock_path}")
        self.pid = pid
        self.lock_path = lock_path


def pid_is_alive(pid: int) -> bool:
    """Check a pid with signal 0."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


class InstanceLock:
    def __init__(
        self,
        path: str | Path,
        is_alive: Callable[[int], bool] = pid_is_alive,
        pid: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.path = Path(path)
        self.pid = pid if pid is not None else os.getpid()
        self._is_alive = is_alive
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _read_owner(self) -> Optional[int]:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except FileNotFoundError:
            return None
        except ValueError:
            return -1

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            ConcurrentInstanceError: the recorded owner is alive
        """
        if self.path.exists():
            owner = self._read_owner()
            if owner is not None and owner != self.pid:
                if owner > 0 and self._is_alive(owner):
                    raise ConcurrentInstanceError(owner, self.path)
                self.path.unlink(missing_ok=True)
                log_event(self._log, "stale_lock_removed", level=logging.WARNING,
                          lock_path=str(self.path), stale_pid=owner)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(self.pid), encoding="utf-8")
        self._held = True
        log_event(self._log, "lock_acquired", lock_path=str(self.path), pid=self.pid)

    def release(self) -> None:
        """Remove the lock file if it still records our pid. Safe to call more than once."""
        owner = self._read_owner()
        if owner == self.pid:
            self.path.unlink(missing_ok=True)
            if self._held:
                log_event(self._log, "lock_released", lock_path=str(self.path), pid=self.pid)
        elif owner is not None and self._held:
            log_event(self._log, "lock_not_ours", level=logging.WARNING,
                      lock_path=str(self.path), pid=self.pid, owner=owner)
        self._held = False

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

