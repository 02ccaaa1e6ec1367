"""Child processes marked for death when their parent exits.

Every spawned process that asked for ``kill_on_exit`` lands in the
ChildRegistry of the process that forked it. The ShutdownHook sweeps that
registry from ``atexit`` and sends SIGTERM to whatever is still running.
"""

from __future__ import annotations

import atexit
import logging
import os
import threading

import psutil

_logger = logging.getLogger(__name__)


def is_alive(pid: int) -> bool:
    """True while the process exists and has not exited (zombies count as dead)."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, ValueError):
        return False
    except psutil.AccessDenied:
        return True


def terminate(pid: int) -> None:
    """Send SIGTERM (TerminateProcess on Windows)."""
    psutil.Process(pid).terminate()


class ChildRegistry:
    """Per-process set of child pids to kill on exit ("punks")."""

    def __init__(self) -> None:
        self._pids: set[int] = set()
        self._lock = threading.Lock()

    def __contains__(self, pid: int) -> bool:
        return pid in self._pids

    def __len__(self) -> int:
        return len(self._pids)

    def snapshot(self) -> list[int]:
        with self._lock:
            return sorted(self._pids)

    def add(self, pid: int) -> None:
        with self._lock:
            self._pids.add(pid)
            _logger.debug("Death row = %s", sorted(self._pids))

    def discard(self, pid: int) -> None:
        with self._lock:
            self._pids.discard(pid)

    def prune(self) -> int:
        """Forget children that already exited. Returns how many were dropped."""
        with self._lock:
            dead = {pid for pid in self._pids if not is_alive(pid)}
            self._pids -= dead
        return len(dead)

    def sweep(self) -> list[int]:
        """Terminate every child still alive, then empty the registry."""
        with self._lock:
            pids, self._pids = sorted(self._pids), set()

        signalled = []
        for pid in pids:
            if not is_alive(pid):
                continue
            _logger.info("Parent(%d) killing child(%d)", os.getpid(), pid)
            try:
                terminate(pid)
            except (psutil.Error, OSError):
                # Exited between the liveness check and the signal
                continue
            signalled.append(pid)
        return signalled

    def reset(self) -> None:
        """Start over with no children and a fresh lock (used right after fork)."""
        self._pids = set()
        self._lock = threading.Lock()


class ShutdownHook:
    """Sweeps a ChildRegistry when the interpreter exits normally."""

    def __init__(self, children: ChildRegistry) -> None:
        self._children = children
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        if self._installed:
            return
        atexit.register(self.run)
        self._installed = True

    def run(self) -> list[int]:
        return self._children.sweep()
