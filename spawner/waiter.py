"""Waiter — reap children in the background and block until work has finished."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections import OrderedDict
from typing import Callable, Iterable

from spawner.pool import ConnectionPool
from spawner.types import HandleKind, SpawnHandle

_logger = logging.getLogger(__name__)

# Exit codes kept for children nobody has waited on yet
EXIT_HISTORY = 1024


def _as_list(handles: SpawnHandle | Iterable[SpawnHandle] | None) -> list[SpawnHandle]:
    if handles is None:
        return []
    if isinstance(handles, SpawnHandle):
        return [handles]
    return list(handles)


class Waiter:
    """Waits on threads and child processes alike.

    Every child spawned through `detach` is reaped by its own daemon thread,
    so nothing is left behind when the caller never waits. A process the
    reaper (or anyone else) already collected counts as finished. Errors
    raised by the work never surface here; they were logged where the work
    ran.
    """

    def __init__(self, pool: ConnectionPool, history: int = EXIT_HISTORY) -> None:
        self._pool = pool
        self._history = history
        self._reapers: dict[int, threading.Thread] = {}
        self._exit_codes: OrderedDict[int, int] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Children whose reaper is still waiting for them."""
        with self._lock:
            return len(self._reapers)

    def exit_code(self, pid: int) -> int | None:
        with self._lock:
            return self._exit_codes.get(pid)

    def detach(
        self,
        pid: int,
        reap: Callable[[], int],
        on_reaped: Callable[[int], None] | None = None,
    ) -> None:
        """Reap the child in the background; callers may still wait on it.

        ``reap`` blocks until the child exits and returns its exit code
        (negative for a signal, as subprocess reports it).
        """

        def _reap() -> None:
            try:
                code = reap()
            except ChildProcessError:
                code = None  # collected by someone else
            with self._lock:
                if code is not None:
                    self._exit_codes[pid] = code
                    while len(self._exit_codes) > self._history:
                        self._exit_codes.popitem(last=False)
                self._reapers.pop(pid, None)
            if on_reaped is not None:
                on_reaped(pid)

        thread = threading.Thread(target=_reap, name=f"reaper-{pid}", daemon=True)
        with self._lock:
            self._reapers[pid] = thread
        thread.start()

    def reset(self) -> None:
        """Forget the parent's reapers and locks (used right after fork)."""
        self._reapers = {}
        self._exit_codes = OrderedDict()
        self._lock = threading.Lock()

    def wait(
        self, handles: SpawnHandle | Iterable[SpawnHandle] | None = None
    ) -> list[int | None]:
        """Block until every handle has finished.

        Returns one entry per handle: the exit code of a process when it is
        known, None for tasks, inline work and processes reaped elsewhere.
        """
        codes: list[int | None] = []
        for handle in _as_list(handles):
            if handle.kind == HandleKind.TASK:
                handle.ref.join()
                codes.append(None)
            elif handle.kind == HandleKind.PROCESS:
                codes.append(self._wait_process(handle.ref))
            else:
                codes.append(None)

        # Clean up connections from finished tasks
        self._pool.discard_stale()
        return codes

    async def wait_async(
        self, handles: SpawnHandle | Iterable[SpawnHandle] | None = None
    ) -> list[int | None]:
        return await asyncio.to_thread(self.wait, handles)

    def _wait_process(self, pid: int) -> int | None:
        with self._lock:
            reaper = self._reapers.get(pid)
        if reaper is not None:
            reaper.join()

        with self._lock:
            if pid in self._exit_codes:
                return self._exit_codes[pid]

        try:
            _, status = os.waitpid(pid, 0)
        except ChildProcessError:
            _logger.debug("Child(%d) already reaped", pid)
            return None
        return os.waitstatus_to_exitcode(status)
