"""Spawner — run a unit of work inline, in a forked process, or in a thread.

Usage:
    from spawner import Spawner

    spawner = Spawner.get()
    spawner.set_defaults(priority=5)
    handle = spawner.spawn(rebuild_index, kill_on_exit=True)
    ...
    spawner.wait(handle)

A forked child closes the resources registered with `resources_to_close`,
reconnects through the connection pool, runs the work and leaves with
os._exit() so none of the parent's exit hooks run twice.
"""

from __future__ import annotations

import functools
import logging
import multiprocessing
import os
import pickle
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Mapping, NoReturn

from spawner.children import ChildRegistry, ShutdownHook
from spawner.config import SpawnerSettings, settings as default_settings
from spawner.exceptions import SpawnFailure, WorkNotTransferableError
from spawner.pool import ConnectionPool, NullConnectionPool
from spawner.resources import ResourceRegistry
from spawner.types import (
    HandleKind,
    SpawnHandle,
    SpawnOptions,
    Strategy,
    Work,
    default_strategy,
)
from spawner.waiter import Waiter

_logger = logging.getLogger(__name__)


def _flush_logs() -> None:
    """Flush every handler our records can reach; os._exit() skips this."""
    logger: logging.Logger | None = _logger
    while logger is not None:
        for handler in logger.handlers:
            handler.flush()
        if not logger.propagate:
            break
        logger = logger.parent


def _set_process_name(name: str) -> None:
    multiprocessing.current_process().name = name
    comm = Path("/proc/self/comm")
    if not comm.exists():
        return
    try:
        # The kernel keeps at most 15 bytes of the name
        comm.write_text(name[:15])
    except OSError as e:
        _logger.debug("Could not rename process %d: %s", os.getpid(), e)


def _transferable(label: str, obj: Any) -> Any:
    """Check that ``obj`` survives the trip into a fresh interpreter."""
    target = obj.func if isinstance(obj, functools.partial) else obj
    if getattr(target, "__module__", None) == "__main__":
        raise WorkNotTransferableError(
            f"{label} is defined in __main__, which a new interpreter cannot import"
        )
    try:
        pickle.dumps(obj)
    except (pickle.PicklingError, TypeError, AttributeError) as e:
        raise WorkNotTransferableError(f"{label} must be picklable to run without fork: {e}") from e
    return obj


class Spawner:
    """Dispatches work to one of the execution strategies.

    Owns the process-wide state the strategies share: the default options,
    the resources to close after a fork, the children to kill on exit and
    the connection pool hooks.
    """

    _instance: Spawner | None = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        settings: SpawnerSettings | None = None,
        pool: ConnectionPool | None = None,
        resources: ResourceRegistry | None = None,
        children: ChildRegistry | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._pool = pool or NullConnectionPool()
        self._resources = resources or ResourceRegistry()
        self._children = children or ChildRegistry()
        self._waiter = Waiter(self._pool)
        self._defaults = SpawnOptions(
            strategy=self._settings.strategy or default_strategy(),
            priority=self._settings.priority,
            kill_on_exit=self._settings.kill_on_exit,
            display_name=self._settings.display_name,
        )
        self._defaults_lock = threading.Lock()
        self.shutdown_hook = ShutdownHook(self._children)
        self.shutdown_hook.install()

    @classmethod
    def get(cls) -> Spawner:
        """Process-wide spawner built from the environment settings."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    # ── Configuration ──────────────────────────────────────────────────────

    @property
    def defaults(self) -> SpawnOptions:
        return self._defaults

    @property
    def children(self) -> ChildRegistry:
        return self._children

    @property
    def waiter(self) -> Waiter:
        return self._waiter

    @property
    def resources(self) -> ResourceRegistry:
        return self._resources

    def set_defaults(self, **options: Any) -> SpawnOptions:
        """Merge ``options`` into the defaults used by every later spawn."""
        with self._defaults_lock:
            self._defaults = self._defaults.merge(options)
            merged = self._defaults
        _logger.info("Default options = %s", merged.model_dump(mode="json"))
        return merged

    def resources_to_close(self, *resources: Any) -> None:
        """Replace the resources a forked child closes before running."""
        self._resources.set(*resources)

    def options_for(
        self,
        options: SpawnOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> SpawnOptions:
        """Per-call options merged over the current defaults."""
        if isinstance(options, SpawnOptions):
            options = options.model_dump(exclude_unset=True)
        with self._defaults_lock:
            defaults = self._defaults
        return defaults.merge({**(options or {}), **overrides})

    # ── Dispatch ───────────────────────────────────────────────────────────

    def spawn(
        self,
        work: Work,
        options: SpawnOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> SpawnHandle:
        """Run ``work`` with the selected strategy and return its handle."""
        opts = self.options_for(options, **overrides)

        if opts.strategy == Strategy.INLINE:
            work()
            return SpawnHandle(kind=HandleKind.INLINE)
        if opts.strategy == Strategy.TASK:
            return self._start_task(opts, work)
        if hasattr(os, "fork") and self._settings.fork:
            return self._fork(opts, work)
        return self._start_runner(opts, work)

    def wait(
        self, handles: SpawnHandle | Iterable[SpawnHandle] | None = None
    ) -> list[int | None]:
        """Block until the work behind ``handles`` finished; returns exit codes."""
        return self._waiter.wait(handles)

    async def wait_async(
        self, handles: SpawnHandle | Iterable[SpawnHandle] | None = None
    ) -> list[int | None]:
        return await self._waiter.wait_async(handles)

    # ── Isolated process ───────────────────────────────────────────────────

    def _fork(self, options: SpawnOptions, work: Work) -> SpawnHandle:
        _logger.debug("Parent PID = %d", os.getpid())
        try:
            pid = os.fork()
        except OSError as e:
            raise SpawnFailure(f"fork failed: {e}") from e

        if pid == 0:
            self.run_isolated(options, work)

        self._track(pid, options)
        self._waiter.detach(
            pid,
            lambda: os.waitstatus_to_exitcode(os.waitpid(pid, 0)[1]),
            self._children.discard,
        )
        return SpawnHandle(kind=HandleKind.PROCESS, ref=pid)

    def _start_runner(self, options: SpawnOptions, work: Work) -> SpawnHandle:
        """Isolated process without fork: ship the work to a new interpreter."""
        payload = pickle.dumps({
            "options": options,
            "work": _transferable("work", work),
            "pool": _transferable("connection pool", self._pool),
        })

        try:
            proc = subprocess.Popen(
                [sys.executable, "-m", "spawner.runner"],
                stdin=subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailure(f"could not start runner: {e}") from e

        with proc.stdin:
            proc.stdin.write(payload)

        self._track(proc.pid, options)
        self._waiter.detach(proc.pid, proc.wait, self._children.discard)
        return SpawnHandle(kind=HandleKind.PROCESS, ref=proc.pid)

    def _track(self, pid: int, options: SpawnOptions) -> None:
        self._children.prune()
        if options.kill_on_exit:
            self._children.add(pid)

    def run_isolated(self, options: SpawnOptions, work: Work) -> NoReturn:
        """Body of a freshly split process. Never returns."""
        start = time.monotonic()
        status = 1
        try:
            # This process has no children of its own to kill (yet)
            self._children.reset()
            self._resources.reset()
            self._defaults_lock = threading.Lock()
            self._waiter.reset()
            _logger.debug("Child PID = %d", os.getpid())

            if options.priority is not None:
                self._apply_process_priority(options.priority)

            self._resources.drain()
            self._pool.reconnect()

            if options.display_name:
                _set_process_name(options.display_name)

            work()
            status = 0
        except Exception as e:
            _logger.error(
                "Exception in child[%d] - %s: %s", os.getpid(), type(e).__name__, e
            )
        finally:
            try:
                self._pool.release_all()
            except Exception as e:
                _logger.error(
                    "Could not release connections in child[%d] - %s: %s",
                    os.getpid(), type(e).__name__, e,
                )
            finally:
                _logger.info(
                    "Child[%d] took %.3f sec", os.getpid(), time.monotonic() - start
                )
                _flush_logs()
                self._children.sweep()
                os._exit(status)

    def _apply_process_priority(self, niceness: int) -> None:
        try:
            os.setpriority(os.PRIO_PROCESS, 0, niceness)
        except (OSError, AttributeError) as e:
            _logger.error("Could not set nice %d on child[%d]: %s", niceness, os.getpid(), e)

    # ── Concurrent task ────────────────────────────────────────────────────

    def _start_task(self, options: SpawnOptions, work: Work) -> SpawnHandle:
        # Clean up connections left by earlier tasks
        self._pool.discard_stale()
        thread = threading.Thread(
            target=self._run_task,
            args=(options, work),
            name=options.display_name,
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            raise SpawnFailure(f"could not start thread: {e}") from e
        return SpawnHandle(kind=HandleKind.TASK, ref=thread)

    def _run_task(self, options: SpawnOptions, work: Work) -> None:
        if options.priority is not None:
            self._apply_task_priority(options.priority)
        try:
            work()
        except Exception as e:
            _logger.error(
                "Exception in task[%s] - %s: %s",
                threading.current_thread().name, type(e).__name__, e,
            )

    def task_priority(self, hint: int) -> int:
        """Thread priority for a niceness hint; higher means more favoured."""
        return -hint if self._settings.task_priority_inverted else hint

    def _apply_task_priority(self, hint: int) -> None:
        # Only Linux treats a thread id as a valid PRIO_PROCESS target
        if not sys.platform.startswith("linux"):
            return
        niceness = -self.task_priority(hint)
        try:
            os.setpriority(os.PRIO_PROCESS, threading.get_native_id(), niceness)
        except OSError as e:
            _logger.debug("Could not set nice %d on task: %s", niceness, e)
