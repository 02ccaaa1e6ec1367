"""Tests for the waiter — tasks, reaped processes, async waits."""

from __future__ import annotations

import subprocess
import sys
import threading
import time

from spawner.types import HandleKind, SpawnHandle
from spawner.waiter import Waiter


def test_wait_nothing_still_cleans_pool(pool):
    waiter = Waiter(pool)
    waiter.wait()
    waiter.wait([])
    assert pool.calls == ["discard_stale", "discard_stale"]


def test_wait_inline_handle_is_noop(pool):
    Waiter(pool).wait(SpawnHandle(kind=HandleKind.INLINE))
    assert pool.calls == ["discard_stale"]


def test_wait_finished_task_returns_immediately(spawner):
    handle = spawner.spawn(lambda: None, strategy="task")
    handle.ref.join()

    start = time.monotonic()
    spawner.wait(handle)
    assert time.monotonic() - start < 1


def test_wait_joins_task(pool):
    done = []
    thread = threading.Thread(target=lambda: (time.sleep(0.05), done.append(True)))
    thread.start()

    Waiter(pool).wait(SpawnHandle(kind=HandleKind.TASK, ref=thread))
    assert done == [True]


def test_wait_already_reaped_process(pool):
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()

    assert Waiter(pool).wait(SpawnHandle(kind=HandleKind.PROCESS, ref=proc.pid)) == [None]
    assert pool.calls == ["discard_stale"]


def test_wait_twice_on_same_child(spawner):
    handle = spawner.spawn(lambda: None, strategy="process")
    assert spawner.wait(handle) == [0]
    assert spawner.wait(handle) == [0]


def test_wait_mixed_handles(spawner):
    results = []
    handles = [
        spawner.spawn(lambda: results.append("task"), strategy="task"),
        spawner.spawn(lambda: None, strategy="process"),
        spawner.spawn(lambda: results.append("inline"), strategy="inline"),
    ]
    spawner.wait(handles)
    assert sorted(results) == ["inline", "task"]


def test_wait_swallows_task_failure(spawner):
    def _boom():
        raise KeyError("missing")

    spawner.wait(spawner.spawn(_boom, strategy="task"))


async def test_wait_async(spawner):
    done = []
    handle = spawner.spawn(lambda: (time.sleep(0.05), done.append(True)), strategy="task")
    await spawner.wait_async(handle)
    assert done == [True]


def _settle(waiter, timeout=5.0):
    deadline = time.monotonic() + timeout
    while waiter.pending and time.monotonic() < deadline:
        time.sleep(0.01)
    return waiter.pending == 0


def test_detach_records_exit_and_reports_reaped(pool):
    reaped = []
    waiter = Waiter(pool)
    waiter.detach(4242, lambda: 3, reaped.append)

    assert _settle(waiter)
    assert reaped == [4242]
    assert waiter.exit_code(4242) == 3
    assert waiter.wait(SpawnHandle(kind=HandleKind.PROCESS, ref=4242)) == [3]


def test_detach_tolerates_child_reaped_elsewhere(pool):
    def _gone():
        raise ChildProcessError(10, "No child processes")

    reaped = []
    waiter = Waiter(pool)
    waiter.detach(4243, _gone, reaped.append)

    assert _settle(waiter)
    assert reaped == [4243]
    assert waiter.exit_code(4243) is None


def test_exit_history_is_bounded(pool):
    waiter = Waiter(pool, history=2)
    for pid in (1, 2, 3):
        waiter.detach(pid, lambda pid=pid: pid * 10)
        assert _settle(waiter)

    assert waiter.exit_code(1) is None
    assert waiter.exit_code(2) == 20
    assert waiter.exit_code(3) == 30
