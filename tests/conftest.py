"""Shared test fixtures — a recording connection pool and ready spawners."""

from __future__ import annotations

from pathlib import Path

import pytest

from spawner.config import SpawnerSettings
from spawner.dispatch import Spawner


class RecordingPool:
    """Connection pool that counts calls. Only sees calls made in this process."""

    def __init__(self):
        self.calls: list[str] = []

    def reconnect(self):
        self.calls.append("reconnect")

    def release_all(self):
        self.calls.append("release_all")

    def discard_stale(self):
        self.calls.append("discard_stale")


class FilePool:
    """Connection pool that appends each call to a file, so forked children can report."""

    def __init__(self, path: Path):
        self.path = path

    def _record(self, name: str) -> None:
        with self.path.open("a") as f:
            f.write(name + "\n")

    def reconnect(self):
        self._record("reconnect")

    def release_all(self):
        self._record("release_all")

    def discard_stale(self):
        self._record("discard_stale")


@pytest.fixture
def settings():
    return SpawnerSettings(
        strategy=None,
        priority=None,
        kill_on_exit=False,
        display_name=None,
        fork=True,
        task_priority_inverted=True,
    )


@pytest.fixture
def pool():
    return RecordingPool()


@pytest.fixture
def spawner(settings, pool):
    return Spawner(settings=settings, pool=pool)


@pytest.fixture
def file_pool(tmp_path):
    return FilePool(tmp_path / "pool.log")
