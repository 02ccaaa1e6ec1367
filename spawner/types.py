"""Core types shared across spawner modules."""

from __future__ import annotations

import os
from enum import Enum
from typing import Any, Callable, Mapping, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

Work: TypeAlias = Callable[[], Any]


# ── Strategies ────────────────────────────────────────────────────────────────


class Strategy(str, Enum):
    INLINE = "inline"
    PROCESS = "process"
    TASK = "task"


def default_strategy() -> Strategy:
    """Fork where the platform can, threads everywhere else."""
    return Strategy.PROCESS if hasattr(os, "fork") else Strategy.TASK


# ── Options ───────────────────────────────────────────────────────────────────


class SpawnOptions(BaseModel):
    """How a single unit of work gets executed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    strategy: Strategy = Field(default_factory=default_strategy)
    priority: int | None = None  # niceness hint
    kill_on_exit: bool = False
    display_name: str | None = None  # process name shown in ps/top

    def merge(self, overrides: Mapping[str, Any] | None = None) -> SpawnOptions:
        """Return new options with ``overrides`` applied field by field."""
        if not overrides:
            return self
        return SpawnOptions.model_validate({**self.model_dump(), **overrides})


# ── Handles ───────────────────────────────────────────────────────────────────


class HandleKind(str, Enum):
    PROCESS = "process"
    TASK = "task"
    INLINE = "inline"


class SpawnHandle(BaseModel):
    """Opaque reference to spawned work; the only thing `wait` accepts."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: HandleKind
    ref: Any = None  # OS pid, threading.Thread, or None for inline work

    @property
    def pid(self) -> int | None:
        return self.ref if self.kind == HandleKind.PROCESS else None
