"""spawner — run work inline, in a forked child, or in a thread."""

from importlib.metadata import version, PackageNotFoundError

from spawner.dispatch import Spawner
from spawner.exceptions import SpawnerError, SpawnFailure, WorkNotTransferableError
from spawner.types import HandleKind, SpawnHandle, SpawnOptions, Strategy

try:
    __version__ = version("spawner")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development

__all__ = [
    "HandleKind",
    "SpawnFailure",
    "SpawnHandle",
    "SpawnOptions",
    "Spawner",
    "SpawnerError",
    "Strategy",
    "WorkNotTransferableError",
]
