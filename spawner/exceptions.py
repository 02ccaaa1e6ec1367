"""Custom exception hierarchy for spawner."""


class SpawnerError(Exception):
    """Base for all spawner errors."""


class SpawnFailure(SpawnerError):
    """The OS could not create a new process or thread for the work."""


class WorkNotTransferableError(SpawnFailure):
    """The work cannot be shipped to a fresh interpreter (not picklable)."""
