"""Persistence collaborator — the connection pool hooks spawner calls.

spawner does not manage database connections itself. A host application
plugs in whatever owns its connections (an ORM engine, a driver pool) by
implementing this protocol.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ConnectionPool(Protocol):
    def reconnect(self) -> None:
        """Open fresh connections in a newly forked child."""

    def release_all(self) -> None:
        """Close every connection owned by this process."""

    def discard_stale(self) -> None:
        """Drop connections left behind by finished tasks."""


class NullConnectionPool:
    """Pool for hosts without a persistence layer."""

    def reconnect(self) -> None:
        pass

    def release_all(self) -> None:
        pass

    def discard_stale(self) -> None:
        pass
