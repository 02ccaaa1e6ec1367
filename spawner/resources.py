"""Resources a forked child must let go of before doing its own work.

Listening sockets, open files and similar handles are duplicated by fork().
The parent keeps using them; the child closes its copies so it never holds
a dangling reference to I/O it does not own.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

_logger = logging.getLogger(__name__)


def _is_closed(resource: Any) -> bool:
    """File objects expose ``closed``; sockets report fileno() == -1."""
    if hasattr(resource, "closed"):
        return bool(resource.closed)
    if hasattr(resource, "fileno"):
        try:
            return resource.fileno() == -1
        except (OSError, ValueError):
            return True
    return False


class ResourceRegistry:
    """Ordered list of closable resources, replaced wholesale by `set`."""

    def __init__(self) -> None:
        self._resources: list[Any] = []
        self._lock = threading.Lock()

    def set(self, *resources: Any) -> None:
        with self._lock:
            self._resources = list(resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self):
        return iter(list(self._resources))

    def drain(self) -> int:
        """Close every still-open resource, then forget all of them.

        Clearing makes nested spawns safe: a grandchild never tries to close
        what its parent already closed. Returns how many were closed.
        """
        with self._lock:
            resources, self._resources = self._resources, []

        closed = 0
        for resource in resources:
            if resource is None or not hasattr(resource, "close"):
                continue
            if _is_closed(resource):
                continue
            resource.close()
            closed += 1
        if closed:
            _logger.debug("Closed %d inherited resources", closed)
        return closed

    def reset(self) -> None:
        """Fresh lock after fork(); the parent's may have been held."""
        self._lock = threading.Lock()
