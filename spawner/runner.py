"""Isolated-process entry point for platforms without fork().

This script is executed as a subprocess by Spawner:
    python -m spawner.runner

It reads a pickled payload from stdin and runs the work exactly like a
forked child would: drain resources, reconnect, run, release, exit.

Input (stdin): pickle of {"options": SpawnOptions, "work": callable, "pool": ConnectionPool}
"""

from __future__ import annotations

import logging
import os
import pickle
import sys

from spawner.config import settings

_logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from spawner.dispatch import Spawner

    try:
        payload = pickle.loads(sys.stdin.buffer.read())
    except Exception as e:
        # e.g. the work lives in a module this interpreter cannot import
        _logger.error(
            "Exception in child[%d] - %s: %s", os.getpid(), type(e).__name__, e
        )
        for handler in logging.getLogger().handlers:
            handler.flush()
        os._exit(1)

    spawner = Spawner(pool=payload["pool"])
    spawner.run_isolated(payload["options"], payload["work"])


if __name__ == "__main__":
    main()
