"""Tests for the no-fork runner entry point."""

from __future__ import annotations

import io
import logging
import os
import sys
from types import SimpleNamespace

import pytest

from spawner import runner


def test_unloadable_payload_is_logged_and_exits(monkeypatch, caplog):
    # GLOBAL opcode naming a module no interpreter can import
    payload = b"cspawner_missing_module\nwork\n."
    monkeypatch.setattr(sys, "stdin", SimpleNamespace(buffer=io.BytesIO(payload)))

    def _exit(code):
        raise SystemExit(code)

    monkeypatch.setattr(runner.os, "_exit", _exit)

    with caplog.at_level(logging.ERROR, logger="spawner"):
        with pytest.raises(SystemExit) as exc:
            runner.main()

    assert exc.value.code == 1
    errors = [r.getMessage() for r in caplog.records if r.levelno >= logging.ERROR]
    assert errors == [
        f"Exception in child[{os.getpid()}] - ModuleNotFoundError: "
        "No module named 'spawner_missing_module'"
    ]
