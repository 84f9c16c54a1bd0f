"""Pytest configuration and fixtures."""

from __future__ import annotations

import signal
import sys
from pathlib import Path
from typing import Optional

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_CHILD = FIXTURES_DIR / "fake_child.py"

from foreground_child.context import ProcessContext  # noqa: E402


class RecordingContext(ProcessContext):
    """Process context that records termination instead of performing it.

    OS-level signal handlers and atexit are not touched; tests deliver
    signals with ``_dispatch_signal`` and exit with ``_emit_exit``.
    """

    def __init__(self) -> None:
        super().__init__()
        self._atexit_registered = True
        self.channel = None
        self.exits: list[int] = []
        self.kills: list[signal.Signals] = []

    def exit(self, code: Optional[int] = None) -> None:  # type: ignore[override]
        self.exits.append(self.exit_code if code is None else code)

    def kill_self(self, sig: signal.Signals) -> None:
        self.kills.append(sig)

    def _install_handler(self, sig: signal.Signals) -> None:
        pass

    def _remove_handler(self, sig: signal.Signals) -> None:
        pass


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def src_dir() -> Path:
    return SRC_DIR


@pytest.fixture
def fake_child() -> Path:
    """Path of the fake child script."""
    return FAKE_CHILD


@pytest.fixture
def context() -> RecordingContext:
    return RecordingContext()
