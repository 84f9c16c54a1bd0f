"""Runtime module for spawning and watching the foreground child.

This module provides the child process handle and the spawn primitive the
launcher builds on.
"""

from __future__ import annotations

from .child import ChildHandle, CloseListener, spawn

__all__ = [
    "ChildHandle",
    "CloseListener",
    "spawn",
]
