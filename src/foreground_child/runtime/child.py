"""Child process handle with inherited stdio and a close event.

This module provides:
- spawn(): start a program with the parent's stdin/stdout/stderr, optionally
  with a message channel advertised through FOREGROUND_CHILD_CHANNEL_FD
- ChildHandle: the running child, its close event, signal delivery and
  message exchange

Key design points:
- The close event fires exactly once, from a watcher task, with
  ``(code, signal)`` where exactly one is set
- A spawn failure is not raised; it is reported through the close event
  with a shell-style code (127 not found, 126 not executable, 1 otherwise)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Sequence
from typing import Any, Callable, Optional

from ..channel import CHANNEL_FD_ENV, MessageChannel, MessageListener
from ..context import SignalNumber, signal_name, to_signal

__all__ = ["ChildHandle", "CloseListener", "spawn"]

logger = logging.getLogger(__name__)

CloseListener = Callable[[Optional[int], Optional[SignalNumber]], None]

EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126
EXIT_SPAWN_FAILED = 1


def _spawn_error_code(error: OSError) -> int:
    if isinstance(error, FileNotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(error, PermissionError):
        return EXIT_NOT_EXECUTABLE
    return EXIT_SPAWN_FAILED


def _split_returncode(
    returncode: int,
) -> tuple[Optional[int], Optional[SignalNumber]]:
    """asyncio reports death by signal N as returncode -N.

    Signals without a ``signal.Signals`` member (real-time signals) are kept
    as plain ints so the death can still be mirrored.
    """
    if returncode < 0:
        return None, to_signal(-returncode)
    return returncode, None


class ChildHandle:
    """A spawned child process.

    Attributes:
        program: the program that was spawned
        args: its arguments
        process: the asyncio process, None if spawning failed
        error: the spawn error, if any
        channel: parent-side message channel to the child, if any
    """

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        process: Optional[asyncio.subprocess.Process] = None,
        error: Optional[OSError] = None,
        channel: Optional[MessageChannel] = None,
    ) -> None:
        self.program = program
        self.args = tuple(args)
        self.process = process
        self.error = error
        self.channel = channel
        self._close_listeners: list[CloseListener] = []
        self._closed: Optional[tuple[Optional[int], Optional[SignalNumber]]] = None
        self._closed_event = asyncio.Event()
        self._watcher: Optional[asyncio.Task[None]] = None

    def __repr__(self) -> str:
        if self._closed is not None:
            code, sig = self._closed
            status = f"closed={signal_name(sig) if sig else code}"
        else:
            status = "running"
        return f"ChildHandle(pid={self.pid}, program={self.program}, {status})"

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process is not None else None

    # ------------------------------------------------------------------
    # Close event
    # ------------------------------------------------------------------

    def on_close(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    def _start_watcher(self) -> None:
        self._watcher = asyncio.get_running_loop().create_task(self._watch())

    async def _watch(self) -> None:
        if self.process is None:
            code = _spawn_error_code(self.error) if self.error else EXIT_SPAWN_FAILED
            self._emit_close(code, None)
            return

        returncode = await self.process.wait()
        logger.debug(f"Child exited pid={self.pid} returncode={returncode}")
        self._emit_close(*_split_returncode(returncode))

    def _emit_close(
        self, code: Optional[int], sig: Optional[SignalNumber]
    ) -> None:
        if self._closed is not None:
            return
        self._closed = (code, sig)
        self._closed_event.set()
        for listener in list(self._close_listeners):
            listener(code, sig)

    async def wait(self) -> tuple[Optional[int], Optional[SignalNumber]]:
        """Wait for the close event and return ``(code, signal)``."""
        await self._closed_event.wait()
        assert self._closed is not None
        return self._closed

    # ------------------------------------------------------------------
    # Signals and messages
    # ------------------------------------------------------------------

    def send_signal(self, sig: signal.Signals) -> bool:
        """Send ``sig`` to the child.

        Returns:
            False if there is no live child to signal
        """
        if self.process is None or self.process.returncode is not None:
            return False
        try:
            # Also called from atexit, after the event loop is closed.
            os.kill(self.process.pid, sig)
        except ProcessLookupError:
            logger.debug(f"Child already exited pid={self.pid}, dropped {sig.name}")
            return False
        logger.debug(f"Sent {signal.Signals(sig).name} to child pid={self.pid}")
        return True

    def send(self, message: Any, handle: Any = None) -> None:
        if self.channel is None:
            raise RuntimeError("child was spawned without a message channel")
        self.channel.send(message, handle)

    def on_message(self, listener: MessageListener) -> None:
        if self.channel is None:
            raise RuntimeError("child was spawned without a message channel")
        self.channel.on_message(listener)


async def spawn(
    program: str,
    args: Sequence[str] = (),
    *,
    channel: bool = False,
) -> ChildHandle:
    """Spawn ``program`` with inherited stdio.

    Args:
        program: executable to run
        args: arguments
        channel: give the child a message channel

    Returns:
        The child handle; its close watcher is already running
    """
    kwargs: dict[str, Any] = {}
    parent_end: Optional[MessageChannel] = None
    child_end: Optional[MessageChannel] = None

    if channel:
        parent_end, child_end = MessageChannel.pair()
        child_fd = child_end.fileno()
        env = dict(os.environ)
        env[CHANNEL_FD_ENV] = str(child_fd)
        kwargs["env"] = env
        kwargs["pass_fds"] = (child_fd,)

    process: Optional[asyncio.subprocess.Process] = None
    error: Optional[OSError] = None
    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=None,
            stdout=None,
            stderr=None,
            **kwargs,
        )
        logger.debug(f"Started child pid={process.pid} argv={program} {list(args)}")
    except OSError as e:
        error = e
        logger.warning(f"Failed to spawn {program!r}: {e}")
    except (TypeError, ValueError) as e:
        # e.g. program=None from a malformed invocation
        error = OSError(str(e))
        logger.warning(f"Failed to spawn {program!r}: {e}")
    finally:
        if child_end is not None:
            child_end.close()

    if process is None and parent_end is not None:
        parent_end.close()
        parent_end = None

    handle = ChildHandle(program, args, process=process, error=error, channel=parent_end)
    handle._start_watcher()
    return handle
