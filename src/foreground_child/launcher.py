"""Launch a child as if it were the foreground process.

This module provides:
- Launcher: owns one child for its whole life and makes the current
  process end the same way the child ended
- foreground_child(): normalize a call, launch, return the child handle
- run(): blocking helper that launches and never returns

Lifecycle:
    RUNNING    child spawned, signals relayed, SIGHUP-on-exit armed
    CLOSING    child closed, pending status stored, completion hook running
    FINALIZED  relay removed, exit hook removed, exit/self-kill requested

The pending exit status is stored on the process context before the
completion hook runs, so the hook can inspect or override it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import signal
from enum import Enum
from typing import Any, NoReturn, Optional

import anyio

from .config import get_config
from .context import (
    ExitStatus,
    ProcessContext,
    SignalNumber,
    get_process_context,
    signal_name,
)
from .normalize import NormalizedArguments, normalize_arguments
from .runtime.child import ChildHandle, spawn
from .signals import UnproxySignals, proxy_signals

__all__ = ["Launcher", "LauncherState", "foreground_child", "run"]

logger = logging.getLogger(__name__)


class LauncherState(Enum):
    """Lifecycle state of a launcher."""

    PENDING = "pending"
    RUNNING = "running"
    CLOSING = "closing"
    FINALIZED = "finalized"


class Launcher:
    """Owns the lifecycle of exactly one foreground child.

    Example:
        ```python
        async def main():
            launcher = Launcher(normalize_arguments(["make", "test"]))
            child = await launcher.launch()
            await launcher.wait()   # the process exits before this returns

        anyio.run(main)
        ```

    Attributes:
        invocation: normalized program, args and completion hook
        context: process context whose signals, exit and channel are used
        signal_exit_delay: keep-alive delay before signal self-termination
        state: lifecycle state
        child: the child handle once launched
    """

    def __init__(
        self,
        invocation: NormalizedArguments,
        context: Optional[ProcessContext] = None,
        signal_exit_delay: Optional[float] = None,
    ) -> None:
        self.invocation = invocation
        self.context = context if context is not None else get_process_context()
        self.signal_exit_delay = (
            signal_exit_delay
            if signal_exit_delay is not None
            else get_config().signal_exit_delay
        )
        self.state = LauncherState.PENDING
        self.child: Optional[ChildHandle] = None

        self._unproxy_signals: Optional[UnproxySignals] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._finalized: Optional[anyio.Event] = None
        self._error: Optional[BaseException] = None
        self._callback_task: Optional[asyncio.Future[Any]] = None

    def __repr__(self) -> str:
        return (
            f"Launcher(program={self.invocation.program}, "
            f"state={self.state.value}, child={self.child!r})"
        )

    async def launch(self) -> ChildHandle:
        """Spawn the child and wire up relay, exit hook and close handler.

        Returns:
            The child handle, right after spawn

        Raises:
            RuntimeError: if this launcher was already launched
        """
        if self.state is not LauncherState.PENDING:
            raise RuntimeError(f"Launcher already launched (state={self.state.value})")

        self._loop = asyncio.get_running_loop()
        self._finalized = anyio.Event()

        parent_channel = self.context.channel
        child = await spawn(
            self.invocation.program,
            self.invocation.args,
            channel=parent_channel is not None,
        )
        self.child = child
        self.state = LauncherState.RUNNING

        self._unproxy_signals = proxy_signals(child, self.context)
        self.context.on_exit(self._child_hangup)
        child.on_close(self._on_close)

        if parent_channel is not None and child.channel is not None:
            self._bridge_channel(parent_channel, child)

        logger.debug(f"Launched {child!r}")
        return child

    async def wait(self) -> None:
        """Wait until finalization has been applied.

        Raises:
            Exception: whatever the completion hook raised
        """
        if self._finalized is None:
            raise RuntimeError("Launcher was not launched")
        await self._finalized.wait()
        if self._error is not None:
            raise self._error

    def _child_hangup(self) -> None:
        if self.child is not None:
            self.child.send_signal(signal.SIGHUP)

    # ------------------------------------------------------------------
    # Close handling
    # ------------------------------------------------------------------

    def _on_close(self, code: Optional[int], sig: Optional[SignalNumber]) -> None:
        if self.state is not LauncherState.RUNNING:
            return
        self.state = LauncherState.CLOSING

        if sig is not None:
            self.context.pending_status = ExitStatus.from_signal(sig)
        else:
            self.context.pending_status = ExitStatus.from_code(code)
        logger.debug(f"Child closed with {self.context.pending_status}")

        try:
            result = self.invocation.callback(self.proceed)
        except Exception as e:
            self._fail(e)
            return

        if inspect.isawaitable(result):
            self._callback_task = asyncio.ensure_future(result)
            self._callback_task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._fail(error)

    def _fail(self, error: BaseException) -> None:
        logger.error(f"Completion hook failed: {error!r}")
        self._error = error
        if self._finalized is not None:
            self._finalized.set()

    def proceed(self) -> None:
        """Finalize: tear down and end the current process like the child.

        Only the first call after the child closed has any effect.
        """
        if self.state is LauncherState.FINALIZED:
            logger.debug("proceed() called again, ignoring")
            return
        if self.state is not LauncherState.CLOSING:
            logger.debug(f"proceed() called while {self.state.value}, ignoring")
            return
        self.state = LauncherState.FINALIZED

        if self._unproxy_signals is not None:
            self._unproxy_signals()
            self._unproxy_signals = None
        self.context.remove_exit_listener(self._child_hangup)

        status = self.context.pending_status
        if status.is_signal:
            assert status.signal is not None
            # Keep the loop alive until the signal lands.
            assert self._loop is not None
            self._loop.call_later(
                self.signal_exit_delay, self._signal_exit_fallback, status
            )
            logger.debug(f"Re-raising {signal_name(status.signal)} on self")
            self.context.kill_self(status.signal)
        else:
            logger.debug(f"Exiting with code {status.exit_code}")
            # SystemExit is raised from a loop callback, never inside a task.
            assert self._loop is not None
            self._loop.call_soon(self._exit_with_code)

    def _exit_with_code(self) -> None:
        if self._finalized is not None:
            self._finalized.set()
        self.context.exit()

    def _signal_exit_fallback(self, status: ExitStatus) -> None:
        logger.warning(
            f"Still alive {self.signal_exit_delay}s after re-raising {status}, "
            f"exiting with code {status.exit_code}"
        )
        if self._finalized is not None:
            self._finalized.set()
        self.context.exit(status.exit_code)

    # ------------------------------------------------------------------
    # Message channel
    # ------------------------------------------------------------------

    def _bridge_channel(self, parent_channel: Any, child: ChildHandle) -> None:
        """Forward messages between our controller and the child."""
        assert child.channel is not None
        parent_channel.remove_all_listeners()

        def to_child(message: Any, handle: Optional[int]) -> None:
            _forward(child.channel, message, handle)

        def to_parent(message: Any, handle: Optional[int]) -> None:
            _forward(parent_channel, message, handle)

        parent_channel.on_message(to_child)
        child.on_message(to_parent)
        parent_channel.start(self._loop)
        child.channel.start(self._loop)
        logger.debug(f"Bridging message channel to child pid={child.pid}")


def _forward(channel: Any, message: Any, handle: Optional[int]) -> None:
    try:
        channel.send(message, handle)
    except OSError as e:
        logger.debug(f"Dropped message, channel unavailable: {e}")
    finally:
        if handle is not None:
            os.close(handle)


async def foreground_child(
    *a: Any,
    context: Optional[ProcessContext] = None,
) -> ChildHandle:
    """Spawn a child as the foreground process and return its handle.

    Call shapes::

        await foreground_child(["prog", "arg"], callback)
        await foreground_child("prog", ["arg"], callback)
        await foreground_child("prog", "arg1", "arg2", callback)

    ``callback(proceed)`` runs after the child closed; the current process
    exits (or dies by the child's signal) once it calls ``proceed()``.
    """
    launcher = Launcher(normalize_arguments(a), context=context)
    return await launcher.launch()


def run(*a: Any) -> NoReturn:
    """Run ``foreground_child(*a)`` on a fresh event loop and never return."""

    async def main() -> None:
        launcher = Launcher(normalize_arguments(a))
        await launcher.launch()
        await launcher.wait()

    anyio.run(main, backend="asyncio")
    get_process_context().exit()
