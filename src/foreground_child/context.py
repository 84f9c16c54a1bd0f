"""进程上下文模块。

描述当前解释器进程本身：
- ExitStatus: 当前进程将如何结束（退出码或信号）
- ProcessContext: 信号监听表、退出监听表、待定退出状态、自我终止，
  以及通往自身控制者的可选消息通道

同一信号的所有监听器复用一个 OS 级处理器（POSIX 上为
``loop.add_signal_handler``，Windows 上为 ``signal.signal``）。
处理器随第一个监听器安装，随最后一个监听器移除。
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, NoReturn, Optional, Union

if TYPE_CHECKING:
    from .channel import MessageChannel

__all__ = [
    "ExitStatus",
    "ProcessContext",
    "SignalNumber",
    "get_process_context",
    "reset_process_context",
    "signal_name",
    "terminating_signals",
    "to_signal",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# 没有 signal.Signals 成员的信号（如 SIGRTMIN+1）以原始整数保存
SignalNumber = Union[signal.Signals, int]

_POSIX_SIGNALS = (
    "SIGABRT",
    "SIGALRM",
    "SIGHUP",
    "SIGINT",
    "SIGTERM",
    "SIGVTALRM",
    "SIGXCPU",
    "SIGXFSZ",
    "SIGUSR2",
    "SIGTRAP",
    "SIGSYS",
    "SIGQUIT",
    "SIGIOT",
)
_LINUX_SIGNALS = ("SIGIO", "SIGPOLL", "SIGPWR", "SIGSTKFLT")
_WINDOWS_SIGNALS = ("SIGABRT", "SIGINT", "SIGTERM", "SIGBREAK")

# 无法捕获，也无法修改处置方式
_UNCATCHABLE_SIGNALS = frozenset(
    getattr(signal, name) for name in ("SIGKILL", "SIGSTOP") if hasattr(signal, name)
)


def to_signal(sig: int) -> SignalNumber:
    """尽量转换为 signal.Signals，未知编号保持为整数。"""
    try:
        return signal.Signals(sig)
    except ValueError:
        return int(sig)


def signal_name(sig: int) -> str:
    """信号名称，未知编号返回 ``SIG<N>``。"""
    value = to_signal(sig)
    if isinstance(value, signal.Signals):
        return value.name
    return f"SIG{value}"


def terminating_signals() -> list[signal.Signals]:
    """通常会结束进程的信号列表。

    别名（SIGIOT、SIGPOLL）合并到规范成员，每个信号编号只出现一次。
    """
    if IS_WINDOWS:
        names: tuple[str, ...] = _WINDOWS_SIGNALS
    elif sys.platform.startswith("linux"):
        names = _POSIX_SIGNALS + _LINUX_SIGNALS
    else:
        names = _POSIX_SIGNALS

    result: list[signal.Signals] = []
    for name in names:
        value = getattr(signal, name, None)
        if value is None:
            continue
        sig = signal.Signals(value)
        if sig not in result:
            result.append(sig)
    return result


@dataclass(frozen=True)
class ExitStatus:
    """当前进程的结束方式。

    ``code`` 与 ``signal`` 恰有一个被设置。信号形态的状态仍提供数值
    ``exit_code``，即 shell 对该信号死亡报告的 ``128 + signum``。
    """

    code: Optional[int] = None
    signal: Optional[SignalNumber] = None

    @classmethod
    def from_code(cls, code: Optional[int]) -> ExitStatus:
        return cls(code=0 if code is None else code)

    @classmethod
    def from_signal(cls, sig: int) -> ExitStatus:
        return cls(signal=to_signal(sig))

    @property
    def is_signal(self) -> bool:
        return self.signal is not None

    @property
    def exit_code(self) -> int:
        if self.signal is not None:
            return 128 + int(self.signal)
        return self.code or 0

    def __str__(self) -> str:
        if self.signal is not None:
            return f"signal {signal_name(self.signal)}"
        return f"code {self.code}"


SignalListener = Callable[[], None]
ExitListener = Callable[[], None]


class ProcessContext:
    """当前进程的监听表与终止控制。

    Example:
        ```python
        context = get_process_context()

        def on_term():
            print("SIGTERM received")

        context.on_signal(signal.SIGTERM, on_term)
        ...
        context.remove_signal_listener(signal.SIGTERM, on_term)
        ```

    Attributes:
        pending_status: 不带参数调用 ``exit()`` 时采用的结束方式
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._signal_listeners: dict[signal.Signals, list[SignalListener]] = {}
        self._exit_listeners: list[ExitListener] = []
        self._atexit_registered = False
        self._channel: Optional[MessageChannel] = None
        self._channel_checked = False
        self.pending_status: ExitStatus = ExitStatus.from_code(0)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()
        return self._loop

    def terminating_signals(self) -> list[signal.Signals]:
        return terminating_signals()

    # ------------------------------------------------------------------
    # 待定退出状态
    # ------------------------------------------------------------------

    @property
    def exit_code(self) -> int:
        return self.pending_status.exit_code

    @exit_code.setter
    def exit_code(self, code: int) -> None:
        self.pending_status = ExitStatus.from_code(code)

    # ------------------------------------------------------------------
    # 信号监听
    # ------------------------------------------------------------------

    def on_signal(self, sig: signal.Signals, listener: SignalListener) -> None:
        listeners = self._signal_listeners.get(sig)
        if listeners is None:
            listeners = self._signal_listeners[sig] = []
            self._install_handler(sig)
        listeners.append(listener)

    def remove_signal_listener(
        self, sig: signal.Signals, listener: SignalListener
    ) -> None:
        """移除一个监听器；未注册的监听器直接忽略。"""
        listeners = self._signal_listeners.get(sig)
        if not listeners or listener not in listeners:
            return
        listeners.remove(listener)
        if not listeners:
            del self._signal_listeners[sig]
            self._remove_handler(sig)

    def signal_listener_count(self, sig: Optional[signal.Signals] = None) -> int:
        if sig is not None:
            return len(self._signal_listeners.get(sig, ()))
        return sum(len(listeners) for listeners in self._signal_listeners.values())

    def _dispatch_signal(self, sig: signal.Signals) -> None:
        listeners = list(self._signal_listeners.get(sig, ()))
        logger.debug(f"{sig.name} received, {len(listeners)} listener(s)")
        for listener in listeners:
            listener()

    def _install_handler(self, sig: signal.Signals) -> None:
        if IS_WINDOWS:
            # Windows 不支持 add_signal_handler
            loop = self.loop
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(
                    self._dispatch_signal, sig
                ),
            )
        else:
            self.loop.add_signal_handler(sig, self._dispatch_signal, sig)

    def _remove_handler(self, sig: signal.Signals) -> None:
        if IS_WINDOWS:
            signal.signal(sig, signal.SIG_DFL)
            return
        try:
            self.loop.remove_signal_handler(sig)
        except RuntimeError as e:
            # 事件循环已关闭
            logger.debug(f"Could not remove handler for {sig.name}: {e}")

    # ------------------------------------------------------------------
    # 退出监听
    # ------------------------------------------------------------------

    def on_exit(self, listener: ExitListener) -> None:
        """解释器退出时调用 ``listener``。"""
        if not self._atexit_registered:
            atexit.register(self._emit_exit)
            self._atexit_registered = True
        self._exit_listeners.append(listener)

    def remove_exit_listener(self, listener: ExitListener) -> None:
        try:
            self._exit_listeners.remove(listener)
        except ValueError:
            pass

    def exit_listener_count(self) -> int:
        return len(self._exit_listeners)

    def _emit_exit(self) -> None:
        for listener in list(self._exit_listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(f"Error in exit listener: {e}")

    # ------------------------------------------------------------------
    # 终止
    # ------------------------------------------------------------------

    def exit(self, code: Optional[int] = None) -> NoReturn:
        """以 ``code`` 退出，未指定时使用待定退出码。"""
        sys.exit(self.exit_code if code is None else code)

    def kill_self(self, sig: int) -> None:
        """请求 OS 以 ``sig`` 杀死当前进程。

        先把处置方式恢复为 SIG_DFL，避免 Python 层处理器（例如
        SIGINT -> KeyboardInterrupt）拦截信号。SIGKILL/SIGSTOP 的处置
        方式不可修改，直接发送。
        """
        if sig not in _UNCATCHABLE_SIGNALS:
            signal.signal(sig, signal.SIG_DFL)
        os.kill(os.getpid(), sig)

    # ------------------------------------------------------------------
    # 消息通道
    # ------------------------------------------------------------------

    @property
    def channel(self) -> Optional[MessageChannel]:
        """通往本进程控制者的通道（如果启动时提供了）。"""
        if not self._channel_checked:
            from .channel import MessageChannel

            self._channel = MessageChannel.from_environment()
            self._channel_checked = True
        return self._channel

    @channel.setter
    def channel(self, channel: Optional[MessageChannel]) -> None:
        self._channel = channel
        self._channel_checked = True


# 全局上下文实例（延迟创建）
_context: ProcessContext | None = None


def get_process_context() -> ProcessContext:
    """获取全局进程上下文。"""
    global _context
    if _context is None:
        _context = ProcessContext()
    return _context


def reset_process_context() -> ProcessContext:
    """重建全局进程上下文（用于测试）。"""
    global _context
    _context = ProcessContext()
    return _context
