"""信号转发模块。

子进程运行期间，当前进程收到的每个终止信号都原样转发给子进程。
父进程自身不处理这些信号：等待子进程结束，然后复现子进程的结局。
"""

from __future__ import annotations

import logging
import signal
from typing import TYPE_CHECKING, Callable, Optional

from .context import ProcessContext, get_process_context

if TYPE_CHECKING:
    from .runtime.child import ChildHandle

__all__ = ["SignalRelay", "UnproxySignals", "proxy_signals"]

logger = logging.getLogger(__name__)

UnproxySignals = Callable[[], None]


class SignalRelay:
    """把当前进程的终止信号转发给子进程。

    Example:
        ```python
        relay = SignalRelay(child)
        uninstall = relay.install()
        ...
        uninstall()
        ```

    Attributes:
        child: 接收转发信号的子进程
        context: 被转发信号所属的进程上下文
    """

    def __init__(
        self,
        child: ChildHandle,
        context: Optional[ProcessContext] = None,
    ) -> None:
        self.child = child
        self.context = context if context is not None else get_process_context()
        self._listeners: dict[signal.Signals, Callable[[], None]] = {}

    def install(self) -> UnproxySignals:
        """开始转发，返回拆除函数。"""
        # 安装时一次性取快照
        for sig in self.context.terminating_signals():
            listener = self._make_listener(sig)
            self._listeners[sig] = listener
            self.context.on_signal(sig, listener)

        logger.debug(
            f"Relaying {len(self._listeners)} signal(s) to child pid={self.child.pid}"
        )
        return self.uninstall

    def _make_listener(self, sig: signal.Signals) -> Callable[[], None]:
        def listener() -> None:
            self.child.send_signal(sig)

        return listener

    def uninstall(self) -> None:
        """停止转发。重复调用时已无可移除的监听器。"""
        for sig, listener in self._listeners.items():
            self.context.remove_signal_listener(sig, listener)
        self._listeners.clear()
        logger.debug(f"Signal relay removed for child pid={self.child.pid}")


def proxy_signals(
    child: ChildHandle,
    context: Optional[ProcessContext] = None,
) -> UnproxySignals:
    """把终止信号转发给 ``child``，返回拆除函数。"""
    return SignalRelay(child, context).install()
