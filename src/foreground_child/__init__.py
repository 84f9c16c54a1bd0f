"""foreground-child - run a child process as the foreground process.

The current process relays its terminating signals to the child, exits with
the child's exit code (or dies by the child's signal), and bridges its
message channel to the child.

Usage:
    foreground-child program [args...]
"""

__version__ = "0.1.0"

from .context import ExitStatus, ProcessContext, get_process_context
from .launcher import Launcher, LauncherState, foreground_child, run
from .normalize import CloseHandler, NormalizedArguments, normalize_arguments
from .runtime import ChildHandle
from .signals import SignalRelay, proxy_signals

__all__ = [
    "__version__",
    "ChildHandle",
    "CloseHandler",
    "ExitStatus",
    "Launcher",
    "LauncherState",
    "NormalizedArguments",
    "ProcessContext",
    "SignalRelay",
    "foreground_child",
    "get_process_context",
    "normalize_arguments",
    "proxy_signals",
    "run",
]
