"""Argument normalization for ``foreground_child``.

Supported call shapes::

    foreground_child(["node", "server.js"])
    foreground_child(["node", "server.js"], callback)
    foreground_child("node", ["server.js"], callback)
    foreground_child("node", "server.js", "--port", "8080", callback)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Union

__all__ = ["CloseHandler", "NormalizedArguments", "normalize_arguments"]

CloseHandler = Callable[[Callable[[], None]], Union[None, Awaitable[Any]]]


def _default_callback(proceed: Callable[[], None]) -> None:
    proceed()


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


@dataclass(frozen=True)
class NormalizedArguments:
    """Program, arguments and completion hook of one launch.

    Attributes:
        program: executable to spawn
        args: arguments passed to the program
        callback: completion hook, called with ``proceed`` once the child closed
    """

    program: str
    args: tuple[str, ...]
    callback: CloseHandler


def normalize_arguments(a: Sequence[Any]) -> NormalizedArguments:
    """Normalize the positional arguments given to ``foreground_child``.

    The completion hook is the last argument when it is callable. A leading
    sequence wins over everything else and is split into program and args.
    Nothing is validated: bad input fails later, when spawning.

    Args:
        a: positional arguments as received

    Returns:
        Normalized arguments
    """
    process_args_end = len(a)
    if a and callable(a[-1]):
        callback: CloseHandler = a[-1]
        process_args_end -= 1
    else:
        callback = _default_callback

    first = a[0] if a else None
    if _is_sequence(first):
        program = first[0] if first else None
        args = list(first[1:])
    else:
        program = first
        if len(a) > 1 and _is_sequence(a[1]):
            args = list(a[1])
        else:
            args = list(a[1:process_args_end])

    return NormalizedArguments(program=program, args=tuple(args), callback=callback)
