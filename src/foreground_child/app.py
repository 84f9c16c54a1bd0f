"""Command-line entry point.

Usage:
    foreground-child [--] program [args...]

The wrapper process ends exactly like ``program``: same exit code, or death
by the same signal.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Optional, Sequence

from . import __version__
from .config import Config, get_config
from .launcher import run

__all__ = ["configure_logging", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """Send package logs to stderr, or to a temp file in debug mode."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger stays quiet; only our namespace is raised.
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("foreground_child").setLevel(log_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="foreground-child",
        description="Run a program as the foreground process and mirror its exit status.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("program", help="program to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="arguments for the program")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Main entry point."""
    args = _build_parser().parse_args(argv)

    config = get_config()
    configure_logging(config)
    logger.debug(f"Starting with {config!r}")

    run(args.program, list(args.args))


if __name__ == "__main__":
    main()
