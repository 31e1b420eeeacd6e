from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "eplookup"

_stderr_console: Console | None = None


def stderr_console() -> Console:
    """Return the shared console that writes diagnostics to stderr."""
    global _stderr_console
    if _stderr_console is None:
        _stderr_console = Console(stderr=True)
    return _stderr_console


def configure_logging(debug: bool = False) -> logging.Logger:
    """Route ``eplookup.*`` loggers to stderr through rich."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=stderr_console(),
        show_time=False,
        show_path=debug,
        markup=False,
        rich_tracebacks=debug,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False
    return logger


def report_error(message: str) -> None:
    stderr_console().print(
        f"Error: {message}",
        style="bold red",
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


__all__ = ["LOGGER_NAME", "configure_logging", "report_error", "stderr_console"]
