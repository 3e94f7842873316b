"""
Stack logging: console output with level tags plus optional file mirrors.

Every tool logs through the ``stack`` logger hierarchy
(``stack.deploy``, ``stack.backup``, ...).  ``setup_logging()`` attaches one
console handler that renders::

    [INFO] Pulling Docker images...
    [SUCCESS] Services are running and healthy
    [WARNING] Created .env from .env.example - PLEASE CONFIGURE SECRETS!
    [ERROR] Services failed to start within expected time

``attach_file_log()`` mirrors the same records into a file, one timestamped
line each, for runs that need an audit trail (the update log).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import IO

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

ROOT_LOGGER = "stack"

_COLORS = {
    logging.DEBUG: "\033[0;37m",
    logging.INFO: "\033[0;34m",
    SUCCESS: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}
_RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """``[LEVEL] message`` with the tag coloured when *color* is set."""

    def __init__(self, color: bool = False) -> None:
        super().__init__("%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = f"[{record.levelname}]"
        if self.color:
            tag = f"{_COLORS.get(record.levelno, '')}{tag}{_RESET}"
        return f"{tag} {message}"


# Level names accepted by the workflows' log() methods
LEVELS = {
    "detail": logging.DEBUG,
    "info": logging.INFO,
    "ok": SUCCESS,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(verbose: bool = False, color: bool | None = None,
                  stream: IO[str] | None = None) -> logging.Logger:
    """Configure the ``stack`` logger for a command-line run.

    Replaces any console handler left by a previous call so repeated calls
    (tests, nested workflows) never duplicate output.
    """
    stream = stream or sys.stdout
    if color is None:
        color = hasattr(stream, "isatty") and stream.isatty()

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_stack_console", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ConsoleFormatter(color=color))
    handler._stack_console = True
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger


def attach_file_log(path: Path) -> logging.FileHandler:
    """Append every ``stack`` record to *path* until detached."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s: [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logging.getLogger(ROOT_LOGGER).addHandler(handler)
    return handler


def detach_file_log(handler: logging.Handler) -> None:
    logging.getLogger(ROOT_LOGGER).removeHandler(handler)
    handler.close()


def get_logger(name: str) -> logging.Logger:
    """Child of the ``stack`` logger, e.g. ``get_logger("backup")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
