"""Process-wide logging set-up: timestamped lines to a file or the console."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from os import PathLike
from typing import Optional, Union

_LOGGER_NAME = "dufs"

_LEVEL_NAMES = {"WARNING": "WARN", "CRITICAL": "ERROR"}


class LogFormatter(logging.Formatter):
    """Formats records as `<rfc3339 time> <LEVEL> - <message>`."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone()
        text = stamp.isoformat(timespec="seconds")
        if text.endswith("+00:00"):
            text = text[: -len("+00:00")] + "Z"
        level = _LEVEL_NAMES.get(record.levelname, record.levelname)
        return f"{text} {level} - {record.getMessage()}"


class _ConsoleHandler(logging.Handler):
    """Warnings and errors to stderr, everything else to stdout."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = sys.stderr if record.levelno > logging.INFO else sys.stdout
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


def init(log_file: Optional[Union[str, PathLike]] = None) -> logging.Logger:
    """Configure the package logger at INFO, writing to `log_file` or the console."""
    if log_file is None:
        handler: logging.Handler = _ConsoleHandler()
    else:
        try:
            handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Failed to open the log file at '{log_file}'") from exc
    handler.setFormatter(LogFormatter())

    logger = logging.getLogger(_LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger