"""Logging setup: compact, level-coloured console output."""

from __future__ import annotations

import logging
import sys

_RESET = "\033[0m"
_DIM = "\033[2m"

_LEVEL_COLORS = {
    logging.DEBUG: "\033[90m",
    logging.INFO: _RESET,
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[91m\033[1m",
}


class ColorFormatter(logging.Formatter):
    """`HH:MM:SS [LEVL] logger: message`, with the level tag coloured."""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, _RESET)
        timestamp = self.formatTime(record, "%H:%M:%S")
        formatted = (
            f"{_DIM}{timestamp}{_RESET} "
            f"[{color}{record.levelname[:4]}{_RESET}] "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger for the pipeline process."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # Transport libraries log every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
