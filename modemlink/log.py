"""Coloured, tag-based console logging."""

from __future__ import annotations

import logging
import sys
from enum import IntEnum

_COLOR_RED = "31"
_COLOR_BROWN = "33"
_COLOR_GREEN = "32"
_COLOR_CYAN = "36"
RESET_COLOR = "\033[0m"


def _color(code: str) -> str:
    return f"\033[0;{code}m"


class LogLevel(IntEnum):
    """Log levels, valued as :mod:`logging` levels."""

    VERBOSE = 5
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR

    @property
    def prefix(self) -> str:
        """Colour escape and level letter written before each line."""
        return _PREFIXES[self]

    @classmethod
    def for_levelno(cls, levelno: int) -> LogLevel:
        """Map any :mod:`logging` level number to the closest level not above it."""
        for level in sorted(cls, reverse=True):
            if level <= levelno:
                return level
        return cls.VERBOSE


_PREFIXES = {
    LogLevel.ERROR: _color(_COLOR_RED) + "E",
    LogLevel.WARN: _color(_COLOR_BROWN) + "W",
    LogLevel.INFO: _color(_COLOR_GREEN) + "I",
    LogLevel.DEBUG: _color(_COLOR_CYAN) + "D",
    LogLevel.VERBOSE: "V",
}

logging.addLevelName(LogLevel.VERBOSE, "VERBOSE")


def format_line(level: int, tag: str, message: str) -> str:
    """Render one log line, without the trailing newline."""
    return f"{LogLevel.for_levelno(level).prefix}({tag}) {message}{RESET_COLOR}"


class ColorFormatter(logging.Formatter):
    """Formatter that renders records as coloured, tagged lines."""

    def format(self, record: logging.LogRecord) -> str:
        text = format_line(record.levelno, record.name, record.getMessage())
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def get_logger(tag: str) -> logging.Logger:
    """Return the logger for ``tag``, printing every level to standard output."""
    logger = logging.getLogger(tag)
    if not any(isinstance(h.formatter, ColorFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColorFormatter())
        logger.addHandler(handler)
        logger.setLevel(LogLevel.VERBOSE)
        logger.propagate = False
    return logger