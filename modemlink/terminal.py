"""Byte-stream terminals and the file-descriptor terminal."""

from __future__ import annotations

import os
import select
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional

from .log import get_logger
from .primitives import SignalGroup, Task, relinquish

_logger = get_logger("fs_terminal")

ReadCallback = Callable[[Optional[bytes]], bool]
"""Called with received bytes, or ``None`` when data waits to be read.

Returning True detaches the callback.
"""

ErrorCallback = Callable[["TerminalError"], None]


class TerminalError(IntEnum):
    """Errors a terminal reports through its error callback."""

    BUFFER_OVERFLOW = 0
    CHECKSUM_ERROR = 1
    UNEXPECTED_CONTROL_FLOW = 2


class Terminal(ABC):
    """A bidirectional byte channel that notifies a callback on incoming data."""

    def __init__(self) -> None:
        self.on_read: ReadCallback | None = None
        self.on_error: ErrorCallback | None = None

    @abstractmethod
    def start(self) -> None:
        """Begin delivering read notifications."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering read notifications."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Send ``data``; return the number of bytes written."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes that are available now."""

    def set_read_cb(self, callback: ReadCallback | None) -> None:
        self.on_read = callback

    def set_error_cb(self, callback: ErrorCallback | None) -> None:
        self.on_error = callback


@dataclass
class VfsTermConfig:
    """An open file descriptor and how to release it."""

    fd: int = -1
    deleter: Callable[[int, Any], None] | None = None
    resource: Any = None


_TASK_INIT = SignalGroup.BIT0
_TASK_START = SignalGroup.BIT1
_TASK_STOP = SignalGroup.BIT2
_TASK_PARAMS = SignalGroup.BIT3


class FdTerminal(Terminal):
    """Terminal over a file descriptor, watched by a background thread."""

    def __init__(self, config: VfsTermConfig, poll_interval: float = 1.0) -> None:
        super().__init__()
        self._config = config
        self._poll_interval = poll_interval
        self._signal = SignalGroup()
        self._closed = False
        self._task = Task(self._run, name="vfs_task")

    @property
    def fd(self) -> int:
        return self._config.fd

    def start(self) -> None:
        self._signal.set(_TASK_START)

    def stop(self) -> None:
        self._signal.clear(_TASK_START)

    def set_read_cb(self, callback: ReadCallback | None) -> None:
        self.on_read = callback
        self._signal.set(_TASK_PARAMS)

    def _run(self) -> None:
        on_read: ReadCallback | None = None
        self._signal.set(_TASK_INIT)
        self._signal.wait_any(_TASK_START | _TASK_STOP)
        if self._signal.is_any(_TASK_STOP):
            return
        while self._signal.is_any(_TASK_START):
            try:
                readable, _, _ = select.select([self.fd], [], [], self._poll_interval)
            except (OSError, ValueError):
                readable = None
            if self._signal.is_any(_TASK_PARAMS):
                on_read = self.on_read
                self._signal.clear(_TASK_PARAMS)
            if readable is None:
                break
            if readable and on_read is not None and on_read(None):
                on_read = None
            relinquish()

    def read(self, size: int) -> bytes:
        try:
            return os.read(self.fd, size)
        except BlockingIOError:
            return b""
        except OSError as exc:
            _logger.error("Error occurred during read: %d", exc.errno)
            return b""

    def write(self, data: bytes) -> int:
        try:
            return os.write(self.fd, data)
        except OSError as exc:
            _logger.error("Error occurred during write: %d", exc.errno)
            return 0

    def close(self) -> None:
        """Stop the watcher thread and release the descriptor."""
        if self._closed:
            return
        self._closed = True
        self.stop()
        self._signal.set(_TASK_STOP)
        self._task.join()
        if self._config.deleter is not None:
            self._config.deleter(self._config.fd, self._config.resource)

    def __enter__(self) -> FdTerminal:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def create_vfs_terminal(config: VfsTermConfig) -> FdTerminal:
    """Create a started terminal over the descriptor in ``config``."""
    term = FdTerminal(config)
    term.start()
    return term