"""Data terminal equipment: runs commands and switches modes over a terminal."""

from __future__ import annotations

import threading
from enum import Enum, auto
from typing import Any, Callable, Optional

from .cmux import CMux, CMuxInstance, UniqueBuffer
from .errors import ErrorCode, EspError
from .primitives import SignalGroup
from .terminal import ErrorCallback, Terminal, VfsTermConfig, create_vfs_terminal

DEFAULT_BUFFER_SIZE = 1000

_GOT_LINE = SignalGroup.BIT0


class CommandResult(Enum):
    """Outcome of a command sent to the modem."""

    OK = auto()
    FAIL = auto()
    TIMEOUT = auto()


class ModemMode(Enum):
    """Operating modes of the modem link and manual multiplexer transitions."""

    UNDEF = auto()
    COMMAND_MODE = auto()
    DATA_MODE = auto()
    CMUX_MODE = auto()
    CMUX_MANUAL_MODE = auto()
    CMUX_MANUAL_EXIT = auto()
    CMUX_MANUAL_DATA = auto()
    CMUX_MANUAL_COMMAND = auto()
    CMUX_MANUAL_SWAP = auto()


GotLineCallback = Callable[[bytes], CommandResult]


class DTE:
    """Owns a terminal, sends commands on it and manages the multiplexer.

    The primary terminal carries commands, the secondary one carries data;
    outside multiplexed mode both are the same terminal.
    """

    def __init__(
        self,
        terminal: Terminal,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        cmux_options: Optional[dict[str, Any]] = None,
    ) -> None:
        self.buffer: UniqueBuffer | None = UniqueBuffer(buffer_size)
        self._buffer_size = buffer_size
        self.cmux_term: CMux | None = None
        self.primary_term: Terminal = terminal
        self.secondary_term: Terminal = terminal
        self.mode = ModemMode.UNDEF
        self._cmux_options = dict(cmux_options or {})
        self._lock = threading.Lock()
        self._signal = SignalGroup()
        self._result = CommandResult.TIMEOUT
        self._on_data: Optional[Callable[[bytes], bool]] = None

    def _buffer_capacity(self) -> int:
        return self.buffer.size if self.buffer is not None else self._buffer_size

    def command(
        self,
        command: str | bytes,
        got_line: GotLineCallback | None,
        time_ms: float,
        separator: bytes | str = b"\n",
    ) -> CommandResult:
        """Send ``command`` and wait up to ``time_ms`` for ``got_line`` to accept a reply."""
        if isinstance(command, str):
            command = command.encode()
        if isinstance(separator, str):
            separator = separator.encode()
        with self._lock:
            self._result = CommandResult.TIMEOUT
            self._signal.clear(_GOT_LINE)
            pending = bytearray()

            def on_read(data: bytes | None) -> bool:
                if data is None:
                    chunk = self.primary_term.read(max(self._buffer_capacity() - len(pending), 0))
                    full = bytes(pending) + chunk
                else:
                    pending.clear()
                    chunk = data
                    full = bytes(data)
                if separator in chunk and got_line is not None:
                    self._result = got_line(full)
                    if self._result in (CommandResult.OK, CommandResult.FAIL):
                        self._signal.set(_GOT_LINE)
                        return True
                if data is None:
                    pending.extend(chunk)
                return False

            self.primary_term.set_read_cb(on_read)
            try:
                self.primary_term.write(command)
                got_lf = self._signal.wait(_GOT_LINE, time_ms)
                if got_lf and self._result == CommandResult.TIMEOUT:
                    raise EspError(ErrorCode.INVALID_STATE)
            finally:
                if self.buffer is not None:
                    self.buffer.consumed = 0
                self.primary_term.set_read_cb(None)
            return self._result

    def _setup_cmux(self) -> bool:
        self.cmux_term = CMux(self.primary_term, self.buffer, **self._cmux_options)
        self.buffer = None
        if not self.cmux_term.init():
            return False
        self.primary_term = CMuxInstance(self.cmux_term, 0)
        self.secondary_term = CMuxInstance(self.cmux_term, 1)
        return True

    def _exit_cmux(self) -> bool:
        if self.cmux_term is None or not self.cmux_term.deinit():
            return False
        term, buffer = self.cmux_term.detach()
        self.primary_term = term
        self.buffer = buffer
        self.secondary_term = term
        return True

    def _swap_terms(self) -> None:
        self.primary_term, self.secondary_term = self.secondary_term, self.primary_term

    def _enter_cmux(self, target: ModemMode) -> bool:
        if self._setup_cmux():
            self.mode = target
            return True
        self.mode = ModemMode.UNDEF
        return False

    def set_mode(self, mode: ModemMode) -> bool:
        """Switch to ``mode``; False when the transition is not allowed or fails."""
        current = self.mode
        if mode == ModemMode.CMUX_MODE and current in (ModemMode.UNDEF, ModemMode.COMMAND_MODE):
            return self._enter_cmux(mode)
        if mode == ModemMode.DATA_MODE:
            if current in (ModemMode.CMUX_MODE, ModemMode.CMUX_MANUAL_MODE):
                self._swap_terms()
            else:
                self.mode = mode
            return True
        if mode == ModemMode.COMMAND_MODE:
            if current == ModemMode.CMUX_MODE:
                if self._exit_cmux():
                    self.mode = mode
                    return True
                self.mode = ModemMode.UNDEF
                return False
            if current != ModemMode.CMUX_MANUAL_MODE:
                self.mode = mode
            return True
        if mode == ModemMode.CMUX_MANUAL_MODE:
            return self._enter_cmux(mode)
        if mode == ModemMode.CMUX_MANUAL_EXIT and current == ModemMode.CMUX_MANUAL_MODE:
            if self._exit_cmux():
                self.mode = ModemMode.COMMAND_MODE
                return True
            self.mode = ModemMode.UNDEF
            return False
        if mode == ModemMode.CMUX_MANUAL_SWAP and current == ModemMode.CMUX_MANUAL_MODE:
            self._swap_terms()
            return True
        self.mode = ModemMode.UNDEF
        return False

    def set_read_cb(self, callback: Optional[Callable[[bytes], bool]]) -> None:
        """Deliver data arriving on the data terminal to ``callback``."""
        self._on_data = callback

        def on_read(data: bytes | None) -> bool:
            if data is None:
                data = self.secondary_term.read(self._buffer_capacity())
            if self._on_data is not None:
                return self._on_data(data)
            return False

        self.secondary_term.set_read_cb(on_read)

    def set_error_cb(self, callback: ErrorCallback | None) -> None:
        self.secondary_term.set_error_cb(callback)
        self.primary_term.set_error_cb(callback)

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes (bounded by the buffer) from the data terminal."""
        return self.secondary_term.read(min(size, self._buffer_capacity()))

    def write(self, data: bytes) -> int:
        return self.secondary_term.write(data)


def create_vfs_dte(config: VfsTermConfig, buffer_size: int = DEFAULT_BUFFER_SIZE) -> DTE:
    """Create a DTE over the file-descriptor terminal described by ``config``."""
    return DTE(create_vfs_terminal(config), buffer_size)