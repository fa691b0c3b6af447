"""Error codes and the exception raised for failed modem operations."""

from __future__ import annotations

from enum import IntEnum

_UNKNOWN_NAME = "ERROR"


class ErrorCode(IntEnum):
    """Numeric error codes used across the modem layer."""

    FAIL = -1
    OK = 0
    NO_MEM = 0x101
    INVALID_ARG = 0x102
    INVALID_STATE = 0x103
    INVALID_SIZE = 0x104
    NOT_FOUND = 0x105
    NOT_SUPPORTED = 0x106
    TIMEOUT = 0x107


def esp_err_to_name(code: int) -> str:
    """Return the printable name of an error code.

    The host build carries no name table, so every code maps to the same text.
    """
    return _UNKNOWN_NAME


class EspError(Exception):
    """Raised when an operation reports an error code or a failed check."""

    def __init__(self, code: int = ErrorCode.FAIL, message: str | None = None) -> None:
        try:
            self.code: int = ErrorCode(code)
        except ValueError:
            self.code = int(code)
        self.message = message
        super().__init__(self._describe())

    def _describe(self) -> str:
        detail = f"{esp_err_to_name(self.code)} (err_code={int(self.code)})"
        return f"{self.message}: {detail}" if self.message else detail


def throw_if_error(code: int, message: str | None = None) -> None:
    """Raise :class:`EspError` unless ``code`` is ``ErrorCode.OK``."""
    if code != ErrorCode.OK:
        raise EspError(code, message)


def throw_if_false(condition: object, message: str | None = None) -> None:
    """Raise :class:`EspError` with ``ErrorCode.FAIL`` when ``condition`` is false."""
    if not condition:
        raise EspError(ErrorCode.FAIL, message)