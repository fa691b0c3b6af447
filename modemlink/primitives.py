"""Threading primitives: event-bit signal groups and background tasks."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable


class SignalGroup:
    """A set of event bits that threads can set, clear and wait on."""

    BIT0 = 1 << 0
    BIT1 = 1 << 1
    BIT2 = 1 << 2
    BIT3 = 1 << 3

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._flags = 0

    @property
    def flags(self) -> int:
        """The bits currently set."""
        with self._cond:
            return self._flags

    def set(self, bits: int) -> None:
        with self._cond:
            self._flags |= bits
            self._cond.notify_all()

    def clear(self, bits: int) -> None:
        with self._cond:
            self._flags &= ~bits
            self._cond.notify_all()

    @staticmethod
    def _timeout(time_ms: float | None) -> float | None:
        return None if time_ms is None else max(time_ms, 0) / 1000.0

    def wait(self, flags: int, time_ms: float | None = None) -> bool:
        """Wait until all ``flags`` are set, then clear them.

        ``time_ms`` of ``None`` waits forever. Returns False on timeout.
        """
        with self._cond:
            if self._cond.wait_for(lambda: (self._flags & flags) == flags, self._timeout(time_ms)):
                self._flags &= ~flags
                return True
            return False

    def is_any(self, flags: int) -> bool:
        with self._cond:
            return bool(self._flags & flags)

    def wait_any(self, flags: int, time_ms: float | None = None) -> bool:
        """Wait until any of ``flags`` is set, leaving the bits untouched."""
        with self._cond:
            return bool(self._cond.wait_for(lambda: self._flags & flags, self._timeout(time_ms)))


class Task:
    """Runs a function on a background thread as soon as it is created."""

    def __init__(self, function: Callable[..., Any], *args: Any, name: str = "modem_task") -> None:
        self._thread = threading.Thread(target=function, args=args, name=name, daemon=True)
        self._thread.start()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the function to finish; True when it has."""
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def __enter__(self) -> Task:
        return self

    def __exit__(self, *exc: object) -> None:
        self.join()


def relinquish() -> None:
    """Yield the processor to other threads."""
    time.sleep(0)


def delay(ms: float) -> None:
    """Sleep for ``ms`` milliseconds."""
    time.sleep(ms / 1000.0)