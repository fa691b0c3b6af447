"""PPP network interface glue between a DTE and the host network stack."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .dte import DTE
from .errors import ErrorCode
from .events import ANY_ID, EventBase, EventLoop, default_event_loop
from .primitives import SignalGroup

NETIF_PP_PHASE_OFFSET = 0x100
"""PPP status event identifiers at or above this value report phase changes."""

NETIF_PPP_ERRORNONE = 0

BUF_SIZE = 1518

_PPP_STARTED = SignalGroup.BIT0
_PPP_EXIT = SignalGroup.BIT1


@dataclass
class NetifConfig:
    """Names of the device and of the network interface."""

    dev_name: str = ""
    if_name: str = ""


class EspNetif:
    """The host side of the network interface.

    Bytes arriving from the modem are passed to ``on_receive`` (or queued when
    none is set); bytes the stack sends go out through ``transmit``.
    """

    def __init__(
        self,
        config: NetifConfig | None = None,
        on_receive: Optional[Callable[[bytes], Any]] = None,
    ) -> None:
        self.config = config or NetifConfig()
        self.on_receive = on_receive
        self.transmit: Optional[Callable[[bytes], int]] = None
        self._lock = threading.Lock()
        self._received: list[bytes] = []

    def receive(self, data: bytes) -> int:
        """Hand inbound bytes to the stack."""
        data = bytes(data)
        if self.on_receive is not None:
            self.on_receive(data)
        else:
            with self._lock:
                self._received.append(data)
        return 1

    def take_received(self) -> list[bytes]:
        """Return and forget the queued inbound chunks."""
        with self._lock:
            out, self._received = self._received, []
        return out

    def send(self, data: bytes) -> int:
        """Send outbound bytes through the attached driver; 0 if none is attached."""
        if self.transmit is None:
            return 0
        return self.transmit(bytes(data)[:BUF_SIZE])


class Netif:
    """Bridges PPP traffic between a DTE and an :class:`EspNetif`."""

    def __init__(
        self,
        dte: DTE,
        netif: EspNetif,
        event_loop: EventLoop | None = None,
        exit_timeout_ms: float = 30000,
    ) -> None:
        self.ppp_dte = dte
        self.netif = netif
        self._events = event_loop or default_event_loop
        self._exit_timeout_ms = exit_timeout_ms
        self.signal = SignalGroup()
        self._closed = False
        self._events.register(EventBase.NETIF_PPP_STATUS, ANY_ID, self.on_ppp_changed)

    @property
    def started(self) -> bool:
        return self.signal.is_any(_PPP_STARTED)

    def on_ppp_changed(self, base: Any, event_id: int, data: Any = None) -> None:
        """Flag the exit of PPP on state or error events, ignoring phase changes."""
        if NETIF_PPP_ERRORNONE < event_id < NETIF_PP_PHASE_OFFSET:
            self.signal.set(_PPP_EXIT)

    def transmit(self, data: bytes) -> ErrorCode:
        if self.started and self.ppp_dte is not None and self.ppp_dte.write(data) > 0:
            return ErrorCode.OK
        return ErrorCode.FAIL

    def receive(self, data: bytes) -> None:
        if self.started:
            self.netif.receive(data)

    def start(self) -> None:
        def on_data(data: bytes) -> bool:
            self.receive(data)
            return False

        self.ppp_dte.set_read_cb(on_data)
        self.netif.transmit = self.transmit
        self.signal.set(_PPP_STARTED)

    def stop(self) -> None:
        self.ppp_dte.set_read_cb(None)
        self.netif.transmit = None
        self.signal.clear(_PPP_STARTED)

    def wait_until_ppp_exits(self, timeout_ms: float = 30000) -> bool:
        """Wait for a PPP state or error event; False on timeout."""
        return self.signal.wait(_PPP_EXIT, timeout_ms)

    def close(self) -> None:
        """Stop if running, wait for PPP to exit and drop event handlers."""
        if self._closed:
            return
        self._closed = True
        if self.started:
            self.stop()
            self.signal.wait(_PPP_EXIT, self._exit_timeout_ms)
        self._events.unregister(EventBase.NETIF_PPP_STATUS, ANY_ID, self.on_ppp_changed)

    def __enter__(self) -> Netif:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()