"""CMUX multiplexing of several virtual terminals over one terminal."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional

from .log import get_logger
from .terminal import Terminal

_logger = get_logger("CMUX")

EA = 0x01
"""Extension bit."""
CR = 0x02
"""Command / response bit."""
PF = 0x10
"""Poll / final bit."""

FT_RR = 0x01
FT_UI = 0x03
FT_RNR = 0x05
FT_REJ = 0x09
FT_DM = 0x0F
FT_SABM = 0x2F
FT_DISC = 0x43
FT_UA = 0x63
FT_UIH = 0xEF

CMD_NSC = 0x08
CMD_TEST = 0x10
CMD_PSC = 0x20
CMD_RLS = 0x28
CMD_FCOFF = 0x30
CMD_PN = 0x40
CMD_RPN = 0x48
CMD_FCON = 0x50
CMD_CLD = 0x60
CMD_SNC = 0x68
CMD_MSC = 0x70

SOF_MARKER = 0xF9
"""Flag byte that opens and closes every frame."""

MAX_TERMINALS_NUM = 2
"""Number of virtual terminals carried besides the control channel."""

_CMUX_MAX_LEN = 127
_SABM_REPLY = 0x73
_CONTROL_CLOSE_DOWN = bytes([SOF_MARKER, 0x03, 0xEF, 0x05, 0xC3, 0x01, 0xF2, SOF_MARKER])

PayloadCallback = Callable[[bytes], bool]


def fcs_crc(frame: bytes | bytearray) -> int:
    """Frame check sequence over the address, control and length bytes of ``frame``."""
    crc = 0xFF
    for byte in frame[1:4]:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xE0 if crc & 0x01 else crc >> 1
    return crc


@dataclass
class UniqueBuffer:
    """A receive buffer handed between a DTE and the multiplexer."""

    size: int
    consumed: int = 0
    data: bytearray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.data = bytearray(self.size)


class CMuxState(Enum):
    """Position of the frame parser."""

    RECOVER = auto()
    INIT = auto()
    HEADER = auto()
    PAYLOAD = auto()
    FOOTER = auto()


class _Frame:
    """Cursor over a chunk of received bytes."""

    __slots__ = ("data", "pos")

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def __len__(self) -> int:
        return len(self.data) - self.pos

    def __getitem__(self, index: int) -> int:
        return self.data[self.pos + index]

    def take(self, count: int) -> bytes:
        return self.data[self.pos:self.pos + count]

    def advance(self, count: int = 1) -> None:
        self.pos += count


class CMux:
    """Multiplexer running the CMUX framing over a terminal.

    With ``defragment`` set, the payload of a frame is delivered to the
    virtual terminal in one piece once the frame is complete; otherwise each
    received part is delivered as it arrives.
    """

    def __init__(
        self,
        term: Terminal,
        buffer: UniqueBuffer,
        *,
        defragment: bool = True,
        ack_timeout_ms: float = 1010,
        dlci_setup_delay_ms: float = 0,
    ) -> None:
        self.term: Terminal | None = term
        self.buffer: UniqueBuffer | None = buffer
        self.defragment = defragment
        self._ack_timeout = ack_timeout_ms / 1000.0
        self._dlci_setup_delay = dlci_setup_delay_ms / 1000.0
        self._read_cbs: list[Optional[PayloadCallback]] = [None] * MAX_TERMINALS_NUM
        self._lock = threading.RLock()
        self._ack_cond = threading.Condition(self._lock)
        self._sabm_ack = -1
        self._state = CMuxState.INIT
        self._header = bytearray(6)
        self._header_offset = 0
        self._payload_len = 0
        self._dlci = 0
        self._type = 0
        self._payload: bytearray | None = None
        self._handlers = {
            CMuxState.RECOVER: self._on_recovery,
            CMuxState.INIT: self._on_init,
            CMuxState.HEADER: self._on_header,
            CMuxState.PAYLOAD: self._on_payload,
            CMuxState.FOOTER: self._on_footer,
        }

    @property
    def state(self) -> CMuxState:
        return self._state

    def _set_ack(self, dlci: int) -> None:
        with self._ack_cond:
            self._sabm_ack = dlci
            self._ack_cond.notify_all()

    def _wait_ack(self, dlci: int) -> bool:
        with self._ack_cond:
            if self._ack_cond.wait_for(lambda: self._sabm_ack == dlci, self._ack_timeout):
                self._sabm_ack = -1
                return True
            return False

    def _send_disconnect(self, dlci: int) -> None:
        if dlci == 0:
            self.term.write(_CONTROL_CLOSE_DOWN)
            return
        frame = bytearray([SOF_MARKER, 0x03 | (dlci << 2) & 0xFF, FT_DISC | PF, 0x01, 0, SOF_MARKER])
        frame[4] = 0xFF - fcs_crc(frame)
        self.term.write(bytes(frame))

    def _send_sabm(self, dlci: int) -> None:
        frame = bytearray([SOF_MARKER, ((dlci << 2) | 0x03) & 0xFF, FT_SABM | PF, 0x01, 0, SOF_MARKER])
        frame[4] = 0xFF - fcs_crc(frame)
        self.term.write(bytes(frame))

    def _reset_payload(self) -> None:
        self._payload = None

    def _data_available(self, data: bytes | None) -> None:
        virtual_term = self._dlci - 1
        has_cb = 0 <= virtual_term < MAX_TERMINALS_NUM and self._read_cbs[virtual_term] is not None
        if data is not None and (self._type & FT_UIH) == FT_UIH and data and self._dlci > 0:
            if has_cb:
                if self.defragment:
                    if self._payload is None:
                        self._payload = bytearray()
                    self._payload.extend(data)
                else:
                    self._read_cbs[virtual_term](bytes(data))
        elif data is None and self._type == _SABM_REPLY:
            self._set_ack(self._dlci)
        elif data is None:
            if has_cb and self.defragment and self._payload is not None:
                self._read_cbs[virtual_term](bytes(self._payload))
        elif (self._type & FT_UIH) == FT_UIH and self._dlci == 0:
            if data and (data[0] & 0xE1) == 0xE1:
                return  # modem status frame, not a close-down reply
            self._set_ack(self._dlci)

    def _on_init(self, frame: _Frame) -> bool:
        if frame[0] != SOF_MARKER:
            _logger.warning("Protocol mismatch: Missed leading SOF, recovering...")
            self._state = CMuxState.RECOVER
            return True
        if len(frame) > 1 and frame[1] == SOF_MARKER:
            frame.advance()
            return True
        self._state = CMuxState.HEADER
        frame.advance()
        self._header_offset = 1
        return True

    def _on_recovery(self, frame: _Frame) -> bool:
        if frame[0] == SOF_MARKER:
            self._state = CMuxState.INIT
            return True
        found = frame.data.find(bytes([SOF_MARKER]), frame.pos)
        if found < 0:
            return False
        frame.pos = found
        self._state = CMuxState.INIT
        _logger.info("Protocol recovered")
        if len(frame) > 1 and frame[1] == SOF_MARKER:
            frame.advance()
        return True

    def _store_header(self, frame: _Frame, count: int) -> None:
        start = self._header_offset
        self._header[start:start + count] = frame.take(count)

    def _on_header(self, frame: _Frame) -> bool:
        if len(frame) > 0 and self._header_offset == 1 and frame[0] == SOF_MARKER:
            # a trailing flag taken for a leading one: drop it and restart the header
            frame.advance()
            return True
        available = len(frame)
        if available + self._header_offset < 4:
            self._store_header(frame, available)
            self._header_offset += available
            return False
        payload_offset = min(available, 4 - self._header_offset)
        self._store_header(frame, payload_offset)
        if (self._header[3] & 1) == 0:
            if self._header_offset + available <= 4:
                self._header_offset += available
                return False
            payload_offset = min(available, 5 - self._header_offset)
            self._store_header(frame, payload_offset)
            self._payload_len = self._header[4] << 7
            # keep the header at six bytes: the second length byte is overwritten by the FCS
            self._header_offset += payload_offset - 1
        else:
            self._payload_len = 0
            self._header_offset += payload_offset
        self._dlci = self._header[1] >> 2
        self._type = self._header[2]
        self._payload_len += self._header[3] >> 1
        frame.advance(payload_offset)
        self._state = CMuxState.PAYLOAD
        return True

    def _on_payload(self, frame: _Frame) -> bool:
        available = len(frame)
        _logger.debug(
            "Payload frame: dlci:%02x type:%02x payload:%d available:%d",
            self._dlci, self._type, self._payload_len, available,
        )
        if available < self._payload_len:
            self._data_available(frame.take(available))
            self._payload_len -= available
            frame.advance(available)
            return False
        if self._payload_len > 0:
            self._data_available(frame.take(self._payload_len))
        frame.advance(self._payload_len)
        self._state = CMuxState.FOOTER
        self._payload_len = 0
        return True

    def _on_footer(self, frame: _Frame) -> bool:
        available = len(frame)
        if available + self._header_offset < 6:
            self._store_header(frame, available)
            self._header_offset += available
            return False
        footer_offset = min(available, 6 - self._header_offset)
        self._store_header(frame, footer_offset)
        if self._header[5] != SOF_MARKER:
            _logger.warning("Protocol mismatch: Missed trailing SOF, recovering...")
            self._reset_payload()
            self._state = CMuxState.RECOVER
            return True
        frame.advance(footer_offset)
        self._state = CMuxState.INIT
        self._header_offset = 0
        self._data_available(None)
        self._reset_payload()
        return True

    def on_cmux_data(self, data: bytes | None = None) -> bool:
        """Parse received bytes; with ``None``, read what the terminal holds.

        Returns False when the parser needs more data to go on.
        """
        if data is None:
            if self.defragment and self._payload is not None:
                size = self._payload_len + 2
            elif self.defragment:
                size = max(self.buffer.size - 128, 1)
            else:
                size = self.buffer.size
            data = self.term.read(size)
        frame = _Frame(bytes(data))
        while len(frame) > 0:
            if not self._handlers[self._state](frame):
                return False
        return True

    def _on_term_data(self, data: bytes | None) -> bool:
        self.on_cmux_data(data)
        return False

    def init(self) -> bool:
        """Open the control channel and both virtual terminals."""
        self._header_offset = 0
        self._state = CMuxState.INIT
        self.term.set_read_cb(self._on_term_data)
        with self._lock:
            self._sabm_ack = -1
        for dlci in range(MAX_TERMINALS_NUM + 1):
            self._send_sabm(dlci)
            if not self._wait_ack(dlci):
                return False
            if dlci > 1 and self._dlci_setup_delay:
                time.sleep(self._dlci_setup_delay)
        return True

    def deinit(self) -> bool:
        """Close the virtual terminals, then the control channel."""
        with self._lock:
            self._sabm_ack = -1
        for dlci in range(1, MAX_TERMINALS_NUM + 1):
            self._send_disconnect(dlci)
            if not self._wait_ack(dlci):
                return False
        with self._lock:
            self._sabm_ack = -1
        self._send_disconnect(0)
        if not self._wait_ack(0):
            return False
        self.term.set_read_cb(None)
        return True

    def write(self, virtual_term: int, data: bytes) -> int:
        """Send ``data`` on a virtual terminal, split into frames of at most 127 bytes."""
        data = bytes(data)
        dlci = virtual_term + 1
        with self._lock:
            for start in range(0, len(data), _CMUX_MAX_LEN):
                chunk = data[start:start + _CMUX_MAX_LEN]
                frame = bytearray(
                    [SOF_MARKER, ((dlci << 2) + 1) & 0xFF, FT_UIH, ((len(chunk) << 1) + 1) & 0xFF, 0, SOF_MARKER]
                )
                frame[4] = 0xFF - fcs_crc(frame)
                self.term.write(bytes(frame[:4]))
                self.term.write(chunk)
                self.term.write(bytes(frame[4:]))
        return len(data)

    def set_read_cb(self, inst: int, callback: PayloadCallback | None) -> None:
        """Set the payload callback of a virtual terminal; unknown ones are ignored."""
        if 0 <= inst < MAX_TERMINALS_NUM:
            self._read_cbs[inst] = callback

    def detach(self) -> tuple[Terminal | None, UniqueBuffer | None]:
        """Give up the underlying terminal and buffer."""
        term, buffer = self.term, self.buffer
        self.term = None
        self.buffer = None
        return term, buffer


class CMuxInstance(Terminal):
    """One virtual terminal of a multiplexer."""

    def __init__(self, cmux: CMux, instance: int) -> None:
        super().__init__()
        self.cmux = cmux
        self.instance = instance

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def write(self, data: bytes) -> int:
        return self.cmux.write(self.instance, data)

    def read(self, size: int) -> bytes:
        """Payload is always handed to the callback, so nothing is left to read."""
        return b""

    def set_read_cb(self, callback) -> None:
        self.on_read = callback
        self.cmux.set_read_cb(self.instance, callback)