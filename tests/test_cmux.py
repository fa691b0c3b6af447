import pytest

from modemlink.cmux import (
    CMux,
    CMuxInstance,
    CMuxState,
    MAX_TERMINALS_NUM,
    UniqueBuffer,
    fcs_crc,
)
from modemlink.terminal import Terminal

TEST_PAYLOAD = bytes([0xF9, 0x09, 0xFF, 0x0B, 0x54, 0x65, 0x73, 0x74, 0x0A, 0xBB, 0xF9])


def _long_payload() -> bytes:
    data = bytearray(453)
    data[0:6] = bytes([0xF9, 0x09, 0xEF, 0x7C, 0x03, 0x7E])
    data[5] = 0x7E
    data[449] = 0x7E
    data[450] = ord("\n")
    data[451] = 0x53
    data[452] = 0xF9
    return bytes(data)


class FakeTerm(Terminal):
    """Records writes; optionally answers CMUX frames like a loopback."""

    def __init__(self, echo: bool = True) -> None:
        super().__init__()
        self.echo = echo
        self.written: list[bytes] = []
        self.pending = bytearray()
        self.inject_by = 0

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if not self.echo:
            return len(data)
        reply = bytearray(data)
        if len(reply) > 2 and reply[0] == 0xF9:
            if reply[2] in (0x3F, 0x53):
                reply[2] = 0x73
            elif reply[2] == 0xEF:
                reply[2] = 0xFF
        self.pending += reply
        if self.on_read is not None:
            self.on_read(None)
        return len(data)

    def read(self, size: int) -> bytes:
        if self.inject_by:
            size = min(size, self.inject_by)
        chunk = bytes(self.pending[:size])
        del self.pending[:size]
        return chunk

    def inject(self, data: bytes, inject_by: int) -> None:
        self.pending = bytearray(data)
        self.inject_by = inject_by


def _make(echo: bool = True, **kwargs):
    term = FakeTerm(echo)
    return term, CMux(term, UniqueBuffer(1000), **kwargs)


def test_fcs_of_standard_sabm_frame():
    assert 0xFF - fcs_crc(bytes([0xF9, 0x03, 0x3F, 0x01])) == 0x1C


def test_fcs_of_standard_close_down_frame():
    assert 0xFF - fcs_crc(bytes([0xF9, 0x03, 0xEF, 0x05])) == 0xF2


def test_unique_buffer_allocates_size():
    buf = UniqueBuffer(16)
    assert len(buf.data) == 16
    assert buf.consumed == 0


def test_init_opens_all_channels():
    term, cmux = _make()
    assert cmux.init() is True
    assert term.written[0] == bytes([0xF9, 0x03, 0x3F, 0x01, 0x1C, 0xF9])
    assert [frame[1] >> 2 for frame in term.written] == [0, 1, 2]
    assert cmux.state == CMuxState.INIT


def test_init_fails_without_replies():
    term, cmux = _make(echo=False, ack_timeout_ms=30)
    assert cmux.init() is False
    assert len(term.written) == 1


def test_deinit_closes_and_releases_terminal():
    term, cmux = _make()
    assert cmux.init()
    assert cmux.deinit() is True
    assert term.written[-1] == bytes.fromhex("f903ef05c301f2f9")
    assert term.on_read is None


def test_deinit_fails_without_replies():
    term, cmux = _make(ack_timeout_ms=30)
    assert cmux.init()
    term.echo = False
    assert cmux.deinit() is False


def test_loopback_echo_through_instance():
    term, cmux = _make()
    assert cmux.init()
    received = []
    instance = CMuxInstance(cmux, 1)
    instance.set_read_cb(lambda data: received.append(data) or False)
    assert instance.write(b"Test\n") == 5
    assert received == [b"Test\n"]


def test_write_frames_header_and_footer():
    term, cmux = _make(echo=False)
    instance = CMuxInstance(cmux, 0)
    assert instance.write(b"AT\r") == 3
    assert term.written[0] == bytes([0xF9, 0x05, 0xEF, 0x07])
    assert term.written[1] == b"AT\r"
    assert len(term.written[2]) == 2
    assert term.written[2][1] == 0xF9
    assert term.written[2][0] == 0xFF - fcs_crc(term.written[0])


def test_write_splits_long_data():
    term, cmux = _make(echo=False)
    data = bytes(range(256)) + bytes(44)
    assert cmux.write(1, data) == 300
    assert len(term.written) == 9
    chunks = term.written[1::3]
    assert [len(c) for c in chunks] == [127, 127, 46]
    assert b"".join(chunks) == data
    assert [h[3] for h in term.written[0::3]] == [0xFF, 0xFF, (46 << 1) + 1]


def test_instance_read_returns_nothing():
    _, cmux = _make()
    assert CMuxInstance(cmux, 0).read(10) == b""


def test_injected_payload_one_byte_at_a_time():
    term, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    term.inject(TEST_PAYLOAD, 1)
    while term.pending:
        cmux.on_cmux_data(None)
    assert received == [b"Test\n"]


@pytest.mark.parametrize("inject_by", [453, 1, 2, 3, 4])
def test_injected_long_payload(inject_by):
    term, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    term.inject(_long_payload(), inject_by)
    while term.pending:
        cmux.on_cmux_data(None)
    assert len(received) == 1
    data = received[0]
    assert len(data) == 446
    assert data[0] == 0x7E
    assert data[-2] == 0x7E
    assert data[-1] == ord("\n")


def test_long_payload_fed_directly_in_chunks():
    _, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    payload = _long_payload()
    for start in range(0, len(payload), 7):
        cmux.on_cmux_data(payload[start:start + 7])
    assert len(received) == 1
    assert received[0][-1] == ord("\n")


def test_without_defragment_parts_arrive_separately():
    _, cmux = _make(defragment=False)
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    for byte in TEST_PAYLOAD:
        cmux.on_cmux_data(bytes([byte]))
    assert len(received) == 5
    assert b"".join(received) == b"Test\n"


def test_recovers_from_leading_garbage():
    _, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    assert cmux.on_cmux_data(b"\x00\x01" + TEST_PAYLOAD) is True
    assert received == [b"Test\n"]


def test_missing_trailing_flag_drops_frame():
    _, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    bad = TEST_PAYLOAD[:-1] + b"\x00"
    good = bytes([0xF9, 0x09, 0xFF, 0x0B]) + b"Next\n" + bytes([0xBB, 0xF9])
    cmux.on_cmux_data(bad + good)
    assert received == [b"Next\n"]


def test_empty_frames_are_skipped():
    _, cmux = _make()
    received = []
    cmux.set_read_cb(1, lambda data: received.append(data) or False)
    cmux.on_cmux_data(bytes([0xF9, 0xF9]) + TEST_PAYLOAD)
    assert received == [b"Test\n"]


def test_partial_data_reports_need_for_more():
    _, cmux = _make()
    assert cmux.on_cmux_data(TEST_PAYLOAD[:3]) is False
    assert cmux.state == CMuxState.HEADER


def test_unknown_instance_callback_is_ignored():
    _, cmux = _make()
    calls = []
    cmux.set_read_cb(MAX_TERMINALS_NUM + 3, lambda data: calls.append(data) or False)
    frame = bytes([0xF9, (6 << 2) | 1, 0xFF, 0x0B]) + b"Test\n" + bytes([0xBB, 0xF9])
    cmux.on_cmux_data(frame)
    assert calls == []


def test_detach_returns_terminal_and_buffer():
    term = FakeTerm()
    buffer = UniqueBuffer(64)
    cmux = CMux(term, buffer)
    assert cmux.detach() == (term, buffer)
    assert cmux.term is None
    assert cmux.buffer is None