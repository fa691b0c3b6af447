import os
import queue
import socket
import time

import pytest

from modemlink.terminal import (
    FdTerminal,
    Terminal,
    TerminalError,
    VfsTermConfig,
    create_vfs_terminal,
)


@pytest.fixture
def pipe():
    r, w = os.pipe()
    yield r, w
    for fd in (r, w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_read_callback_gets_notified_and_reads(pipe):
    r, w = pipe
    os.set_blocking(r, False)
    received = queue.Queue()
    term = FdTerminal(VfsTermConfig(fd=r), poll_interval=0.05)
    try:
        def on_read(data):
            received.put((data, term.read(64)))
            return True

        term.set_read_cb(on_read)
        term.start()
        os.write(w, b"ping")
        data, payload = received.get(timeout=3)
        assert data is None
        assert payload == b"ping"
        assert term.read(64) == b""
    finally:
        term.close()


def test_callback_returning_true_is_detached(pipe):
    r, w = pipe
    calls = []
    term = FdTerminal(VfsTermConfig(fd=r), poll_interval=0.05)
    try:
        term.set_read_cb(lambda data: calls.append(data) or True)
        term.start()
        os.write(w, b"x")
        deadline = time.monotonic() + 3
        while not calls and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.3)
        assert calls == [None]
    finally:
        term.close()


def test_write_sends_bytes():
    a, b = socket.socketpair()
    try:
        term = FdTerminal(VfsTermConfig(fd=a.fileno()), poll_interval=0.05)
        assert term.write(b"abc") == 3
        assert b.recv(3) == b"abc"
        term.close()
    finally:
        a.close()
        b.close()


def test_read_without_data_on_nonblocking_fd_is_empty(pipe):
    r, _ = pipe
    os.set_blocking(r, False)
    term = FdTerminal(VfsTermConfig(fd=r), poll_interval=0.05)
    try:
        assert term.read(10) == b""
    finally:
        term.close()


def test_read_and_write_on_closed_fd_fail_softly():
    r, w = os.pipe()
    os.close(w)
    term = FdTerminal(VfsTermConfig(fd=r), poll_interval=0.05)
    os.close(r)
    try:
        assert term.read(4) == b""
        assert term.write(b"x") == 0
    finally:
        term.close()


def test_close_calls_deleter_once(pipe):
    r, _ = pipe
    calls = []
    term = FdTerminal(
        VfsTermConfig(fd=r, deleter=lambda fd, res: calls.append((fd, res)), resource="res"),
        poll_interval=0.05,
    )
    term.close()
    term.close()
    assert calls == [(r, "res")]


def test_context_manager_closes(pipe):
    r, _ = pipe
    calls = []
    with FdTerminal(VfsTermConfig(fd=r, deleter=lambda fd, res: calls.append(fd)), poll_interval=0.05):
        assert calls == []
    assert calls == [r]


def test_error_callback_is_stored_and_callable(pipe):
    r, _ = pipe
    errors = []
    term = FdTerminal(VfsTermConfig(fd=r), poll_interval=0.05)
    try:
        term.set_error_cb(errors.append)
        term.on_error(TerminalError.CHECKSUM_ERROR)
        assert errors == [TerminalError.CHECKSUM_ERROR]
    finally:
        term.close()


def test_terminal_is_abstract():
    with pytest.raises(TypeError):
        Terminal()


def test_create_vfs_terminal_is_started(pipe):
    r, w = pipe
    received = queue.Queue()
    term = create_vfs_terminal(VfsTermConfig(fd=r))
    try:
        term.set_read_cb(lambda data: received.put(term.read(16)) or True)
        os.write(w, b"hello")
        assert received.get(timeout=5) == b"hello"
    finally:
        term.close()