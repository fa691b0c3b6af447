"""Open sockets and serial devices as terminal descriptors."""

from __future__ import annotations

import os
import socket
import termios
from dataclasses import dataclass, field
from typing import Any

from .errors import EspError, ErrorCode
from .log import get_logger
from .terminal import VfsTermConfig

_uart_logger = get_logger("uart_resource")
_socket_logger = get_logger("vfs_socket_creator")
_uart_creator_logger = get_logger("vfs_uart_creator")


@dataclass
class UartConfig:
    """Serial port settings.

    On a host the line is always set to 115200 baud, 8N1, raw.
    """

    port_num: int = 0
    baud_rate: int = 115200
    data_bits: int = 8
    parity: int = 0
    stop_bits: int = 1
    flow_control: int = 0


@dataclass
class SocketCreatorConfig:
    """A TCP endpoint that carries the modem's serial stream."""

    host_name: str = ""
    port: int = 0


@dataclass
class UartCreatorConfig:
    """A serial device node and its settings."""

    dev_name: str = ""
    uart: UartConfig = field(default_factory=UartConfig)


def configure_uart(fd: int) -> None:
    """Put the serial line on ``fd`` in raw 115200 baud 8N1 mode."""
    _uart_logger.debug("Creating uart resource")
    try:
        iflag, oflag, cflag, lflag, _, _, cc = termios.tcgetattr(fd)
    except termios.error as exc:
        raise EspError(ErrorCode.FAIL, "Failed to tcgetattr()") from exc

    cflag &= ~termios.PARENB
    cflag &= ~termios.CSTOPB
    cflag &= ~termios.CSIZE
    cflag |= termios.CS8
    cflag &= ~getattr(termios, "CRTSCTS", 0)
    cflag |= termios.CREAD | termios.CLOCAL
    lflag &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
    iflag &= ~(termios.IXON | termios.IXOFF | termios.IXANY)
    iflag &= ~(
        termios.IGNBRK | termios.BRKINT | termios.PARMRK | termios.ISTRIP
        | termios.INLCR | termios.IGNCR | termios.ICRNL
    )
    oflag &= ~termios.OPOST
    oflag &= ~termios.ONLCR
    cc = list(cc)
    cc[termios.VTIME] = 0
    cc[termios.VMIN] = 0
    speed = termios.B115200
    try:
        termios.tcsetattr(fd, termios.TCSANOW, [iflag, oflag, cflag, lflag, speed, speed, cc])
    except termios.error as exc:
        _uart_logger.warning("Failed to apply serial settings: %s", exc)


def hostname_to_fd(host: str, port: int) -> int:
    """Connect a TCP socket to ``host``:``port`` over IPv4; return its descriptor."""
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        _socket_logger.error("couldn't get hostname for :%s: getaddrinfo() failed: %s", host, exc)
        raise EspError(ErrorCode.FAIL, f"cannot resolve {host}") from exc
    if not infos:
        raise EspError(ErrorCode.FAIL, f"cannot resolve {host}")
    family, socktype, proto, _, sockaddr = infos[0]
    try:
        sock = socket.socket(family, socktype, proto)
    except OSError as exc:
        _socket_logger.error(
            "Failed to create socket (family %d socktype %d protocol %d)", family, socktype, proto
        )
        raise EspError(ErrorCode.FAIL, "failed to create socket") from exc
    if family != socket.AF_INET:
        _socket_logger.error("Unsupported protocol family %d", family)
        sock.close()
        raise EspError(ErrorCode.FAIL, f"unsupported protocol family {family}")
    address = (sockaddr[0], port)
    _socket_logger.info("[sock=%d] Resolved IPv4 address: %s", sock.fileno(), address[0])
    try:
        sock.connect(address)
    except OSError as exc:
        _socket_logger.error("[sock=%d] Failed to connect", sock.fileno())
        sock.close()
        raise EspError(ErrorCode.FAIL, f"failed to connect to {host}:{port}") from exc
    return sock.detach()


def _destroy_socket(fd: int, resource: Any) -> None:
    if fd >= 0:
        os.close(fd)


def _destroy_uart(fd: int, resource: Any) -> None:
    if fd >= 0:
        os.close(fd)


def vfs_create_socket(config: SocketCreatorConfig) -> VfsTermConfig:
    """Connect to the configured endpoint and return a non-blocking descriptor."""
    if config is None:
        raise EspError(ErrorCode.INVALID_ARG, "no socket configuration")
    fd = hostname_to_fd(config.host_name, config.port)
    os.set_blocking(fd, False)
    return VfsTermConfig(fd=fd, deleter=_destroy_socket)


def vfs_create_uart(config: UartCreatorConfig) -> VfsTermConfig:
    """Open and configure the serial device; return a non-blocking descriptor."""
    if config is None or not config.dev_name:
        raise EspError(ErrorCode.INVALID_ARG, "no serial device name")
    try:
        fd = os.open(config.dev_name, os.O_RDWR | os.O_NOCTTY)
    except OSError as exc:
        _uart_creator_logger.error("Cannot open %s", config.dev_name)
        raise EspError(ErrorCode.FAIL, "Cannot open the fd") from exc
    try:
        configure_uart(fd)
    except EspError:
        os.close(fd)
        raise
    os.set_blocking(fd, False)
    return VfsTermConfig(fd=fd, deleter=_destroy_uart, resource=config.uart)