"""IPv4 and IPv6 address values in the network-interface layout."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import IntEnum

_MASK32 = 0xFFFFFFFF


def htonl(value: int) -> int:
    """Convert a 32-bit value from host to network byte order."""
    value &= _MASK32
    if sys.byteorder == "big":
        return value
    return int.from_bytes(value.to_bytes(4, "little"), "big")


def ip4_makeu32(a: int, b: int, c: int, d: int) -> int:
    """Combine four octets into a host-order 32-bit value."""
    return ((a & 0xFF) << 24) | ((b & 0xFF) << 16) | ((c & 0xFF) << 8) | (d & 0xFF)


class IpAddrType(IntEnum):
    """Kind of address held in a generic IP address."""

    V4 = 0
    V6 = 6
    ANY = 46


class Ip6AddrType(IntEnum):
    """Scope classification of an IPv6 address."""

    UNKNOWN = 0
    GLOBAL = 1
    LINK_LOCAL = 2
    SITE_LOCAL = 3
    UNIQUE_LOCAL = 4
    IPV4_MAPPED_IPV6 = 5


@dataclass(frozen=True)
class Ip4Addr:
    """IPv4 address stored as a network-order 32-bit word."""

    addr: int = 0

    @classmethod
    def from_octets(cls, a: int, b: int, c: int, d: int) -> Ip4Addr:
        return cls(htonl(ip4_makeu32(a, b, c, d)))

    def octets(self) -> tuple[int, int, int, int]:
        """The four octets in transmission order."""
        a, b, c, d = (self.addr & _MASK32).to_bytes(4, sys.byteorder)
        return a, b, c, d

    def __str__(self) -> str:
        return ".".join(str(octet) for octet in self.octets())


@dataclass(frozen=True)
class Ip6Addr:
    """IPv6 address stored as four network-order 32-bit words and a zone."""

    addr: tuple[int, int, int, int] = (0, 0, 0, 0)
    zone: int = 0

    def __post_init__(self) -> None:
        if len(self.addr) != 4:
            raise ValueError("an IPv6 address holds exactly four 32-bit words")

    def blocks(self) -> tuple[int, ...]:
        """The eight 16-bit blocks in transmission order."""
        result: list[int] = []
        for word in self.addr:
            host = htonl(word)
            result.extend(((host >> 16) & 0xFFFF, host & 0xFFFF))
        return tuple(result)

    def __str__(self) -> str:
        return ":".join(f"{block:04x}" for block in self.blocks())


@dataclass(frozen=True)
class IpInfo:
    """IPv4 configuration of an interface."""

    ip: Ip4Addr = field(default_factory=Ip4Addr)
    netmask: Ip4Addr = field(default_factory=Ip4Addr)
    gw: Ip4Addr = field(default_factory=Ip4Addr)


def _prefix_matches(word: int, mask: int, value: int) -> bool:
    return (word & mask) == value


def ip6_addr_type(addr: Ip6Addr) -> Ip6AddrType:
    """Classify an IPv6 address by its prefix."""
    first = htonl(addr.addr[0])
    if _prefix_matches(first, 0xE0000000, 0x20000000):
        return Ip6AddrType.GLOBAL
    if _prefix_matches(first, 0xFFC00000, 0xFE800000):
        return Ip6AddrType.LINK_LOCAL
    if _prefix_matches(first, 0xFFC00000, 0xFEC00000):
        return Ip6AddrType.SITE_LOCAL
    if _prefix_matches(first, 0xFE000000, 0xFC000000):
        return Ip6AddrType.UNIQUE_LOCAL
    if addr.addr[0] == 0 and addr.addr[1] == 0 and htonl(addr.addr[2]) == 0x0000FFFF:
        return Ip6AddrType.IPV4_MAPPED_IPV6
    return Ip6AddrType.UNKNOWN