"""A small event loop dispatching events by base and identifier."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable

from .ipaddr import Ip6Addr

ANY_BASE = None
"""Register for events of every base."""

ANY_ID = -1
"""Register for every event identifier of a base."""


class EventBase(str, Enum):
    """Families of events."""

    WIFI_EVENT = "WIFI_EVENT"
    IP_EVENT = "IP_EVENT"
    NETIF_PPP_STATUS = "NETIF_PPP_STATUS"


class UsedEvent(IntEnum):
    """Event identifiers used by network services."""

    WIFI_EVENT_STA_CONNECTED = 0
    WIFI_EVENT_STA_DISCONNECTED = 1
    WIFI_EVENT_AP_START = 2
    WIFI_EVENT_AP_STOP = 3
    IP_EVENT_STA_GOT_IP = 4
    IP_EVENT_GOT_IP6 = 5


@dataclass
class IpEventGotIp6:
    """Data carried by an event announcing a new IPv6 address."""

    if_index: int = 0
    esp_netif: Any = None
    ip6_info: Ip6Addr = field(default_factory=Ip6Addr)
    ip_index: int = 0


@dataclass(frozen=True)
class _Registration:
    base: Any
    event_id: int
    handler: Callable[..., Any]
    arg: Any


class EventLoop:
    """Keeps event handlers and calls them for posted events.

    A handler registered with an ``arg`` is called as
    ``handler(arg, base, event_id, data)``; without one, as
    ``handler(base, event_id, data)``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registrations: list[_Registration] = []

    def register(self, base: Any, event_id: int, handler: Callable[..., Any], arg: Any = None) -> None:
        with self._lock:
            self._registrations.append(_Registration(base, event_id, handler, arg))

    def unregister(self, base: Any, event_id: int, handler: Callable[..., Any]) -> bool:
        """Remove a registration made with exactly these values; True if one was removed."""
        with self._lock:
            for index, reg in enumerate(self._registrations):
                if reg.base == base and reg.event_id == event_id and reg.handler == handler:
                    del self._registrations[index]
                    return True
        return False

    def post(self, base: Any, event_id: int, data: Any = None) -> int:
        """Call every matching handler; return how many were called."""
        with self._lock:
            matching = [
                reg
                for reg in self._registrations
                if (reg.base is ANY_BASE or reg.base == base)
                and (reg.event_id == ANY_ID or reg.event_id == event_id)
            ]
        for reg in matching:
            if reg.arg is None:
                reg.handler(base, event_id, data)
            else:
                reg.handler(reg.arg, base, event_id, data)
        return len(matching)


default_event_loop = EventLoop()