"""Cellular modem link layer: command channel, CMUX multiplexing and PPP interface glue."""

__version__ = "0.1.0"

__all__ = ["cmux", "dte", "errors", "events", "ipaddr", "log", "netif", "primitives", "terminal", "vfs"]