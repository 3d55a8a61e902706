"""Torguard provider."""

from __future__ import annotations

from tunnelport.provider.base import Provider
from tunnelport.provider.selection import ConnectionDefaults

TORGUARD_DEFAULTS = ConnectionDefaults(tcp_port=1912, udp_port=1912)


class Torguard(Provider):
    """Torguard OpenVPN servers, no port forwarding."""

    name = "torguard"

    @property
    def connection_defaults(self) -> ConnectionDefaults:
        """Torguard listens on 1912 for both protocols."""
        return TORGUARD_DEFAULTS
