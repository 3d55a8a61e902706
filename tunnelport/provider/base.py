"""VPN provider capability shared by every provider variant."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import ClassVar

from tunnelport.models import Connection, PortForwardConfig, Server, ServerSelection
from tunnelport.nat.keeper import PortChangeCallback
from tunnelport.nat.natpmp import NATPMPClient
from tunnelport.provider.selection import (
    ConnectionDefaults,
    build_connections,
    filter_servers,
    pick_connection,
    resolve_port,
    resolve_protocol,
)
from tunnelport.utils.exceptions import PortForwardNotSupportedError
from tunnelport.utils.tasks import TaskState
from tunnelport.utils.time import Clock

logger = logging.getLogger(__name__)


class Provider(ABC):
    """Resolves tunnel endpoints and forwards ports for one VPN provider.

    Subclasses declare their default endpoint ports and, when the provider
    supports it, implement port forwarding.
    """

    name: ClassVar[str] = ""

    def __init__(
        self,
        servers: Sequence[Server],
        rand_source: random.Random | None = None,
        port_forward_config: PortForwardConfig | None = None,
        client: NATPMPClient | None = None,
        clock: Clock | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            servers: Already-loaded server catalog
            rand_source: Random source for endpoint selection
            port_forward_config: Port forwarding settings
            client: NAT-PMP client used for port forwarding
            clock: Clock driving port mapping renewals
            log: Logger receiving diagnostics

        """
        self.servers = tuple(servers)
        self.rand_source = rand_source or random.Random()  # noqa: S311
        self.port_forward_config = port_forward_config or PortForwardConfig()
        self.client = client or NATPMPClient(
            timeout=self.port_forward_config.request_timeout
        )
        self.clock = clock or Clock()
        self.logger = log or logger

    @property
    @abstractmethod
    def connection_defaults(self) -> ConnectionDefaults:
        """Default endpoint ports for this provider."""

    def filter_servers(self, selection: ServerSelection) -> list[Server]:
        """Return the catalog servers matching ``selection``."""
        return filter_servers(self.servers, selection)

    def get_connection(self, selection: ServerSelection) -> Connection:
        """Resolve the tunnel endpoint for ``selection``.

        Raises:
            SelectionError: If no server matches or the target IP is absent

        """
        protocol = resolve_protocol(selection)
        port = resolve_port(selection, self.connection_defaults)
        servers = self.filter_servers(selection)
        connections = build_connections(servers, protocol, port)
        connection = pick_connection(connections, selection, self.rand_source)
        self.logger.debug(
            "%s endpoint %s picked among %d candidate(s)",
            self.name,
            connection,
            len(connections),
        )
        return connection

    async def port_forward(self, gateway: ipaddress.IPv4Address | str | None) -> int:
        """Negotiate a forwarded port with the VPN gateway.

        Raises:
            PortForwardNotSupportedError: If the provider has no port forwarding

        """
        msg = f"port forwarding is not supported by {self.name}"
        raise PortForwardNotSupportedError(msg)

    async def keep_port_forward(
        self,
        port: int,
        gateway: ipaddress.IPv4Address | str,
        stop_event: asyncio.Event | None = None,
        on_port_change: PortChangeCallback | None = None,
    ) -> TaskState:
        """Keep ``port`` forwarded until ``stop_event`` is set.

        Raises:
            PortForwardNotSupportedError: If the provider has no port forwarding

        """
        msg = f"port forwarding is not supported by {self.name}"
        raise PortForwardNotSupportedError(msg)
