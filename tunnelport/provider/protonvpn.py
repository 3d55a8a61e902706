"""ProtonVPN provider with NAT-PMP port forwarding."""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Any

from tunnelport.nat.keeper import PortChangeCallback, PortForwardKeeper
from tunnelport.nat.natpmp import NATPMPPortMapping, validate_gateway
from tunnelport.nat.negotiator import PortForwardNegotiator
from tunnelport.provider.base import Provider
from tunnelport.provider.selection import ConnectionDefaults
from tunnelport.utils.tasks import TaskState

PROTONVPN_DEFAULTS = ConnectionDefaults(tcp_port=443, udp_port=1194)


class ProtonVPN(Provider):
    """ProtonVPN OpenVPN servers; ports are forwarded by the VPN gateway."""

    name = "protonvpn"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """Initialize ProtonVPN provider; see :class:`Provider`."""
        super().__init__(*args, **kwargs)
        # Grants from the last negotiation with each gateway
        self.negotiated: dict[
            ipaddress.IPv4Address, tuple[NATPMPPortMapping, ...]
        ] = {}

    @property
    def connection_defaults(self) -> ConnectionDefaults:
        """ProtonVPN OpenVPN ports."""
        return PROTONVPN_DEFAULTS

    async def port_forward(self, gateway: ipaddress.IPv4Address | str | None) -> int:
        """Obtain a forwarded port from the ProtonVPN gateway.

        Raises:
            InvalidGatewayError: If the gateway address is unusable
            ProtocolError: If a NAT-PMP exchange fails

        """
        negotiator = PortForwardNegotiator(
            client=self.client,
            lifetime=self.port_forward_config.lifetime,
            log=self.logger,
        )
        port = await negotiator.negotiate(gateway)
        self.negotiated[validate_gateway(gateway)] = tuple(
            negotiator.last_grants.values()
        )
        return port

    async def keep_port_forward(
        self,
        port: int,
        gateway: ipaddress.IPv4Address | str,
        stop_event: asyncio.Event | None = None,
        on_port_change: PortChangeCallback | None = None,
    ) -> TaskState:
        """Renew the ProtonVPN port mappings until ``stop_event`` is set.

        The first renewal is scheduled from the lease negotiated with the
        same gateway by :meth:`port_forward`, when there was one.

        Returns:
            TaskState.STOPPED once stopped

        Raises:
            ProtocolError: If a renewal exchange fails

        """
        keeper = PortForwardKeeper(
            port,
            gateway,
            client=self.client,
            lifetime=self.port_forward_config.lifetime,
            refresh_interval=self.port_forward_config.refresh_interval,
            clock=self.clock,
            stop_event=stop_event,
            on_port_change=on_port_change,
            grants=self.negotiated.get(validate_gateway(gateway), ()),
            log=self.logger,
        )
        return await keeper.run()
