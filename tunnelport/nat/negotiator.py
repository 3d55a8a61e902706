"""One-shot NAT-PMP port negotiation with the VPN gateway."""

from __future__ import annotations

import ipaddress
import logging

from tunnelport.models import TransportProtocol
from tunnelport.nat.natpmp import NATPMPClient, NATPMPPortMapping, validate_gateway

logger = logging.getLogger(__name__)

# Port 0 asks the gateway to pick any internal/external port
ANY_PORT = 0
DEFAULT_LIFETIME = 60  # seconds


def check_lifetime(
    log: logging.Logger,
    protocol: TransportProtocol,
    requested: int,
    assigned: int,
) -> bool:
    """Warn if the gateway granted a different lifetime.

    Returns:
        True if the lifetimes match

    """
    if requested == assigned:
        return True
    log.warning(
        "assigned %s port lifetime %ds differs from requested lifetime %ds",
        protocol.value.upper(),
        assigned,
        requested,
    )
    return False


def check_external_ports(log: logging.Logger, udp_port: int, tcp_port: int) -> bool:
    """Warn if the UDP and TCP external ports differ.

    Returns:
        True if both protocols got the same external port

    """
    if udp_port == tcp_port:
        return True
    log.warning(
        "UDP external port %d differs from TCP external port %d", udp_port, tcp_port
    )
    return False


class PortForwardNegotiator:
    """Obtains the initial forwarded port from the VPN gateway.

    Requests a UDP then a TCP mapping letting the gateway choose the
    external port. A shorter lease or asymmetric ports are logged but do
    not fail the negotiation; the TCP external port is the one advertised.
    """

    def __init__(
        self,
        client: NATPMPClient | None = None,
        lifetime: int = DEFAULT_LIFETIME,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize negotiator.

        Args:
            client: NAT-PMP client (a default client is created if None)
            lifetime: Requested mapping lifetime in seconds
            log: Logger receiving discrepancy reports

        """
        if lifetime <= 0:
            msg = f"lifetime must be positive, got {lifetime}"
            raise ValueError(msg)
        self.client = client or NATPMPClient()
        self.lifetime = lifetime
        self.logger = log or logger
        self.external_ip: ipaddress.IPv4Address | None = None
        self.last_grants: dict[TransportProtocol, NATPMPPortMapping] = {}

    async def negotiate(self, gateway: ipaddress.IPv4Address | str | None) -> int:
        """Negotiate a forwarded port with ``gateway``.

        Returns:
            External port advertised to the provider's network

        Raises:
            InvalidGatewayError: If the gateway address is unusable
            ProtocolError: If any NAT-PMP exchange fails

        """
        gateway = validate_gateway(gateway)

        _epoch, self.external_ip = await self.client.external_address(gateway)
        self.logger.info("gateway external IPv4 address is %s", self.external_ip)

        grants: dict[TransportProtocol, NATPMPPortMapping] = {}
        for protocol in (TransportProtocol.UDP, TransportProtocol.TCP):
            grant = await self.client.add_port_mapping(
                gateway, protocol, ANY_PORT, ANY_PORT, self.lifetime
            )
            check_lifetime(self.logger, protocol, self.lifetime, grant.lifetime)
            grants[protocol] = grant
        self.last_grants = grants

        udp_port = grants[TransportProtocol.UDP].external_port
        tcp_port = grants[TransportProtocol.TCP].external_port
        check_external_ports(self.logger, udp_port, tcp_port)
        self.logger.info("port forwarded is %d", tcp_port)
        return tcp_port
