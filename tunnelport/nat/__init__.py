"""NAT-PMP port forwarding with the VPN gateway.

Provides the RFC 6886 client, the one-shot port negotiation and the
long-running renewal loop that keeps the forwarded port alive.
"""

from tunnelport.nat.exceptions import (
    InvalidGatewayError,
    NATError,
    ProtocolError,
)
from tunnelport.nat.keeper import ForwardedPortState, PortForwardKeeper
from tunnelport.nat.natpmp import NATPMPClient, NATPMPPortMapping
from tunnelport.nat.negotiator import PortForwardNegotiator

__all__ = [
    "ForwardedPortState",
    "InvalidGatewayError",
    "NATError",
    "NATPMPClient",
    "NATPMPPortMapping",
    "PortForwardKeeper",
    "PortForwardNegotiator",
    "ProtocolError",
]
