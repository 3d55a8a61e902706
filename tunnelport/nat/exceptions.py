"""NAT traversal exceptions."""

from __future__ import annotations

from tunnelport.utils.exceptions import TunnelPortError


class NATError(TunnelPortError):
    """Base exception for port forwarding errors."""


class InvalidGatewayError(NATError):
    """Gateway address is missing, malformed or unspecified."""


class ProtocolError(NATError):
    """NAT-PMP exchange failed: timeout, malformed reply or error result."""

