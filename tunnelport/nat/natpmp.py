"""NAT-PMP (NAT Port Mapping Protocol) client implementation per RFC 6886."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum

from tunnelport.models import TransportProtocol
from tunnelport.nat.exceptions import InvalidGatewayError, ProtocolError

logger = logging.getLogger(__name__)

# RFC 6886 constants
NAT_PMP_PORT = 5351
NAT_PMP_REQUEST_TIMEOUT = 10.0
NAT_PMP_VERSION = 0
NAT_PMP_RESPONSE_OFFSET = 128  # response opcode = 128 + request opcode
NAT_PMP_MAX_PACKET = 1100

HEADER_FORMAT = "!BBHI"  # version, opcode, result, seconds since epoch
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
PUBLIC_ADDRESS_RESPONSE_SIZE = 12
PORT_MAPPING_RESPONSE_SIZE = 16


class NATPMPOpcode(IntEnum):
    """NAT-PMP opcodes from RFC 6886."""

    PUBLIC_ADDRESS_REQUEST = 0
    UDP_MAPPING_REQUEST = 1
    TCP_MAPPING_REQUEST = 2


class NATPMPResult(IntEnum):
    """NAT-PMP result codes from RFC 6886 section 3.5."""

    SUCCESS = 0
    UNSUPPORTED_VERSION = 1
    NOT_AUTHORIZED = 2  # e.g., gateway firewall disallows
    NETWORK_FAILURE = 3
    OUT_OF_RESOURCES = 4
    UNSUPPORTED_OPCODE = 5


@dataclass(frozen=True)
class NATPMPPortMapping:
    """Port mapping as granted by the gateway."""

    epoch: int  # gateway seconds since start of epoch
    internal_port: int
    external_port: int
    lifetime: int  # seconds
    protocol: TransportProtocol


def validate_gateway(
    gateway: ipaddress.IPv4Address | str | None,
) -> ipaddress.IPv4Address:
    """Return the gateway as an IPv4 address.

    NAT-PMP only runs over IPv4, so IPv6 addresses are rejected together
    with missing, malformed and unspecified (0.0.0.0) addresses.

    Raises:
        InvalidGatewayError: If the gateway cannot be used

    """
    if gateway is None or gateway == "":
        msg = "gateway IP address is not set"
        raise InvalidGatewayError(msg)
    try:
        address = ipaddress.ip_address(gateway)
    except ValueError as e:
        msg = f"gateway IP address is not valid: {gateway!r}"
        raise InvalidGatewayError(msg) from e
    if address.version != 4:
        msg = f"gateway IP address is not IPv4: {address}"
        raise InvalidGatewayError(msg)
    if address.is_unspecified:
        msg = f"gateway IP address is unspecified: {address}"
        raise InvalidGatewayError(msg)
    return address


def gateway_rebooted(previous_epoch: int | None, epoch: int) -> bool:
    """Return True if ``epoch`` shows the gateway restarted.

    The epoch only grows while the gateway runs; a smaller value than
    previously seen means every mapping it held is gone (RFC 6886 3.6).
    """
    return previous_epoch is not None and epoch < previous_epoch


# Message encoding/decoding functions


def encode_public_address_request() -> bytes:
    """Encode public address request (RFC 6886 section 3.2)."""
    # Version (1 byte): 0
    # Opcode (1 byte): 0 (PUBLIC_ADDRESS_REQUEST)
    return struct.pack("!BB", NAT_PMP_VERSION, NATPMPOpcode.PUBLIC_ADDRESS_REQUEST)


def mapping_opcode(protocol: TransportProtocol | str) -> NATPMPOpcode:
    """Return the mapping request opcode for ``protocol``."""
    protocol = TransportProtocol(protocol)
    if protocol == TransportProtocol.TCP:
        return NATPMPOpcode.TCP_MAPPING_REQUEST
    return NATPMPOpcode.UDP_MAPPING_REQUEST


def encode_port_mapping_request(
    internal_port: int,
    external_port: int,
    lifetime: int,
    protocol: TransportProtocol | str,
) -> bytes:
    """Encode port mapping request (RFC 6886 section 3.3).

    Args:
        internal_port: Internal port (0 for any)
        external_port: Suggested external port (0 for the gateway's choice)
        lifetime: Mapping lifetime in seconds
        protocol: "tcp" or "udp"

    Returns:
        Encoded NAT-PMP request message

    """
    # Pack message: version(1), opcode(1), reserved(2), internal_port(2),
    #               external_port(2), lifetime(4)
    try:
        return struct.pack(
            "!BBHHHI",
            NAT_PMP_VERSION,
            mapping_opcode(protocol),
            0,  # reserved
            internal_port,
            external_port,
            lifetime,
        )
    except struct.error as e:
        msg = f"invalid port mapping request: {e}"
        raise ValueError(msg) from e


def _decode_header(data: bytes, request_opcode: NATPMPOpcode) -> int:
    """Validate a response header and return its epoch.

    Raises:
        ProtocolError: On short packets, version or opcode mismatch, or a
            non-success result code

    """
    if len(data) < HEADER_SIZE:
        msg = f"response too short: {len(data)} bytes"
        raise ProtocolError(msg, {"data": data.hex()})
    version, opcode, result, epoch = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
    if version != NAT_PMP_VERSION:
        msg = f"unsupported response version {version}"
        raise ProtocolError(msg)
    expected_opcode = NAT_PMP_RESPONSE_OFFSET + request_opcode
    if opcode != expected_opcode:
        msg = f"unexpected response opcode {opcode}, expected {expected_opcode}"
        raise ProtocolError(msg)
    if result != NATPMPResult.SUCCESS:
        error_name = (
            NATPMPResult(result).name
            if result in NATPMPResult._value2member_map_
            else f"Unknown({result})"
        )
        msg = f"NAT-PMP error: {error_name}"
        raise ProtocolError(msg, {"result": result})
    return epoch


def decode_public_address_response(data: bytes) -> tuple[int, ipaddress.IPv4Address]:
    """Decode public address response (RFC 6886 section 3.2).

    Args:
        data: Response bytes

    Returns:
        Tuple of (epoch, external_ip)

    Raises:
        ProtocolError: If the response is malformed or reports an error

    """
    epoch = _decode_header(data, NATPMPOpcode.PUBLIC_ADDRESS_REQUEST)
    if len(data) < PUBLIC_ADDRESS_RESPONSE_SIZE:
        msg = f"public address response too short: {len(data)} bytes"
        raise ProtocolError(msg)
    (ip_int,) = struct.unpack("!I", data[HEADER_SIZE:PUBLIC_ADDRESS_RESPONSE_SIZE])
    return epoch, ipaddress.IPv4Address(ip_int)


def decode_port_mapping_response(
    data: bytes,
    protocol: TransportProtocol | str,
) -> NATPMPPortMapping:
    """Decode port mapping response (RFC 6886 section 3.3).

    Args:
        data: Response bytes
        protocol: Protocol of the request the response answers

    Returns:
        NATPMPPortMapping with the granted ports and lifetime

    Raises:
        ProtocolError: If the response is malformed or reports an error

    """
    opcode = mapping_opcode(protocol)
    epoch = _decode_header(data, opcode)
    if len(data) < PORT_MAPPING_RESPONSE_SIZE:
        msg = f"port mapping response too short: {len(data)} bytes"
        raise ProtocolError(msg)
    internal, external, lifetime = struct.unpack(
        "!HHI", data[HEADER_SIZE:PORT_MAPPING_RESPONSE_SIZE]
    )
    return NATPMPPortMapping(
        epoch=epoch,
        internal_port=internal,
        external_port=external,
        lifetime=lifetime,
        protocol=TransportProtocol(protocol),
    )


class _ResponseProtocol(asyncio.DatagramProtocol):
    """Resolves a future with the first datagram received."""

    def __init__(self) -> None:
        self.response: asyncio.Future[bytes] = (
            asyncio.get_running_loop().create_future()
        )

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Handle incoming UDP datagram."""
        if not self.response.done():
            self.response.set_result(data)

    def error_received(self, exc: Exception) -> None:
        """Handle UDP error (e.g. ICMP port unreachable)."""
        if not self.response.done():
            self.response.set_exception(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        """Fail the pending request if the socket closes early."""
        if not self.response.done():
            self.response.set_exception(exc or ConnectionError("socket closed"))


class NATPMPClient:
    """Async NAT-PMP client.

    Every call opens its own UDP socket towards the gateway, sends a single
    request and waits for a single reply. Retries are left to the caller.
    """

    def __init__(
        self,
        timeout: float = NAT_PMP_REQUEST_TIMEOUT,
        port: int = NAT_PMP_PORT,
    ):
        """Initialize NAT-PMP client.

        Args:
            timeout: Request timeout in seconds
            port: Gateway NAT-PMP port

        """
        self.timeout = timeout
        self.port = port
        self.logger = logging.getLogger(__name__)

    async def _exchange(self, gateway: ipaddress.IPv4Address, request: bytes) -> bytes:
        """Send ``request`` to the gateway and return the reply."""
        loop = asyncio.get_running_loop()
        transport = None
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _ResponseProtocol,
                remote_addr=(str(gateway), self.port),
            )
            transport.sendto(request)
            return await asyncio.wait_for(protocol.response, timeout=self.timeout)
        except asyncio.TimeoutError:
            msg = f"no response from gateway {gateway} after {self.timeout:g}s"
            raise ProtocolError(msg) from None
        except OSError as e:
            msg = f"exchanging with gateway {gateway}: {e}"
            raise ProtocolError(msg) from e
        finally:
            if transport is not None:
                transport.close()

    async def external_address(
        self,
        gateway: ipaddress.IPv4Address | str,
    ) -> tuple[int, ipaddress.IPv4Address]:
        """Get the gateway external IPv4 address (RFC 6886 section 3.2).

        Returns:
            Tuple of (epoch, external_ip)

        Raises:
            InvalidGatewayError: If the gateway address is unusable
            ProtocolError: If the exchange fails

        """
        gateway = validate_gateway(gateway)
        response = await self._exchange(gateway, encode_public_address_request())
        epoch, external_ip = decode_public_address_response(response)
        self.logger.debug(
            "Gateway %s external address %s (epoch %d)", gateway, external_ip, epoch
        )
        return epoch, external_ip

    async def add_port_mapping(
        self,
        gateway: ipaddress.IPv4Address | str,
        protocol: TransportProtocol | str,
        internal_port: int,
        external_port: int,
        lifetime: int,
    ) -> NATPMPPortMapping:
        """Request a port mapping (RFC 6886 section 3.3).

        The gateway may grant a different external port and a shorter
        lifetime than requested; the returned mapping is what was granted.

        Args:
            gateway: Gateway address
            protocol: "tcp" or "udp"
            internal_port: Internal port (0 for any)
            external_port: Suggested external port (0 for the gateway's choice)
            lifetime: Requested lifetime in seconds

        Returns:
            NATPMPPortMapping with the granted external port and lifetime

        Raises:
            InvalidGatewayError: If the gateway address is unusable
            ProtocolError: If the exchange fails

        """
        gateway = validate_gateway(gateway)
        request = encode_port_mapping_request(
            internal_port, external_port, lifetime, protocol
        )
        response = await self._exchange(gateway, request)
        mapping = decode_port_mapping_response(response, protocol)
        self.logger.debug(
            "Mapped %s port %s -> %s (lifetime: %s s)",
            mapping.protocol.value,
            mapping.internal_port,
            mapping.external_port,
            mapping.lifetime,
        )
        return mapping
