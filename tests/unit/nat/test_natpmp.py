"""Unit tests for NAT-PMP client."""

from __future__ import annotations

import ipaddress
import struct
from unittest.mock import AsyncMock

import pytest

from tunnelport.models import TransportProtocol
from tunnelport.nat.exceptions import InvalidGatewayError, ProtocolError
from tunnelport.nat.natpmp import (
    NATPMPClient,
    NATPMPOpcode,
    NATPMPPortMapping,
    NATPMPResult,
    decode_port_mapping_response,
    decode_public_address_response,
    encode_port_mapping_request,
    encode_public_address_request,
    gateway_rebooted,
    validate_gateway,
)

pytestmark = [pytest.mark.unit, pytest.mark.nat]


def _public_address_response(
    epoch: int = 1234,
    ip: str = "203.0.113.7",
    result: int = NATPMPResult.SUCCESS,
    opcode: int = 128 + NATPMPOpcode.PUBLIC_ADDRESS_REQUEST,
    version: int = 0,
) -> bytes:
    # !BBHII = version(1), opcode(1), result(2), epoch(4), ip(4)
    return struct.pack(
        "!BBHII", version, opcode, result, epoch, int(ipaddress.IPv4Address(ip))
    )


def _mapping_response(
    protocol: str = "tcp",
    epoch: int = 1234,
    internal: int = 0,
    external: int = 4000,
    lifetime: int = 60,
    result: int = NATPMPResult.SUCCESS,
) -> bytes:
    opcode = (
        NATPMPOpcode.TCP_MAPPING_REQUEST
        if protocol == "tcp"
        else NATPMPOpcode.UDP_MAPPING_REQUEST
    )
    # !BBHIHHI = version, opcode, result, epoch, internal, external, lifetime
    return struct.pack(
        "!BBHIHHI", 0, 128 + opcode, result, epoch, internal, external, lifetime
    )


def test_encode_public_address_request():
    """Test encoding public address request."""
    data = encode_public_address_request()

    assert data == b"\x00\x00"


def test_encode_port_mapping_request():
    """Test encoding TCP port mapping request."""
    data = encode_port_mapping_request(0, 4000, 60, TransportProtocol.TCP)

    assert len(data) == 12
    version, opcode, reserved, internal, external, lifetime = struct.unpack(
        "!BBHHHI", data
    )
    assert version == 0
    assert opcode == NATPMPOpcode.TCP_MAPPING_REQUEST
    assert reserved == 0
    assert internal == 0
    assert external == 4000
    assert lifetime == 60


def test_encode_port_mapping_request_udp():
    """Test encoding UDP port mapping request from a plain string."""
    data = encode_port_mapping_request(0, 0, 60, "UDP")

    assert data[1] == NATPMPOpcode.UDP_MAPPING_REQUEST


def test_encode_port_mapping_request_out_of_range():
    """Test ports that do not fit the wire format are rejected."""
    with pytest.raises(ValueError, match="invalid port mapping request"):
        encode_port_mapping_request(0, 70000, 60, "tcp")


def test_encode_port_mapping_request_unknown_protocol():
    """Test unknown protocols are rejected."""
    with pytest.raises(ValueError):
        encode_port_mapping_request(0, 0, 60, "sctp")


def test_decode_public_address_response_success():
    """Test decoding successful public address response."""
    epoch, ip = decode_public_address_response(_public_address_response())

    assert epoch == 1234
    assert ip == ipaddress.IPv4Address("203.0.113.7")


def test_decode_public_address_response_too_short():
    """Test decoding response that's too short."""
    with pytest.raises(ProtocolError, match="too short"):
        decode_public_address_response(b"\x00\x80")


def test_decode_public_address_response_truncated_body():
    """Test decoding a success header without the address."""
    with pytest.raises(ProtocolError, match="too short"):
        decode_public_address_response(_public_address_response()[:8])


def test_decode_public_address_response_error():
    """Test decoding response with error code."""
    data = _public_address_response(result=NATPMPResult.NOT_AUTHORIZED)

    with pytest.raises(ProtocolError, match="NOT_AUTHORIZED"):
        decode_public_address_response(data)


def test_decode_public_address_response_error_header_only():
    """Test error results are reported even without a body."""
    data = _public_address_response(result=NATPMPResult.NETWORK_FAILURE)[:8]

    with pytest.raises(ProtocolError, match="NETWORK_FAILURE"):
        decode_public_address_response(data)


def test_decode_public_address_response_unknown_error():
    """Test unknown result codes are still errors."""
    with pytest.raises(ProtocolError, match="Unknown\\(42\\)"):
        decode_public_address_response(_public_address_response(result=42))


def test_decode_public_address_response_wrong_opcode():
    """Test a mapping response is not accepted as an address response."""
    data = _public_address_response(opcode=128 + NATPMPOpcode.UDP_MAPPING_REQUEST)

    with pytest.raises(ProtocolError, match="opcode"):
        decode_public_address_response(data)


def test_decode_public_address_response_wrong_version():
    """Test responses from other protocol versions are rejected."""
    with pytest.raises(ProtocolError, match="version"):
        decode_public_address_response(_public_address_response(version=2))


def test_decode_port_mapping_response_success():
    """Test decoding successful port mapping response."""
    data = _mapping_response("tcp", epoch=99, internal=0, external=4001, lifetime=30)

    mapping = decode_port_mapping_response(data, "tcp")

    assert mapping == NATPMPPortMapping(
        epoch=99,
        internal_port=0,
        external_port=4001,
        lifetime=30,
        protocol=TransportProtocol.TCP,
    )


def test_decode_port_mapping_response_protocol_mismatch():
    """Test a UDP response does not answer a TCP request."""
    with pytest.raises(ProtocolError, match="opcode"):
        decode_port_mapping_response(_mapping_response("udp"), "tcp")


def test_decode_port_mapping_response_too_short():
    """Test decoding truncated mapping response."""
    with pytest.raises(ProtocolError, match="too short"):
        decode_port_mapping_response(_mapping_response("udp")[:12], "udp")


def test_decode_port_mapping_response_error():
    """Test decoding mapping response with error code."""
    data = _mapping_response("udp", result=NATPMPResult.OUT_OF_RESOURCES)

    with pytest.raises(ProtocolError, match="OUT_OF_RESOURCES"):
        decode_port_mapping_response(data, "udp")


@pytest.mark.parametrize(
    ("previous", "current", "expected"),
    [
        (None, 10, False),
        (10, 10, False),
        (10, 55, False),
        (55, 3, True),
    ],
)
def test_gateway_rebooted(previous, current, expected):
    """Test epoch going backwards means the gateway restarted."""
    assert gateway_rebooted(previous, current) is expected


def test_validate_gateway_accepts_ipv4():
    """Test IPv4 gateways are accepted as strings and addresses."""
    assert validate_gateway("10.2.0.1") == ipaddress.IPv4Address("10.2.0.1")
    assert validate_gateway(ipaddress.IPv4Address("10.2.0.1")) == ipaddress.IPv4Address(
        "10.2.0.1"
    )


@pytest.mark.parametrize("gateway", [None, "", "not-an-ip", "0.0.0.0", "fe80::1"])
def test_validate_gateway_rejects(gateway):
    """Test unusable gateways are rejected."""
    with pytest.raises(InvalidGatewayError):
        validate_gateway(gateway)


@pytest.mark.asyncio
async def test_external_address_decodes_reply():
    """Test external_address sends the request and decodes the reply."""
    client = NATPMPClient()
    reply = _public_address_response(epoch=7)
    client._exchange = AsyncMock(return_value=reply)  # noqa: SLF001

    epoch, ip = await client.external_address("10.2.0.1")

    assert epoch == 7
    assert ip == ipaddress.IPv4Address("203.0.113.7")
    client._exchange.assert_awaited_once_with(  # noqa: SLF001
        ipaddress.IPv4Address("10.2.0.1"), b"\x00\x00"
    )


@pytest.mark.asyncio
async def test_add_port_mapping_returns_grant_not_request():
    """Test the granted port and lifetime are surfaced, not the requested ones."""
    client = NATPMPClient()
    client._exchange = AsyncMock(  # noqa: SLF001
        return_value=_mapping_response("udp", external=5555, lifetime=30)
    )

    mapping = await client.add_port_mapping("10.2.0.1", "udp", 0, 4000, 60)

    assert mapping.external_port == 5555
    assert mapping.lifetime == 30
    assert mapping.protocol == TransportProtocol.UDP
    sent = client._exchange.await_args.args[1]  # noqa: SLF001
    assert sent == encode_port_mapping_request(0, 4000, 60, "udp")


@pytest.mark.asyncio
async def test_add_port_mapping_invalid_gateway_sends_nothing():
    """Test gateway validation happens before any exchange."""
    client = NATPMPClient()
    client._exchange = AsyncMock()  # noqa: SLF001

    with pytest.raises(InvalidGatewayError):
        await client.add_port_mapping("0.0.0.0", "tcp", 0, 0, 60)

    client._exchange.assert_not_awaited()  # noqa: SLF001
