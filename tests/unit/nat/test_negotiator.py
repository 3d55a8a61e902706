"""Unit tests for the one-shot port forward negotiation."""

from __future__ import annotations

import ipaddress
import logging
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from tunnelport.models import TransportProtocol
from tunnelport.nat.exceptions import InvalidGatewayError, ProtocolError
from tunnelport.nat.natpmp import NATPMPPortMapping
from tunnelport.nat.negotiator import PortForwardNegotiator

pytestmark = [pytest.mark.unit, pytest.mark.nat]


def _grant(protocol: TransportProtocol, port: int, lifetime: int) -> NATPMPPortMapping:
    return NATPMPPortMapping(
        epoch=100,
        internal_port=0,
        external_port=port,
        lifetime=lifetime,
        protocol=protocol,
    )


def _mock_client(udp: NATPMPPortMapping, tcp: NATPMPPortMapping) -> MagicMock:
    client = MagicMock()
    client.external_address = AsyncMock(
        return_value=(100, ipaddress.IPv4Address("203.0.113.7"))
    )
    client.add_port_mapping = AsyncMock(side_effect=[udp, tcp])
    return client


def _warnings(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]


@pytest.mark.asyncio
async def test_negotiate_lifetime_mismatch_warns_once(gateway, caplog):
    """Test a shorter UDP lease is logged and the common port returned."""
    caplog.set_level(logging.INFO, logger="tunnelport")
    client = _mock_client(
        _grant(TransportProtocol.UDP, 4000, 30),
        _grant(TransportProtocol.TCP, 4000, 60),
    )
    negotiator = PortForwardNegotiator(client=client, lifetime=60)

    port = await negotiator.negotiate(gateway)

    assert port == 4000
    warnings = _warnings(caplog)
    assert len(warnings) == 1
    assert "UDP" in warnings[0]
    assert "lifetime 30s differs from requested lifetime 60s" in warnings[0]


@pytest.mark.asyncio
async def test_negotiate_port_mismatch_uses_tcp_port(gateway, caplog):
    """Test asymmetric UDP/TCP ports are logged and the TCP port wins."""
    caplog.set_level(logging.INFO, logger="tunnelport")
    client = _mock_client(
        _grant(TransportProtocol.UDP, 4000, 60),
        _grant(TransportProtocol.TCP, 4001, 60),
    )
    negotiator = PortForwardNegotiator(client=client, lifetime=60)

    port = await negotiator.negotiate(gateway)

    assert port == 4001
    assert _warnings(caplog) == [
        "UDP external port 4000 differs from TCP external port 4001"
    ]


@pytest.mark.asyncio
async def test_negotiate_requests_udp_then_tcp_any_port(gateway):
    """Test both mappings ask the gateway to choose the ports."""
    client = _mock_client(
        _grant(TransportProtocol.UDP, 4000, 60),
        _grant(TransportProtocol.TCP, 4000, 60),
    )
    negotiator = PortForwardNegotiator(client=client, lifetime=60)

    await negotiator.negotiate(str(gateway))

    client.external_address.assert_awaited_once_with(gateway)
    assert client.add_port_mapping.await_args_list == [
        call(gateway, TransportProtocol.UDP, 0, 0, 60),
        call(gateway, TransportProtocol.TCP, 0, 0, 60),
    ]
    assert negotiator.external_ip == ipaddress.IPv4Address("203.0.113.7")
    assert negotiator.last_grants[TransportProtocol.UDP].external_port == 4000


@pytest.mark.asyncio
async def test_negotiate_logs_external_address(gateway, caplog):
    """Test the gateway external address is reported."""
    caplog.set_level(logging.INFO, logger="tunnelport")
    client = _mock_client(
        _grant(TransportProtocol.UDP, 4000, 60),
        _grant(TransportProtocol.TCP, 4000, 60),
    )

    await PortForwardNegotiator(client=client).negotiate(gateway)

    assert "gateway external IPv4 address is 203.0.113.7" in caplog.text
    assert _warnings(caplog) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_gateway", [None, "", "0.0.0.0", "gateway.local"])
async def test_negotiate_invalid_gateway(bad_gateway):
    """Test invalid gateways abort before any exchange."""
    client = MagicMock()
    client.external_address = AsyncMock()
    client.add_port_mapping = AsyncMock()

    with pytest.raises(InvalidGatewayError):
        await PortForwardNegotiator(client=client).negotiate(bad_gateway)

    client.external_address.assert_not_awaited()
    client.add_port_mapping.assert_not_awaited()


@pytest.mark.asyncio
async def test_negotiate_external_address_failure(gateway):
    """Test a failed address query aborts the negotiation."""
    client = MagicMock()
    client.external_address = AsyncMock(side_effect=ProtocolError("timeout"))
    client.add_port_mapping = AsyncMock()

    with pytest.raises(ProtocolError):
        await PortForwardNegotiator(client=client).negotiate(gateway)

    client.add_port_mapping.assert_not_awaited()


@pytest.mark.asyncio
async def test_negotiate_tcp_mapping_failure(gateway):
    """Test a failed TCP mapping surfaces the protocol error."""
    client = _mock_client(_grant(TransportProtocol.UDP, 4000, 60), None)
    client.add_port_mapping = AsyncMock(
        side_effect=[
            _grant(TransportProtocol.UDP, 4000, 60),
            ProtocolError("NAT-PMP error: NOT_AUTHORIZED"),
        ]
    )

    with pytest.raises(ProtocolError, match="NOT_AUTHORIZED"):
        await PortForwardNegotiator(client=client).negotiate(gateway)


def test_negotiator_rejects_non_positive_lifetime():
    """Test lifetime must be positive."""
    with pytest.raises(ValueError, match="lifetime"):
        PortForwardNegotiator(client=MagicMock(), lifetime=0)
