"""Server filtering and tunnel endpoint selection."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from tunnelport.models import (
    Connection,
    IPAddress,
    Server,
    ServerSelection,
    TransportProtocol,
)
from tunnelport.utils.exceptions import NoServerFoundError, TargetIPNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionDefaults:
    """Provider default endpoint ports per transport protocol."""

    tcp_port: int
    udp_port: int

    def port_for(self, protocol: TransportProtocol) -> int:
        """Return the default port for ``protocol``."""
        return self.tcp_port if protocol == TransportProtocol.TCP else self.udp_port


def _matches(value: str, wanted: Sequence[str]) -> bool:
    """Case-insensitive membership; an empty filter matches everything."""
    if not wanted:
        return True
    value = value.lower()
    return any(value == w.lower() for w in wanted)


def filter_out(server: Server, selection: ServerSelection) -> bool:
    """Return True if ``server`` fails any filter set in ``selection``."""
    return (
        server.vpn != selection.vpn
        or not server.supports(selection.protocol)
        or not _matches(server.country, selection.countries)
        or not _matches(server.region, selection.regions)
        or not _matches(server.city, selection.cities)
        or not _matches(server.isp, selection.isps)
        or not _matches(server.hostname, selection.hostnames)
        or not _matches(server.server_name, selection.names)
        or (selection.owned_only and not server.owned)
        or (selection.free_only and not server.free)
        or (selection.stream_only and not server.stream)
        or (selection.port_forward_only and not server.port_forward)
    )


def filter_servers(
    servers: Iterable[Server],
    selection: ServerSelection,
) -> list[Server]:
    """Return the servers matching every filter set in ``selection``.

    Raises:
        NoServerFoundError: If no server matches

    """
    filtered = [server for server in servers if not filter_out(server, selection)]
    if not filtered:
        msg = "no server found for this selection"
        details = {"selection": selection.model_dump(exclude_defaults=True)}
        raise NoServerFoundError(msg, details)
    logger.debug("%d server(s) match the selection", len(filtered))
    return filtered


def resolve_protocol(selection: ServerSelection) -> TransportProtocol:
    """TCP if explicitly requested, UDP otherwise."""
    return selection.protocol


def resolve_port(selection: ServerSelection, defaults: ConnectionDefaults) -> int:
    """Custom port if set, provider default for the protocol otherwise."""
    if selection.openvpn.custom_port > 0:
        return selection.openvpn.custom_port
    return defaults.port_for(resolve_protocol(selection))


def build_connections(
    servers: Iterable[Server],
    protocol: TransportProtocol,
    port: int,
) -> list[Connection]:
    """Expand servers into one connection per server IP address.

    Order follows the servers, then each server's addresses.
    """
    return [
        Connection(ip=ip, port=port, protocol=protocol)
        for server in servers
        for ip in server.ips
    ]


def get_target_ip_connection(
    connections: Iterable[Connection],
    target_ip: IPAddress,
) -> Connection:
    """Return the first connection whose IP is ``target_ip``.

    Raises:
        TargetIPNotFoundError: If no connection carries that address

    """
    for connection in connections:
        if connection.ip == target_ip:
            return connection
    msg = f"target IP address not found: {target_ip}"
    raise TargetIPNotFoundError(msg)


def pick_random_connection(
    connections: Sequence[Connection],
    rand_source: random.Random,
) -> Connection:
    """Pick one connection uniformly at random from ``rand_source``."""
    if not connections:
        msg = "no connection to pick from"
        raise NoServerFoundError(msg)
    return connections[rand_source.randrange(len(connections))]


def pick_connection(
    connections: Sequence[Connection],
    selection: ServerSelection,
    rand_source: random.Random,
) -> Connection:
    """Pick the pinned target IP connection, or a random one.

    Raises:
        TargetIPNotFoundError: If the target IP is not a candidate
        NoServerFoundError: If there is no candidate at all

    """
    if selection.target_ip is not None:
        return get_target_ip_connection(connections, selection.target_ip)
    return pick_random_connection(connections, rand_source)
