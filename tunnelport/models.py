"""Pydantic models for tunnelport.

Provides validated data models for the server catalog, server selection,
resolved connections and the application configuration.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from rich.tree import Tree

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TransportProtocol(str, Enum):
    """Tunnel transport protocols."""

    UDP = "udp"
    TCP = "tcp"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        return None


class Server(BaseModel):
    """Read-only server catalog entry."""

    model_config = ConfigDict(frozen=True)

    vpn: str = Field(default="openvpn", description="VPN type served")
    country: str = Field(default="", description="Server country")
    region: str = Field(default="", description="Server region")
    city: str = Field(default="", description="Server city")
    isp: str = Field(default="", description="Hosting ISP")
    hostname: str = Field(default="", description="Server hostname")
    server_name: str = Field(default="", description="Provider server name")
    owned: bool = Field(default=False, description="Hardware owned by the provider")
    free: bool = Field(default=False, description="Available on free plans")
    stream: bool = Field(default=False, description="Supports streaming services")
    port_forward: bool = Field(default=False, description="Supports port forwarding")
    tcp: bool = Field(default=True, description="Accepts TCP tunnels")
    udp: bool = Field(default=True, description="Accepts UDP tunnels")
    ips: tuple[IPAddress, ...] = Field(
        default=(),
        description="Server IP addresses, in catalog order",
    )

    def supports(self, protocol: TransportProtocol) -> bool:
        """Return True if the server accepts tunnels over ``protocol``."""
        return self.tcp if protocol == TransportProtocol.TCP else self.udp


class OpenVPNSelection(BaseModel):
    """OpenVPN endpoint preferences."""

    model_config = ConfigDict(frozen=True)

    tcp: bool = Field(default=False, description="Use TCP instead of UDP")
    custom_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Custom endpoint port, 0 for the provider default",
    )


class ServerSelection(BaseModel):
    """Caller intent used to narrow the catalog down to one endpoint."""

    model_config = ConfigDict(frozen=True)

    vpn: str = Field(default="openvpn", description="VPN type")
    target_ip: IPAddress | None = Field(
        default=None,
        description="Pin the endpoint to this IP address",
    )
    countries: tuple[str, ...] = Field(default=(), description="Server countries")
    regions: tuple[str, ...] = Field(default=(), description="Server regions")
    cities: tuple[str, ...] = Field(default=(), description="Server cities")
    isps: tuple[str, ...] = Field(default=(), description="Hosting ISPs")
    hostnames: tuple[str, ...] = Field(default=(), description="Server hostnames")
    names: tuple[str, ...] = Field(default=(), description="Server names")
    owned_only: bool = Field(default=False, description="Only provider-owned servers")
    free_only: bool = Field(default=False, description="Only free servers")
    stream_only: bool = Field(default=False, description="Only streaming servers")
    port_forward_only: bool = Field(
        default=False,
        description="Only servers supporting port forwarding",
    )
    openvpn: OpenVPNSelection = Field(default_factory=OpenVPNSelection)

    @field_validator(
        "countries", "regions", "cities", "isps", "hostnames", "names", mode="before"
    )
    @classmethod
    def split_comma_separated(cls, v):
        """Accept comma-separated strings for list fields."""
        if isinstance(v, str):
            return tuple(item.strip() for item in v.split(",") if item.strip())
        return v

    @property
    def protocol(self) -> TransportProtocol:
        """Transport protocol requested by this selection."""
        return TransportProtocol.TCP if self.openvpn.tcp else TransportProtocol.UDP

    def to_tree(self) -> Tree:
        """Render the selection as a Rich tree."""
        node = Tree("Server selection:")
        node.add(f"VPN type: {self.vpn}")
        if self.target_ip is not None:
            node.add(f"Target IP address: {self.target_ip}")
        for label, values in (
            ("Countries", self.countries),
            ("Regions", self.regions),
            ("Cities", self.cities),
            ("ISPs", self.isps),
            ("Hostnames", self.hostnames),
            ("Names", self.names),
        ):
            if values:
                node.add(f"{label}: {', '.join(values)}")
        for label, flag in (
            ("Owned servers only", self.owned_only),
            ("Free servers only", self.free_only),
            ("Stream servers only", self.stream_only),
            ("Port forwarding servers only", self.port_forward_only),
        ):
            if flag:
                node.add(f"{label}: yes")
        openvpn = node.add("OpenVPN selection:")
        openvpn.add(f"Protocol: {self.protocol.value.upper()}")
        if self.openvpn.custom_port:
            openvpn.add(f"Custom port: {self.openvpn.custom_port}")
        return node


@dataclass(frozen=True)
class Connection:
    """Dial-able tunnel endpoint."""

    ip: IPAddress
    port: int
    protocol: TransportProtocol

    def __post_init__(self) -> None:
        """Validate the endpoint port."""
        if not 1 <= self.port <= 65535:
            msg = f"port {self.port} out of range 1-65535"
            raise ValueError(msg)

    def __str__(self) -> str:
        """Return ip:port/protocol."""
        host = f"[{self.ip}]" if self.ip.version == 6 else str(self.ip)
        return f"{host}:{self.port}/{self.protocol.value}"


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON log lines to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Tag log records with a per-session correlation ID",
    )


class PortForwardConfig(BaseModel):
    """NAT-PMP port forwarding configuration."""

    enabled: bool = Field(default=False, description="Enable port forwarding")
    gateway: ipaddress.IPv4Address | None = Field(
        default=None,
        description="VPN gateway address speaking NAT-PMP",
    )
    lifetime: int = Field(
        default=60,
        ge=1,
        le=86400,
        description="Requested port mapping lifetime in seconds",
    )
    refresh_interval: float = Field(
        default=45.0,
        gt=0.0,
        description="Seconds between port mapping renewals",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=60.0,
        description="NAT-PMP request timeout in seconds",
    )

    @model_validator(mode="after")
    def refresh_before_expiry(self) -> PortForwardConfig:
        """Renewal must happen before the requested lifetime runs out."""
        if self.refresh_interval >= self.lifetime:
            msg = (
                f"refresh_interval ({self.refresh_interval}s) must be shorter "
                f"than lifetime ({self.lifetime}s)"
            )
            raise ValueError(msg)
        return self


class ProviderConfig(BaseModel):
    """VPN provider configuration."""

    name: str = Field(default="protonvpn", description="VPN provider name")
    selection: ServerSelection = Field(default_factory=ServerSelection)

    @field_validator("name")
    @classmethod
    def lowercase_name(cls, v: str) -> str:
        """Provider names are case-insensitive."""
        return v.strip().lower()


class Config(BaseModel):
    """Root configuration."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    port_forward: PortForwardConfig = Field(default_factory=PortForwardConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def to_tree(self) -> Tree:
        """Render the configuration as a Rich tree."""
        root = Tree("Settings summary:")

        provider = root.add(f"VPN provider: {self.provider.name}")
        provider.add(self.provider.selection.to_tree())

        pf = self.port_forward
        forwarding = root.add("Port forwarding:")
        forwarding.add(f"Enabled: {'yes' if pf.enabled else 'no'}")
        if pf.enabled:
            if pf.gateway is not None:
                forwarding.add(f"Gateway: {pf.gateway}")
            forwarding.add(f"Mapping lifetime: {pf.lifetime}s")
            forwarding.add(f"Refresh interval: {pf.refresh_interval:g}s")
            forwarding.add(f"Request timeout: {pf.request_timeout:g}s")

        obs = self.observability
        logging_node = root.add("Logging:")
        logging_node.add(f"Level: {obs.log_level.value}")
        if obs.log_file:
            logging_node.add(f"File: {obs.log_file}")
        return root
