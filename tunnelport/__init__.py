"""tunnelport - VPN endpoint resolution and NAT-PMP port forwarding."""

from __future__ import annotations

__version__ = "0.1.0"
