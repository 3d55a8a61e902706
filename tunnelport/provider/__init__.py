"""VPN providers.

Each provider resolves tunnel endpoints from the server catalog and, where
supported, forwards a port through the VPN gateway.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from tunnelport.models import Server
from tunnelport.provider.base import Provider
from tunnelport.provider.protonvpn import ProtonVPN
from tunnelport.provider.torguard import Torguard
from tunnelport.utils.exceptions import ProviderNotFoundError

PROVIDERS: dict[str, type[Provider]] = {
    ProtonVPN.name: ProtonVPN,
    Torguard.name: Torguard,
}


def get_provider(name: str, servers: Sequence[Server], **kwargs: Any) -> Provider:
    """Create the provider registered under ``name``.

    Raises:
        ProviderNotFoundError: If no provider has that name

    """
    try:
        provider_class = PROVIDERS[name.strip().lower()]
    except KeyError:
        msg = f"unknown VPN provider: {name}"
        raise ProviderNotFoundError(msg, {"known": sorted(PROVIDERS)}) from None
    return provider_class(servers, **kwargs)


__all__ = ["PROVIDERS", "ProtonVPN", "Provider", "Torguard", "get_provider"]
