"""Exception hierarchy for tunnelport.

Provides the exception hierarchy shared by endpoint resolution, port
forwarding and configuration loading.
"""

from __future__ import annotations

from typing import Any


class TunnelPortError(Exception):
    """Base exception for all tunnelport errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize tunnelport error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class SelectionError(TunnelPortError):
    """No usable endpoint for the requested server selection."""


class NoServerFoundError(SelectionError):
    """No server in the catalog matches the selection filters."""


class TargetIPNotFoundError(SelectionError):
    """The pinned target IP is not among the candidate connections."""


class ProviderNotFoundError(TunnelPortError):
    """Unknown VPN provider name."""


class PortForwardNotSupportedError(TunnelPortError):
    """The VPN provider does not offer port forwarding."""


class ValidationError(TunnelPortError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""
