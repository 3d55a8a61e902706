"""Configuration management for tunnelport.

Provides centralized configuration with TOML support and validation, loaded
hierarchically from defaults → config file → environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from tunnelport.models import Config
from tunnelport.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    "TUNNELPORT_VPN_SERVICE_PROVIDER": "provider.name",
    "TUNNELPORT_VPN_TYPE": "provider.selection.vpn",
    "TUNNELPORT_VPN_ENDPOINT_IP": "provider.selection.target_ip",
    "TUNNELPORT_VPN_ENDPOINT_PORT": "provider.selection.openvpn.custom_port",
    "TUNNELPORT_OPENVPN_PROTOCOL": "provider.selection.openvpn.tcp",
    "TUNNELPORT_SERVER_COUNTRIES": "provider.selection.countries",
    "TUNNELPORT_SERVER_REGIONS": "provider.selection.regions",
    "TUNNELPORT_SERVER_CITIES": "provider.selection.cities",
    "TUNNELPORT_ISP": "provider.selection.isps",
    "TUNNELPORT_SERVER_HOSTNAMES": "provider.selection.hostnames",
    "TUNNELPORT_SERVER_NAMES": "provider.selection.names",
    "TUNNELPORT_OWNED_ONLY": "provider.selection.owned_only",
    "TUNNELPORT_FREE_ONLY": "provider.selection.free_only",
    "TUNNELPORT_STREAM_ONLY": "provider.selection.stream_only",
    "TUNNELPORT_PORT_FORWARD_ONLY": "provider.selection.port_forward_only",
    "TUNNELPORT_VPN_PORT_FORWARDING": "port_forward.enabled",
    "TUNNELPORT_VPN_PORT_FORWARDING_GATEWAY": "port_forward.gateway",
    "TUNNELPORT_VPN_PORT_FORWARDING_LIFETIME": "port_forward.lifetime",
    "TUNNELPORT_VPN_PORT_FORWARDING_REFRESH": "port_forward.refresh_interval",
    "TUNNELPORT_VPN_PORT_FORWARDING_TIMEOUT": "port_forward.request_timeout",
    "TUNNELPORT_LOG_LEVEL": "observability.log_level",
    "TUNNELPORT_LOG_FILE": "observability.log_file",
    "TUNNELPORT_STRUCTURED_LOGGING": "observability.structured_logging",
}

# Deprecated variable names still read when the current one is unset,
# listed from most to least recent
RETRO_KEYS: dict[str, tuple[str, ...]] = {
    "TUNNELPORT_OPENVPN_PROTOCOL": ("TUNNELPORT_PROTOCOL",),
    "TUNNELPORT_VPN_ENDPOINT_IP": ("TUNNELPORT_OPENVPN_TARGET_IP",),
    "TUNNELPORT_VPN_ENDPOINT_PORT": ("TUNNELPORT_OPENVPN_PORT", "TUNNELPORT_PORT"),
    "TUNNELPORT_SERVER_COUNTRIES": ("TUNNELPORT_COUNTRY",),
    "TUNNELPORT_SERVER_REGIONS": ("TUNNELPORT_REGION",),
    "TUNNELPORT_SERVER_CITIES": ("TUNNELPORT_CITY",),
    "TUNNELPORT_VPN_PORT_FORWARDING": ("TUNNELPORT_PORT_FORWARDING",),
}

LIST_PATHS = frozenset(
    {
        "provider.selection.countries",
        "provider.selection.regions",
        "provider.selection.cities",
        "provider.selection.isps",
        "provider.selection.hostnames",
        "provider.selection.names",
    }
)

# Kept as strings so pydantic validates them
STRING_PATHS = frozenset(
    {
        "provider.name",
        "provider.selection.vpn",
        "provider.selection.target_ip",
        "port_forward.gateway",
        "observability.log_level",
        "observability.log_file",
    }
)


def _parse_env_value(raw: str, path: str) -> bool | int | float | str | list[str]:
    """Convert a raw environment value for the config ``path``."""
    if path in LIST_PATHS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if path in STRING_PATHS:
        return raw.strip()
    if path == "provider.selection.openvpn.tcp":
        protocol = raw.strip().lower()
        if protocol not in {"tcp", "udp"}:
            msg = f"OpenVPN protocol must be tcp or udp, got {raw!r}"
            raise ConfigurationError(msg)
        return protocol == "tcp"

    low = raw.strip().lower()
    if low in {"true", "1", "yes", "on"}:
        return True
    if low in {"false", "0", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(
        self,
        config_file: str | Path | None = None,
        environ: dict[str, str] | None = None,
    ):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for tunnelport.toml
            environ: Environment to read overrides from (defaults to os.environ)

        """
        self.environ = os.environ if environ is None else environ
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / "tunnelport.toml",
            Path.home() / ".config" / "tunnelport" / "tunnelport.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            if not self.config_file.exists():
                msg = f"Config file not found: {self.config_file}"
                raise ConfigurationError(msg)
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (toml.TomlDecodeError, OSError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _lookup_env(self, name: str) -> str | None:
        """Read ``name``, falling back to its deprecated aliases."""
        raw = self.environ.get(name)
        if raw is not None:
            return raw
        for retro_key in RETRO_KEYS.get(name, ()):
            raw = self.environ.get(retro_key)
            if raw is not None:
                logger.warning(
                    "You are using the old environment variable %s, "
                    "please consider changing it to %s",
                    retro_key,
                    name,
                )
                return raw
        return None

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = self._lookup_env(env_name)
            if raw is None or raw == "":
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))
        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export the current configuration as TOML."""
        return toml.dumps(self.config.model_dump(mode="json", exclude_none=True))

