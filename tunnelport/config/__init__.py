"""Configuration management.

This module handles configuration loading and validation.
"""

from __future__ import annotations

from tunnelport.config.config import ConfigManager
from tunnelport.models import Config

__all__ = ["Config", "ConfigManager"]
