"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from tunnelport.utils.exceptions import (
    ConfigurationError,
    NoServerFoundError,
    SelectionError,
    TargetIPNotFoundError,
    TunnelPortError,
)
from tunnelport.utils.logging_config import setup_logging
from tunnelport.utils.tasks import PeriodicTask, TaskState
from tunnelport.utils.time import Clock

__all__ = [
    "Clock",
    "ConfigurationError",
    "NoServerFoundError",
    "PeriodicTask",
    "SelectionError",
    "TargetIPNotFoundError",
    "TaskState",
    "TunnelPortError",
    "setup_logging",
]
