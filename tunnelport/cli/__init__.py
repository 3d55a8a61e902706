"""Command line interface for tunnelport."""

from __future__ import annotations

from tunnelport.cli.main import cli, main

__all__ = ["cli", "main"]
