"""CLI commands for NAT-PMP port forwarding."""

from __future__ import annotations

import asyncio
import contextlib
import signal

import click
from rich.console import Console

from tunnelport.cli.main import get_config
from tunnelport.nat.natpmp import NATPMPClient
from tunnelport.provider import get_provider
from tunnelport.utils.exceptions import TunnelPortError
from tunnelport.utils.logging_config import set_correlation_id


def _gateway_or_configured(ctx: click.Context, gateway: str | None) -> str:
    if gateway:
        return gateway
    configured = get_config(ctx).port_forward.gateway
    if configured is None:
        msg = "No gateway given and port_forward.gateway is not configured"
        raise click.UsageError(msg)
    return str(configured)


@click.command("forward")
@click.argument("gateway", required=False)
@click.option("--provider", "provider_name", help="VPN provider name")
@click.pass_context
def forward(ctx, gateway, provider_name) -> None:
    """Forward a port through the VPN GATEWAY and keep it renewed."""
    config = get_config(ctx)
    gateway = _gateway_or_configured(ctx, gateway)
    console = Console()

    async def _forward() -> None:
        set_correlation_id()
        provider = get_provider(
            provider_name or config.provider.name,
            [],
            port_forward_config=config.port_forward,
        )
        port = await provider.port_forward(gateway)
        console.print(f"[green]Forwarded port:[/green] {port}")

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is unavailable on Windows event loops
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)

        def _port_changed(old_port: int, new_port: int) -> None:
            console.print(
                f"[yellow]Forwarded port changed:[/yellow] {old_port} -> {new_port}"
            )

        await provider.keep_port_forward(port, gateway, stop_event, _port_changed)
        console.print("[dim]Port forwarding stopped[/dim]")

    try:
        asyncio.run(_forward())
    except TunnelPortError as e:
        raise click.ClickException(str(e)) from e


@click.command("external-ip")
@click.argument("gateway", required=False)
@click.pass_context
def external_ip(ctx, gateway) -> None:
    """Show the external IPv4 address of the VPN GATEWAY."""
    config = get_config(ctx)
    gateway = _gateway_or_configured(ctx, gateway)
    console = Console()
    client = NATPMPClient(timeout=config.port_forward.request_timeout)

    try:
        epoch, address = asyncio.run(client.external_address(gateway))
    except TunnelPortError as e:
        raise click.ClickException(str(e)) from e

    console.print(f"[green]External IP:[/green] {address}")
    console.print(f"[dim]Gateway epoch: {epoch}s[/dim]")
