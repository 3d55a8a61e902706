"""Main CLI entry point for tunnelport."""

from __future__ import annotations

import click
from rich.console import Console

from tunnelport.config.config import ConfigManager
from tunnelport.models import Config, LogLevel
from tunnelport.utils.exceptions import ConfigurationError
from tunnelport.utils.logging_config import setup_logging


def get_config(ctx: click.Context) -> Config:
    """Return the configuration for this invocation, loading it once."""
    obj = ctx.ensure_object(dict)
    config = obj.get("config")
    if config is None:
        try:
            config = ConfigManager(obj.get("config_file")).config
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        if obj.get("verbose"):
            config = config.model_copy(
                update={
                    "observability": config.observability.model_copy(
                        update={"log_level": LogLevel.DEBUG}
                    )
                }
            )
        setup_logging(config.observability)
        obj["config"] = config
    return config


@click.group()
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_file, verbose) -> None:
    """tunnelport - VPN endpoint selection and port forwarding."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["verbose"] = verbose


@cli.group("config")
def config_group() -> None:
    """Inspect configuration."""


@config_group.command("show")
@click.pass_context
def config_show(ctx) -> None:
    """Show the effective settings."""
    Console().print(get_config(ctx).to_tree())


def _register_commands() -> None:
    from tunnelport.cli.forward_commands import external_ip, forward

    cli.add_command(forward)
    cli.add_command(external_ip)


_register_commands()


def main() -> None:
    """Run the CLI."""
    cli(obj={})
