"""
Configuration management commands for the Learning Companion CLI.

Provides Click-based commands for inspecting and saving configuration.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import click
import yaml

from ..core.config import Config
from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def resolve_config(config_path: Optional[str]) -> Config:
    """Config from a YAML file when given, otherwise from ``LC_*`` variables."""
    if config_path:
        return Config.from_file(Path(config_path))
    return Config.from_env()


@click.group()
def config_commands() -> None:
    """Configuration management commands."""
    pass


@config_commands.command()
@click.option(
    "--format",
    type=click.Choice(["json", "yaml", "table"]),
    default="table",
    help="Output format",
)
@click.option("--section", help="Show specific configuration section")
@click.pass_context
def show(ctx: click.Context, format: str, section: Optional[str]) -> None:
    """Show current configuration."""
    try:
        data = resolve_config(ctx.obj.get("config_path")).to_dict()
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        raise click.Abort()

    if section:
        if section not in data or not isinstance(data[section], dict):
            click.echo(f"Unknown section: {section}", err=True)
            raise click.Abort()
        data = {section: data[section]}

    if format == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif format == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    else:
        click.echo("Learning Companion Configuration")
        click.echo("=" * 50)
        for name, values in data.items():
            if isinstance(values, dict):
                click.echo(f"\n{name.title()}:")
                for key, value in values.items():
                    click.echo(f"  {key}: {value}")
            else:
                click.echo(f"{name}: {values}")


@config_commands.command()
@click.argument("file_path")
@click.pass_context
def save(ctx: click.Context, file_path: str) -> None:
    """Save current configuration to a YAML file."""
    try:
        config = resolve_config(ctx.obj.get("config_path"))
        config.save(Path(file_path))
    except (ConfigurationError, OSError) as e:
        click.echo(f"Error saving configuration: {e}", err=True)
        raise click.Abort()
    click.echo(f"Configuration saved to {file_path}")
