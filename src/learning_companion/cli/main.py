"""
Main CLI entry point for the Learning Companion.

Provides the ``learning-companion`` command with subcommands to serve the
HTTP API, chat from the terminal and inspect usage and configuration.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import click

from ..core.config import Config
from ..core.exceptions import ConfigurationError, LearningCompanionError
from ..core.logging import configure_logging
from ..services import TutorService
from .config import config_commands, resolve_config

logger = logging.getLogger(__name__)


def _load(ctx: click.Context) -> Config:
    try:
        return resolve_config(ctx.obj.get("config_path"))
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        raise click.Abort()


@click.group()
@click.version_option(version="1.0.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="YAML configuration file (defaults to LC_* environment variables)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool, debug: bool) -> None:
    """
    Learning Companion CLI

    A cost-aware AI tutoring backend for young learners, with session
    tracking, learner memory and offline fallbacks.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = "WARNING"
    configure_logging(level=level, json_format=False)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--host", help="Bind address (defaults to api.host)")
@click.option("--port", type=int, help="Port (defaults to api.port)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Serve the tutoring HTTP API."""
    import uvicorn

    from ..web.tutor_api import create_app

    config = _load(ctx)
    configure_logging(config.monitoring.log_level, config.monitoring.json_logs)
    app = create_app(TutorService(config))

    host = host or config.api.host
    port = port or config.api.port
    click.echo(f"Serving Learning Companion API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=config.monitoring.log_level.lower())


async def _chat(service: TutorService, user_id: str, module: str) -> None:
    await service.initialize()
    try:
        started = await service.start_session(user_id, module)
        click.echo(started.greeting)
        click.echo("(type 'quit' to finish)")

        while True:
            text = click.prompt("you", prompt_suffix="> ", default="", show_default=False)
            if text.strip().lower() in ("quit", "exit"):
                break
            if not text.strip():
                continue

            result = await service.send_message(started.session_id, text)
            for earlier in result.replayed:
                click.echo(f"tutor (earlier question)> {earlier}")
            click.echo(f"tutor> {result.reply}")
            if result.xp_delta:
                click.echo(f"  +{result.xp_delta} XP")

        summary = await service.end_session(started.session_id)
        click.echo(f"Session over: {summary.total_xp} XP in {summary.message_count} messages")
        for insight in summary.key_insights:
            click.echo(f"  - {insight}")
    finally:
        await service.shutdown()


@cli.command()
@click.option("--user", "user_id", default="learner", help="Learner identifier")
@click.option("--module", default="general", help="Learning module")
@click.pass_context
def chat(ctx: click.Context, user_id: str, module: str) -> None:
    """Chat with the tutor from the terminal."""
    service = TutorService(_load(ctx), run_background_jobs=False)
    try:
        asyncio.run(_chat(service, user_id, module))
    except LearningCompanionError as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()


async def _usage(service: TutorService) -> Dict[str, Any]:
    await service.initialize()
    try:
        return service.get_usage()
    finally:
        await service.shutdown()


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def usage(ctx: click.Context, as_json: bool) -> None:
    """Show token usage, cost and cache effectiveness."""
    analytics = asyncio.run(_usage(TutorService(_load(ctx), run_background_jobs=False)))

    if as_json:
        click.echo(json.dumps(analytics, indent=2, default=str))
        return

    click.echo("Learning Companion Usage")
    click.echo("=" * 50)
    for period in ("today", "week", "month"):
        stats = analytics[period]
        click.echo(
            f"{period.title():<6} tokens={stats['tokens']:<8} cost=${stats['cost']:.4f} "
            f"sessions={stats['sessions']} cache_hit_rate={stats['cache_hit_rate']:.0%}"
        )
    cache = analytics["cache"]
    click.echo(f"Cache: {cache['cached_items']} entries, {cache['tokens_saved']} tokens saved")
    for module, stats in analytics["by_module"].items():
        click.echo(f"  {module}: {stats['tokens']} tokens, ${stats['cost']:.4f}")


cli.add_command(config_commands, name="config")


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
