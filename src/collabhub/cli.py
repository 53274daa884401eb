"""Command-line interface for collabhub.

A small Click-based CLI around the coordination core: inspect the default
agent roster, check that the core initializes, and manage configuration
files.

Examples
--------
$ collabhub agents              # list the configured default agents
$ collabhub check               # initialize the core and print stage status
$ collabhub config show         # print the effective configuration
$ collabhub config init .collabhub/config.yaml
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import rich.traceback
import yaml
from dotenv import load_dotenv
from rich.logging import RichHandler

from collabhub.runtime.orchestrator import MasterOrchestrator
from collabhub.utils.config_manager import (
    ConfigurationError,
    create_default_config_file,
    get_config_manager,
)
from collabhub.utils.exceptions import InitializationError
from collabhub.utils.logger_setup import setup_logging

logger = logging.getLogger(__name__)

_LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


# ---------------------------------------------------------------------------
# Root Click group
# ---------------------------------------------------------------------------

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity",
    show_default=True,
)
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory holding .collabhub/config.yaml",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, project_dir: Path) -> None:
    """collabhub coordination core command-line interface."""
    load_dotenv()
    rich.traceback.install(show_locals=False)

    manager = get_config_manager()
    try:
        if project_dir is not None:
            manager.set_project_root(project_dir)
        config = manager.get_config()
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level=log_level,
        log_config=config.logging,
        console_handler=RichHandler(rich_tracebacks=True, show_path=False),
    )
    ctx.obj = {"config": config, "log_level": log_level}
    logger.debug(f"CLI context initialized (project_dir={project_dir})")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Emit the roster as JSON")
@click.pass_context
def agents(ctx: click.Context, as_json: bool) -> None:
    """List the default agent roster."""
    profiles = ctx.obj["config"].registry.default_agents
    if as_json:
        click.echo(json.dumps([p.model_dump(mode="json") for p in profiles], indent=2))
        return
    if not profiles:
        click.echo("(no default agents configured)")
        return
    for profile in profiles:
        click.echo(f"• {profile.name}")
        click.echo(f"    capabilities: {', '.join(profile.capabilities) or '-'}")
        if profile.expertise:
            click.echo(f"    expertise: {', '.join(profile.expertise)}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Emit the status report as JSON")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Initialize the coordination core and report per-stage readiness."""

    async def _run() -> dict:
        orchestrator = MasterOrchestrator(config=ctx.obj["config"])
        try:
            await orchestrator.initialize()
            return orchestrator.status()
        except InitializationError as e:
            report = orchestrator.status()
            report["error"] = e.to_dict()
            return report
        finally:
            await orchestrator.shutdown()

    report = asyncio.run(_run())
    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        for stage, ready in report["stages"].items():
            click.echo(f"{'✓' if ready else '✗'} {stage}")
        if report.get("error"):
            click.echo(f"Initialization failed: {report['error']['message']}", err=True)
        else:
            click.echo(f"Coordination core ready with {report['agents']} agents")
    if report.get("error"):
        sys.exit(1)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command()
@click.option("--format", "output_format", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
@click.pass_context
def show(ctx: click.Context, output_format: str) -> None:
    """Show the effective configuration."""
    data = ctx.obj["config"].model_dump(mode="json")
    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


@config.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(path: Path, force: bool) -> None:
    """Write a default configuration file to PATH."""
    if path.exists() and not force:
        click.echo(f"Error: {path} already exists (use --force to overwrite)", err=True)
        sys.exit(1)
    try:
        create_default_config_file(path)
    except ConfigurationError as e:
        click.echo(f"Error writing configuration: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Wrote default configuration to {path}")


@config.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the effective configuration."""
    cfg = ctx.obj["config"]
    click.echo("✓ Configuration is valid")
    if cfg.collaboration.session_timeout_seconds is None:
        click.echo("⚠️  Warning: No session timeout configured; stale proposals are never abandoned.")
    if not cfg.registry.bootstrap_default_agents:
        click.echo("⚠️  Warning: Default agents are not bootstrapped; register agents before initializing.")


if __name__ == "__main__":
    cli()
