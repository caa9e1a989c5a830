"""Main CLI entry point for Deploybot.

This module provides the main Typer application with sub-commands for
repository administration, deployment history and the webhook server.

Usage:
    deploybot serve
    deploybot repo add api https://github.com/acme/api.git --provider github
    deploybot repo branch api main --channel 123456789 --deploy "./deploy.sh"
    deploybot deployment list --repo api
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from deploybot.cli import deployment as deployment_cli
from deploybot.cli import repo as repo_cli
from deploybot.config import DeploybotConfig, load_config
from deploybot.database.connection import get_engine, get_session_factory
from deploybot.logging import setup_logging

app = typer.Typer(
    name="deploybot",
    help="Deploybot: webhook-driven deployments with chat notifications",
    no_args_is_help=True,
)

app.add_typer(repo_cli.app, name="repo", help="Manage monitored repositories")
app.add_typer(deployment_cli.app, name="deployment", help="Inspect deployments")

console = Console()


class AppContext:
    """Configuration and database handles of one CLI invocation.

    Built by the top-level callback before any sub-command runs. Each
    sub-command disposes of ``engine`` once its ``asyncio.run`` finishes.
    """

    def __init__(self, config: DeploybotConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)


_context: AppContext | None = None


def get_app_context() -> AppContext:
    if _context is None:
        raise RuntimeError("deploybot CLI context is missing; the main callback has not run")
    return _context


def initialize_context(config: DeploybotConfig) -> AppContext:
    """Build the CLI context for ``config`` and make it current."""
    global _context
    _context = AppContext(config)
    return _context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: web.host)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: web.port)"),
    ] = None,
) -> None:
    """Start the webhook server."""
    import uvicorn

    from deploybot.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Deploybot[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print(f"[dim]Deployments:[/dim] {config.pipeline.deploy_base_path}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level=config.logging.level.lower(),
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="TOML settings file (default: ./deploybot.toml or ~/.config/deploybot/config.toml)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level"),
    ] = False,
) -> None:
    """Read settings, set up logging and prepare the database handles."""
    try:
        config = load_config(config_path)
    except (ValidationError, ValueError, OSError) as e:
        console.print(f"[red]Cannot load settings:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging = config.logging.model_copy(update={"level": "DEBUG"})
    setup_logging(config.logging)

    initialize_context(config)


if __name__ == "__main__":
    app()
