"""Repository administration CLI commands.

This module provides commands for registering repositories, configuring
the branches that trigger deployments and removing repositories.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from deploybot.database.models.repository import BranchConfig, GitProvider
from deploybot.database.queries.repository import (
    DuplicateRepositoryError,
    RepositoryNotFoundError,
    create_repository,
    deactivate_repository,
    delete_repository,
    list_repositories,
    remove_branch_config,
    upsert_branch_config,
)

app = typer.Typer(help="Repository management commands")
console = Console()


def _parse_provider(value: str) -> GitProvider:
    try:
        return GitProvider(value.upper())
    except ValueError:
        console.print(f"[red]Invalid provider:[/red] {value}. Valid values: github, gitlab")
        raise typer.Exit(code=1)


@app.command()
def add(
    name: Annotated[str, typer.Argument(help="Repository display name")],
    git_url: Annotated[str, typer.Argument(help="Clone URL of the repository")],
    provider: Annotated[
        str,
        typer.Option("--provider", "-p", help="Git provider (github or gitlab)"),
    ] = "github",
    webhook_secret: Annotated[
        Optional[str],
        typer.Option("--webhook-secret", help="Secret used to verify this repository's webhooks"),
    ] = None,
) -> None:
    """Register a repository to monitor."""
    from deploybot.main import get_app_context

    ctx = get_app_context()
    git_provider = _parse_provider(provider)

    async def _add():
        try:
            async with ctx.session_factory() as session:
                return await create_repository(
                    session,
                    name=name,
                    git_url=git_url,
                    provider=git_provider,
                    webhook_secret=webhook_secret,
                )
        finally:
            await ctx.engine.dispose()

    try:
        repository = asyncio.run(_add())
    except (DuplicateRepositoryError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[green]Repository registered.[/green]\n\n"
            f"[bold]ID:[/bold] {repository.id}\n"
            f"[bold]Name:[/bold] {repository.name}\n"
            f"[bold]URL:[/bold] {repository.git_url}\n"
            f"[bold]Provider:[/bold] {repository.provider.value}\n\n"
            f"Next: [cyan]deploybot repo branch {repository.name} <branch> --channel <id>[/cyan]",
            title="Repository Added",
            border_style="green",
        )
    )


@app.command("list")
def list_repos(
    include_inactive: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include removed (inactive) repositories"),
    ] = False,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List monitored repositories and their branches."""
    from deploybot.main import get_app_context

    ctx = get_app_context()

    async def _list():
        try:
            async with ctx.session_factory() as session:
                return await list_repositories(session, include_inactive=include_inactive)
        finally:
            await ctx.engine.dispose()

    try:
        repositories = asyncio.run(_list())
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": str(r.id),
                "name": r.name,
                "git_url": r.git_url,
                "provider": r.provider.value,
                "is_active": r.is_active,
                "branches": [b.model_dump(by_alias=True) for b in r.branches],
            }
            for r in repositories
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not repositories:
        console.print("[yellow]No repositories configured[/yellow]")
        return

    table = Table(title="Repositories")
    table.add_column("Name", style="bold")
    table.add_column("Provider", style="magenta")
    table.add_column("URL", style="cyan")
    table.add_column("Branches")
    table.add_column("Active")

    for r in repositories:
        branches = "\n".join(
            f"{b.branch} -> {b.environment_label} (#{b.discord_channel_id})" for b in r.branches
        )
        table.add_row(
            r.name,
            r.provider.value,
            r.git_url,
            branches or "[dim]none[/dim]",
            "[green]yes[/green]" if r.is_active else "[dim]no[/dim]",
        )

    console.print(table)


@app.command()
def remove(
    name: Annotated[str, typer.Argument(help="Repository display name")],
    purge: Annotated[
        bool,
        typer.Option("--purge", help="Delete the repository and its deployment history"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Stop monitoring a repository.

    By default the repository is deactivated and its deployment history is
    kept. With --purge it is deleted together with all its deployments.
    """
    from deploybot.main import get_app_context

    ctx = get_app_context()

    if purge and not yes:
        typer.confirm(
            f"Delete {name} and all of its deployment history?",
            abort=True,
        )

    async def _remove():
        try:
            async with ctx.session_factory() as session:
                if purge:
                    return await delete_repository(session, name)
                await deactivate_repository(session, name)
                return None
        finally:
            await ctx.engine.dispose()

    try:
        deleted = asyncio.run(_remove())
    except RepositoryNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    if purge:
        console.print(f"[green]Deleted[/green] {name} and {deleted} deployment(s)")
    else:
        console.print(f"[green]Deactivated[/green] {name}")


@app.command()
def branch(
    name: Annotated[str, typer.Argument(help="Repository display name")],
    branch_name: Annotated[str, typer.Argument(help="Branch to deploy on push")],
    channel: Annotated[
        str,
        typer.Option("--channel", help="Discord channel ID for deployment notices"),
    ],
    build_command: Annotated[
        Optional[str],
        typer.Option("--build", help="Build command"),
    ] = None,
    deploy_command: Annotated[
        Optional[str],
        typer.Option("--deploy", help="Deploy command"),
    ] = None,
    environment: Annotated[
        Optional[str],
        typer.Option("--environment", "-e", help="Environment label (default: branch name)"),
    ] = None,
    pr_channel: Annotated[
        Optional[str],
        typer.Option("--pr-channel", help="Discord channel ID for pull request notices"),
    ] = None,
) -> None:
    """Configure (or reconfigure) a branch of a repository."""
    from deploybot.main import get_app_context

    ctx = get_app_context()

    try:
        config = BranchConfig(
            branch=branch_name,
            discord_channel_id=channel,
            pr_channel_id=pr_channel,
            build_command=build_command,
            deploy_command=deploy_command,
            environment=environment,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid branch configuration:[/red] {e}")
        raise typer.Exit(code=1)

    async def _configure():
        try:
            async with ctx.session_factory() as session:
                return await upsert_branch_config(session, name, config)
        finally:
            await ctx.engine.dispose()

    try:
        asyncio.run(_configure())
    except RepositoryNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[bold]Branch:[/bold] {config.branch}\n"
            f"[bold]Environment:[/bold] {config.environment_label}\n"
            f"[bold]Channel:[/bold] {config.discord_channel_id}\n"
            f"[bold]Build:[/bold] {config.build_command or '-'}\n"
            f"[bold]Deploy:[/bold] {config.deploy_command or '-'}",
            title=f"{name}: branch configured",
            border_style="green",
        )
    )


@app.command()
def unbranch(
    name: Annotated[str, typer.Argument(help="Repository display name")],
    branch_name: Annotated[str, typer.Argument(help="Branch to stop deploying")],
) -> None:
    """Stop deploying a branch of a repository."""
    from deploybot.main import get_app_context

    ctx = get_app_context()

    async def _unbranch():
        try:
            async with ctx.session_factory() as session:
                return await remove_branch_config(session, name, branch_name)
        finally:
            await ctx.engine.dispose()

    try:
        removed = asyncio.run(_unbranch())
    except RepositoryNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    if removed:
        console.print(f"[green]Branch {branch_name} removed from {name}[/green]")
    else:
        console.print(f"[yellow]Branch {branch_name} was not configured for {name}[/yellow]")
