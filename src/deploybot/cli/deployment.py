"""Deployment history CLI commands."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from deploybot.database.models.deployment import DeploymentStatus
from deploybot.database.queries.deployment import get_deployment, list_deployments
from deploybot.database.queries.repository import get_repository_by_name

app = typer.Typer(help="Deployment history commands")
console = Console()

_STATUS_COLORS = {
    DeploymentStatus.PENDING: "dim",
    DeploymentStatus.BUILDING: "yellow",
    DeploymentStatus.DEPLOYING: "blue",
    DeploymentStatus.SUCCESS: "green",
    DeploymentStatus.FAILED: "red",
}


def _colored(status: DeploymentStatus) -> str:
    color = _STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


@app.command("list")
def list_history(
    repo: Annotated[
        Optional[str],
        typer.Option("--repo", "-r", help="Only deployments of this repository"),
    ] = None,
    branch: Annotated[
        Optional[str],
        typer.Option("--branch", "-b", help="Only deployments of this branch"),
    ] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Filter by status (PENDING, BUILDING, ...)"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 20,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List recent deployments, newest first."""
    from deploybot.main import get_app_context

    ctx = get_app_context()

    status_filter = None
    if status is not None:
        try:
            status_filter = DeploymentStatus(status.upper())
        except ValueError:
            valid = ", ".join(s.value for s in DeploymentStatus)
            console.print(f"[red]Invalid status:[/red] {status}. Valid values: {valid}")
            raise typer.Exit(code=1)

    async def _list():
        try:
            async with ctx.session_factory() as session:
                repository_id = None
                if repo is not None:
                    repository = await get_repository_by_name(session, repo)
                    if repository is None:
                        return None
                    repository_id = repository.id
                return await list_deployments(
                    session,
                    repository_id=repository_id,
                    branch=branch,
                    status_filter=status_filter,
                    limit=limit,
                )
        finally:
            await ctx.engine.dispose()

    try:
        deployments = asyncio.run(_list())
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    if deployments is None:
        console.print(f"[red]Error:[/red] Repository \"{repo}\" not found")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": str(d.id),
                "repository": d.repository.name,
                "branch": d.branch,
                "commit": d.commit_sha,
                "author": d.author,
                "status": d.status.value,
                "created_at": d.created_at.isoformat(),
                "completed_at": d.completed_at.isoformat() if d.completed_at else None,
            }
            for d in deployments
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not deployments:
        console.print("[yellow]No deployments found[/yellow]")
        return

    table = Table(title="Deployments")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Repository", style="bold")
    table.add_column("Branch")
    table.add_column("Commit", style="dim")
    table.add_column("Status")
    table.add_column("Started", style="dim")

    for d in deployments:
        table.add_row(
            str(d.id),
            d.repository.name,
            d.branch,
            d.commit_sha[:7],
            _colored(d.status),
            d.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def show(
    deployment_id: Annotated[str, typer.Argument(help="Deployment ID")],
) -> None:
    """Show a deployment with its build and deploy logs."""
    from deploybot.main import get_app_context

    ctx = get_app_context()

    try:
        uuid = UUID(deployment_id)
    except ValueError:
        console.print(f"[red]Invalid deployment ID:[/red] {deployment_id}")
        raise typer.Exit(code=1)

    async def _show():
        try:
            async with ctx.session_factory() as session:
                return await get_deployment(session, uuid)
        finally:
            await ctx.engine.dispose()

    try:
        deployment = asyncio.run(_show())
    except SQLAlchemyError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(code=1)

    if deployment is None:
        console.print(f"[red]Deployment {deployment_id} not found[/red]")
        raise typer.Exit(code=1)

    completed = deployment.completed_at.strftime("%Y-%m-%d %H:%M:%S") if deployment.completed_at else "-"
    console.print(
        Panel(
            f"[bold]Repository:[/bold] {deployment.repository.name}\n"
            f"[bold]Branch:[/bold] {deployment.branch}\n"
            f"[bold]Commit:[/bold] {deployment.commit_sha}\n"
            f"[bold]Author:[/bold] {deployment.author or '-'}\n"
            f"[bold]Message:[/bold] {deployment.commit_message or '-'}\n"
            f"[bold]Status:[/bold] {_colored(deployment.status)}\n"
            f"[bold]Started:[/bold] {deployment.created_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"[bold]Completed:[/bold] {completed}",
            title=f"Deployment {deployment.id}",
            border_style="red" if deployment.status is DeploymentStatus.FAILED else "cyan",
        )
    )

    if deployment.error:
        console.print(Panel(deployment.error, title="Error", border_style="red"))
    if deployment.build_log:
        console.print(Panel(deployment.build_log, title="Build log", border_style="dim"))
    if deployment.deploy_log:
        console.print(Panel(deployment.deploy_log, title="Deploy log", border_style="dim"))
