"""Actors command - Roster and HR actions."""

import typer
from rich.console import Console
from rich.table import Table

from workforce.api.cli.runtime import run_with_workforce
from workforce.application.factory import Workforce
from workforce.core.domain.errors import ValidationError

app = typer.Typer(help="Actor roster and HR actions")
console = Console()


@app.command("list")
def list_actors(ctx: typer.Context):
    """List all actors with tier, status and mailbox state."""

    async def action(workforce: Workforce):
        return [
            (actor, workforce.usage.get_usage(actor.id))
            for actor in workforce.roster.all()
        ]

    rows = run_with_workforce(ctx, action)

    table = Table(title="Actors")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Role", style="white")
    table.add_column("Tier", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Tokens", justify="right")

    for actor, usage in rows:
        status_style = "green" if actor.is_available else "red"
        table.add_row(
            actor.id,
            actor.name,
            actor.role,
            actor.tier.value,
            f"[{status_style}]{actor.status.value}[/{status_style}]",
            str(usage["prompt_tokens"] + usage["completion_tokens"]),
        )

    console.print(table)


def _change_status(ctx: typer.Context, actor_id: str, change: str) -> None:
    async def action(workforce: Workforce):
        if change == "terminate":
            return workforce.communication.terminate_actor(actor_id)
        try:
            if change == "suspend":
                workforce.roster.suspend(actor_id)
            else:
                workforce.roster.resume(actor_id)
        except ValidationError as e:
            return e.to_result()
        return {"success": True, "actor_id": actor_id}

    result = run_with_workforce(ctx, action)
    if not result.get("success"):
        console.print(f"[red]{result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{actor_id}: {change} done[/green]")


@app.command("suspend")
def suspend(ctx: typer.Context, actor_id: str = typer.Argument(..., help="Actor ID")):
    """Suspend an actor (no messages, tasks or tools)."""
    _change_status(ctx, actor_id, "suspend")


@app.command("resume")
def resume(ctx: typer.Context, actor_id: str = typer.Argument(..., help="Actor ID")):
    """Reinstate a suspended actor."""
    _change_status(ctx, actor_id, "resume")


@app.command("terminate")
def terminate(ctx: typer.Context, actor_id: str = typer.Argument(..., help="Actor ID")):
    """Terminate an actor and drop its queued calls."""
    _change_status(ctx, actor_id, "terminate")
