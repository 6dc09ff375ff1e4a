"""Tasks command - Delegated task management."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from workforce.api.cli.runtime import run_with_workforce
from workforce.application.factory import Workforce
from workforce.core.domain.models import SYSTEM_ACTOR

app = typer.Typer(help="Delegated tasks")
console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "in_progress": "blue",
    "awaiting_plan_approval": "magenta",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    actor: Optional[str] = typer.Option(None, "--actor", "-a", help="Only tasks involving this actor"),
    task_type: str = typer.Option("all", "--type", help="assigned, received or all"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
):
    """List delegated tasks, newest first."""

    async def action(workforce: Workforce):
        return [
            (task, workforce.delegation.get_review(task.id))
            for task in workforce.delegation.get_tasks(actor, task_type=task_type, status=status)
        ]

    rows = run_with_workforce(ctx, action)

    table = Table(title="Delegated Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("From → To", style="white")
    table.add_column("P", justify="right")
    table.add_column("Status")
    table.add_column("Review")
    table.add_column("Description", style="white", overflow="fold")

    for task, review in rows:
        style = STATUS_STYLES.get(task.status.value, "white")
        table.add_row(
            task.id,
            f"{task.from_actor} → {task.to_actor}",
            str(task.priority),
            f"[{style}]{task.status.value}[/{style}]",
            review.outcome.value if review else "",
            task.description[:80],
        )

    console.print(table)


@app.command("show")
def show_task(ctx: typer.Context, task_id: str = typer.Argument(..., help="Task ID")):
    """Show one task with its discussion and review."""

    async def action(workforce: Workforce):
        task = workforce.delegation.get_task(task_id)
        review = workforce.delegation.get_review(task_id)
        return task, review

    task, review = run_with_workforce(ctx, action)
    if task is None:
        console.print(f"[red]Task '{task_id}' not found[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Task:[/bold] {task.id}")
    console.print(f"[bold]Status:[/bold] {task.status.value}")
    console.print_json(data=task.to_dict())
    if review is not None:
        console.print("[bold]Review:[/bold]")
        console.print_json(data=review.to_dict())


@app.command("delegate")
def delegate(
    ctx: typer.Context,
    from_actor: str = typer.Argument(..., help="Delegator ID"),
    to_actor: str = typer.Argument(..., help="Assignee ID"),
    description: str = typer.Argument(..., help="Task description"),
    priority: int = typer.Option(3, "--priority", help="1 (highest) to 5"),
    plan: bool = typer.Option(False, "--plan", help="Require an approved dev plan first"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the first phase to finish"),
):
    """Delegate a task and (by default) wait for its first phase."""

    async def action(workforce: Workforce):
        return await workforce.delegation.delegate(
            from_actor,
            to_actor,
            description,
            priority=priority,
            plan_approval_required=plan,
            wait_for_result=wait,
        )

    result = run_with_workforce(ctx, action)
    if not result.get("success"):
        console.print(f"[red]{result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Task {result['task_id']}: {result['status']}[/green]")
    if result.get("result"):
        console.print(result["result"])


@app.command("cancel")
def cancel(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    reason: str = typer.Option("", "--reason", "-r", help="Cancellation reason"),
):
    """Cancel a task as the boss."""

    async def action(workforce: Workforce):
        return await workforce.delegation.cancel_task(task_id, SYSTEM_ACTOR, reason=reason)

    result = run_with_workforce(ctx, action)
    if not result.get("success"):
        console.print(f"[red]{result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Task {task_id} cancelled[/green]")


@app.command("clear-stale")
def clear_stale(
    ctx: typer.Context,
    days: float = typer.Option(1.0, "--days", "-d", help="Maximum age of open tasks"),
    actor: Optional[str] = typer.Option(None, "--actor", "-a", help="Only tasks involving this actor"),
):
    """Cancel open tasks older than the given age."""

    async def action(workforce: Workforce):
        return await workforce.delegation.clear_stale_tasks(max_age_days=days, actor_id=actor)

    count = run_with_workforce(ctx, action)
    console.print(f"[green]{count} stale task(s) cancelled[/green]")


@app.command("clear-completed")
def clear_completed(
    ctx: typer.Context,
    actor: Optional[str] = typer.Option(None, "--actor", "-a", help="Only tasks involving this actor"),
):
    """Remove finished tasks."""

    async def action(workforce: Workforce):
        return workforce.delegation.clear_completed_tasks(actor_id=actor)

    count = run_with_workforce(ctx, action)
    console.print(f"[green]{count} finished task(s) removed[/green]")
