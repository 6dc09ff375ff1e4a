"""Plans command - Development plan approvals."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from workforce.api.cli.runtime import run_with_workforce
from workforce.application.factory import Workforce
from workforce.core.domain.errors import WorkforceError

app = typer.Typer(help="Development plan approvals")
console = Console()


@app.command("list")
def list_plans(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", "-s", help="pending, approved or rejected"),
    reviewer: Optional[str] = typer.Option(None, "--reviewer", "-r", help="Filter by reviewer"),
):
    """List development plans."""

    async def action(workforce: Workforce):
        return workforce.dev_plans.get_all(status=status, reviewer=reviewer)

    plans = run_with_workforce(ctx, action)

    table = Table(title="Development Plans")
    table.add_column("ID", style="cyan")
    table.add_column("Task", style="white")
    table.add_column("Author → Reviewer", style="white")
    table.add_column("Status")
    table.add_column("Rev", justify="right")
    table.add_column("Plan", overflow="fold")

    for plan in plans:
        table.add_row(
            plan.id,
            plan.task_id,
            f"{plan.author_actor} → {plan.reviewer_actor}",
            plan.status.value,
            str(plan.revision_count),
            plan.content[:80],
        )

    console.print(table)


def _decide(ctx: typer.Context, plan_id: str, reviewer: str, approve: bool, note: str) -> None:
    async def action(workforce: Workforce):
        try:
            if approve:
                workforce.delegation.approve_plan(plan_id, reviewer, note or None)
            else:
                workforce.delegation.reject_plan(plan_id, reviewer, note)
        except WorkforceError as e:
            return e.to_result()
        # Let the resumed phase run before shutting down
        await workforce.supervisor.join(timeout=workforce.delegation.delegate_timeout)
        plan = workforce.dev_plans.get(plan_id)
        task = workforce.delegation.get_task(plan.task_id) if plan else None
        return {"success": True, "task_status": task.status.value if task else None}

    result = run_with_workforce(ctx, action)
    if not result.get("success"):
        console.print(f"[red]{result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Plan {plan_id} {'approved' if approve else 'rejected'}; task is {result['task_status']}[/green]")


@app.command("approve")
def approve(
    ctx: typer.Context,
    plan_id: str = typer.Argument(..., help="Plan ID"),
    reviewer: str = typer.Option(..., "--as", help="Reviewer actor ID"),
    comment: str = typer.Option("", "--comment", "-c", help="Note for the assignee"),
):
    """Approve a pending plan and continue the task."""
    _decide(ctx, plan_id, reviewer, True, comment)


@app.command("reject")
def reject(
    ctx: typer.Context,
    plan_id: str = typer.Argument(..., help="Plan ID"),
    feedback: str = typer.Argument(..., help="What must change"),
    reviewer: str = typer.Option(..., "--as", help="Reviewer actor ID"),
):
    """Reject a pending plan; the assignee revises it."""
    _decide(ctx, plan_id, reviewer, False, feedback)
