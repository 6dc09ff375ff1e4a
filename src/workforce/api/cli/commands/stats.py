"""Stats and inbox commands."""

import typer
from rich.console import Console
from rich.table import Table

from workforce.api.cli.runtime import run_with_workforce
from workforce.application.factory import Workforce

console = Console()


def show_stats(ctx: typer.Context):
    """Show message, task, usage and background-task statistics."""

    async def action(workforce: Workforce):
        return {
            "messages": workforce.communication.get_stats(),
            "tasks": workforce.delegation.get_stats(),
            "plans": {"pending": len(workforce.dev_plans.get_pending())},
            "usage": workforce.usage.get_summary()["total"],
            "background_failures": [r.to_dict() for r in workforce.supervisor.failures()],
        }

    stats = run_with_workforce(ctx, action)

    table = Table(title="Tasks by status")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for status, count in stats["tasks"]["by_status"].items():
        table.add_row(status, str(count))
    console.print(table)

    console.print(f"[bold]Messages:[/bold] {stats['messages']['total_messages']}")
    console.print(f"[bold]Pending plans:[/bold] {stats['plans']['pending']}")
    console.print(f"[bold]Unread notifications:[/bold] {stats['messages']['unread_notifications']}")
    console.print_json(data={"usage": stats["usage"], "reviews": stats["tasks"]["reviews"]})


def show_inbox(
    ctx: typer.Context,
    unread: bool = typer.Option(False, "--unread", "-u", help="Only unread notifications"),
    mark_read: bool = typer.Option(False, "--mark-read", help="Mark all as read"),
):
    """Show notifications the actors sent to the boss."""

    async def action(workforce: Workforce):
        notes = [dict(n) for n in workforce.communication.get_boss_inbox(unread_only=unread)]
        if mark_read:
            workforce.communication.mark_notifications_read()
        return notes

    notes = run_with_workforce(ctx, action)
    if not notes:
        console.print("[dim]No notifications[/dim]")
        return
    for note in notes:
        marker = "" if note.get("read") else "[bold yellow]●[/bold yellow] "
        console.print(f"{marker}[cyan]{note['created_at'][:16]}[/cyan] [bold]{note['from_actor']}[/bold]: {note['message']}")
