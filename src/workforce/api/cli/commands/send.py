"""Send and chat commands - Talk to actors."""

import typer
from rich.console import Console
from rich.panel import Panel

from workforce.api.cli.runtime import run_with_workforce
from workforce.application.factory import Workforce
from workforce.core.domain.models import SYSTEM_ACTOR

console = Console()


def send_message(
    ctx: typer.Context,
    from_actor: str = typer.Argument(..., help="Sender ID ('system' for the boss)"),
    to_actor: str = typer.Argument(..., help="Target actor ID"),
    message: str = typer.Argument(..., help="Message text"),
    timeout: float = typer.Option(120.0, "--timeout", "-t", help="Seconds to wait for the reply"),
    no_tools: bool = typer.Option(False, "--no-tools", help="Answer without tools"),
):
    """Send a message from one actor to another and print the reply."""

    async def action(workforce: Workforce):
        return await workforce.communication.send_message(
            from_actor,
            to_actor,
            message,
            allow_tools=not no_tools,
            timeout=timeout,
        )

    result = run_with_workforce(ctx, action)
    if not result.get("success"):
        console.print(f"[red]{result.get('error_type', 'error')}: {result['error']}[/red]")
        raise typer.Exit(1)

    tools = ", ".join(result.get("tools_used") or []) or "none"
    console.print(Panel(result["response"], title=f"{to_actor}", subtitle=f"tools: {tools}"))


def chat(
    ctx: typer.Context,
    actor_id: str = typer.Argument(..., help="Actor ID"),
    message: str = typer.Argument(..., help="Message from the boss"),
):
    """Stream an actor's answer to the boss, hiding tool-call markup."""

    async def action(workforce: Workforce):
        actor = workforce.roster.get(actor_id)
        if actor is None:
            console.print(f"[red]Unknown actor: {actor_id}[/red]")
            return None
        history, _ = workforce.communication.build_context_history(SYSTEM_ACTOR, actor_id, "focused")
        final = None
        console.print(f"[bold cyan]{actor.name}[/bold cyan]: ", end="")
        async for event in workforce.loop_runner.stream(actor, message, history=history):
            if event["type"] == "token":
                console.print(event["content"], end="", markup=False, highlight=False)
            elif event["type"] == "tool_result":
                status = "green" if event["success"] else "red"
                console.print(f"\n[{status}]  ⚙ {event['name']}[/{status}]")
            elif event["type"] == "final":
                final = event["result"]
        console.print()
        return final

    result = run_with_workforce(ctx, action)
    if result is None:
        raise typer.Exit(1)
