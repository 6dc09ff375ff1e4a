"""Workforce CLI entry point."""

from typing import Optional

import typer
from rich.console import Console

from workforce.api.cli.commands import actors, plans, send, stats, tasks
from workforce.api.cli.runtime import configure_logging
from workforce.application.settings import WorkforceSettings

app = typer.Typer(
    name="workforce",
    help="Workforce - actor orchestration for simulated AI employees",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register command groups
app.add_typer(actors.app, name="actors", help="Actor roster and HR actions")
app.add_typer(tasks.app, name="tasks", help="Delegated tasks")
app.add_typer(plans.app, name="plans", help="Development plan approvals")
app.command("send")(send.send_message)
app.command("chat")(send.chat)
app.command("stats")(stats.show_stats)
app.command("inbox")(stats.show_inbox)


@app.callback()
def main(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Configuration profile"),
    config_dir: Optional[str] = typer.Option(None, "--config-dir", help="Directory with profile YAML files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """Workforce CLI."""
    configure_logging(verbose, WorkforceSettings().log_level)
    ctx.obj = {"profile": profile, "config_dir": config_dir, "verbose": verbose}


@app.command()
def version():
    """Show Workforce version."""
    from workforce import __version__

    console.print(f"[bold blue]Workforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
