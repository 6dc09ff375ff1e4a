"""Shared helpers for CLI commands: logging setup and workforce lifecycle."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
import typer

from workforce.application.factory import Workforce, WorkforceFactory
from workforce.application.settings import WorkforceSettings

T = TypeVar("T")


def configure_logging(verbose: bool, level: str = "WARNING") -> None:
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(level=log_level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(log_level))


def settings_from(ctx: typer.Context) -> WorkforceSettings:
    opts: dict[str, Any] = ctx.obj or {}
    settings = WorkforceSettings()
    overrides = {k: v for k, v in opts.items() if k in ("profile", "config_dir") and v}
    return settings.model_copy(update=overrides)


def run_with_workforce(ctx: typer.Context, action: Callable[[Workforce], Awaitable[T]]) -> T:
    """Build the workforce, run ``action``, then shut down (flushing state)."""
    settings = settings_from(ctx)

    async def runner() -> T:
        factory = WorkforceFactory(config_dir=settings.config_dir)
        workforce = await factory.create_workforce(profile=settings.profile, work_dir=settings.work_dir)
        try:
            return await action(workforce)
        finally:
            await workforce.shutdown()

    return asyncio.run(runner())
