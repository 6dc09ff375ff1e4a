"""
Background Task Supervisor

Owns every detached coroutine the orchestration core starts (background
delegations, supervisor reviews, plan-review prompts, mailbox runners).
Each spawned task is tracked with a TaskRecord so failures are recorded and
logged instead of vanishing, and shutdown can wait for or cancel
outstanding work.
"""

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import structlog


class BackgroundStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskRecord:
    """Bookkeeping entry for one supervised task."""

    name: str
    started_at: datetime
    status: BackgroundStatus = BackgroundStatus.RUNNING
    finished_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


class BackgroundTaskSupervisor:
    """Spawns and tracks background asyncio tasks."""

    def __init__(self, history_limit: int = 500):
        self.history_limit = history_limit
        self._active: dict[asyncio.Task, TaskRecord] = {}
        self._finished: list[TaskRecord] = []
        self.logger = structlog.get_logger().bind(component="supervisor")

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """
        Start ``coro`` as a tracked task.

        Args:
            coro: Coroutine to run
            name: Label used in records and logs

        Returns:
            The created asyncio.Task
        """
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._active[task] = TaskRecord(name=name, started_at=datetime.now())
        task.add_done_callback(self._on_done)
        self.logger.debug("background_task_spawned", name=name, active=len(self._active))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        record = self._active.pop(task, None)
        if record is None:
            return
        record.finished_at = datetime.now()
        if task.cancelled():
            record.status = BackgroundStatus.CANCELLED
            self.logger.info("background_task_cancelled", name=record.name)
        elif task.exception() is not None:
            error = task.exception()
            record.status = BackgroundStatus.FAILED
            record.error = f"{type(error).__name__}: {error}"
            self.logger.error(
                "background_task_failed",
                name=record.name,
                error_type=type(error).__name__,
                error=str(error),
            )
        else:
            record.status = BackgroundStatus.SUCCEEDED
        self._finished.append(record)
        if len(self._finished) > self.history_limit:
            self._finished = self._finished[-self.history_limit :]

    def active(self) -> list[TaskRecord]:
        return list(self._active.values())

    def failures(self) -> list[TaskRecord]:
        return [r for r in self._finished if r.status == BackgroundStatus.FAILED]

    def history(self) -> list[TaskRecord]:
        return list(self._finished)

    async def join(self, timeout: float | None = None) -> bool:
        """
        Wait until all tracked tasks, including ones spawned meanwhile, finish.

        Returns:
            True if everything finished, False on timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._active:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            _, pending = await asyncio.wait(list(self._active), timeout=remaining)
            if pending and deadline is not None and loop.time() >= deadline:
                return False
        return True

    async def shutdown(self, timeout: float = 10.0, cancel_pending: bool = True) -> None:
        """Wait for outstanding work, cancelling what is left after ``timeout``."""
        finished = await self.join(timeout)
        if finished or not cancel_pending:
            return
        pending = list(self._active)
        self.logger.warning("background_tasks_cancelling", count=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
