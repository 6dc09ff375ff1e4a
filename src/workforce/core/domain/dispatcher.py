"""
Actor Mailbox Dispatcher

Per-actor FIFO execution queues. This is the only mutual-exclusion mechanism
of the orchestration core: an actor never runs two mailbox entries at the same
time, and entries run in submission order. Different actors' queues run fully
concurrently.

All bookkeeping happens synchronously between awaits on the single event
loop, so concurrent ``enqueue`` calls cannot race on the "executing" flag.
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from workforce.core.domain.errors import CallTimeoutError, QueueClearedError
from workforce.core.domain.supervisor import BackgroundTaskSupervisor

TaskFactory = Callable[[], Awaitable[Any]]

logger = structlog.get_logger().bind(component="dispatcher")


@dataclass
class MailboxEntry:
    """A queued call. Consumed exactly once by the actor's processing loop."""

    task_factory: TaskFactory
    future: asyncio.Future
    admitted_at: datetime = field(default_factory=datetime.now)
    runner: asyncio.Task | None = None


class ActorMailboxDispatcher:
    """
    Serializes work per actor.

    ``enqueue`` returns a future that resolves or rejects with the outcome of
    the task. When an actor is idle the head of its queue starts right away;
    when an entry finishes (success or failure) the next one starts
    immediately.
    """

    def __init__(self, supervisor: BackgroundTaskSupervisor | None = None):
        self.supervisor = supervisor or BackgroundTaskSupervisor()
        self._queues: dict[str, deque[MailboxEntry]] = defaultdict(deque)
        self._executing: dict[str, MailboxEntry] = {}
        self.logger = logger

    def enqueue(self, actor_id: str, task_factory: TaskFactory) -> asyncio.Future:
        """
        Queue ``task_factory`` for ``actor_id``.

        Args:
            actor_id: Mailbox key
            task_factory: Zero-argument callable returning the awaitable to run

        Returns:
            Future resolved with the task result (or its exception)
        """
        loop = asyncio.get_running_loop()
        entry = MailboxEntry(task_factory=task_factory, future=loop.create_future())
        entry.future.add_done_callback(lambda f: self._on_future_done(entry))
        self._queues[actor_id].append(entry)
        self.logger.debug(
            "mailbox_enqueued",
            actor_id=actor_id,
            queued=len(self._queues[actor_id]),
            executing=actor_id in self._executing,
        )
        self._process_next(actor_id)
        return entry.future

    def _process_next(self, actor_id: str) -> None:
        if actor_id in self._executing:
            return
        queue = self._queues.get(actor_id)
        while queue:
            entry = queue.popleft()
            if entry.future.done():
                # Cancelled by its caller while waiting
                continue
            self._executing[actor_id] = entry
            entry.runner = self.supervisor.spawn(
                self._run(actor_id, entry), name=f"mailbox:{actor_id}"
            )
            return

    async def _run(self, actor_id: str, entry: MailboxEntry) -> None:
        try:
            result = await entry.task_factory()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            self.logger.debug("mailbox_task_failed", actor_id=actor_id, error=str(e))
            if not entry.future.done():
                entry.future.set_exception(e)
        else:
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._executing.pop(actor_id, None)
            self._process_next(actor_id)

    def _on_future_done(self, entry: MailboxEntry) -> None:
        if entry.future.cancelled() and entry.runner is not None and not entry.runner.done():
            entry.runner.cancel()

    def is_processing(self, actor_id: str) -> bool:
        return actor_id in self._executing

    def queue_status(self, actor_id: str) -> dict[str, Any]:
        return {
            "queued": len(self._queues.get(actor_id, ())),
            "processing": self.is_processing(actor_id),
        }

    def clear_queue(self, actor_id: str) -> dict[str, Any]:
        """
        Reject every waiting entry of ``actor_id``.

        The entry currently executing (if any) is left alone.

        Returns:
            {"queue_cleared": count, "was_processing": bool}
        """
        queue = self._queues.pop(actor_id, deque())
        cleared = 0
        for entry in queue:
            if not entry.future.done():
                entry.future.set_exception(
                    QueueClearedError(f"Queued call to {actor_id} was dropped")
                )
                cleared += 1
        was_processing = self.is_processing(actor_id)
        self.logger.info(
            "mailbox_cleared",
            actor_id=actor_id,
            queue_cleared=cleared,
            was_processing=was_processing,
        )
        return {"queue_cleared": cleared, "was_processing": was_processing}


def _consume_late_result(label: str, future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning("timed_out_call_failed", label=label, error=str(error))
    else:
        logger.info("timed_out_call_finished", label=label)


async def with_timeout(
    awaitable: Awaitable[Any],
    timeout: float | None,
    label: str,
    cancel_on_timeout: bool = False,
) -> Any:
    """
    Race ``awaitable`` against a timer.

    By default the underlying work is shielded: on timeout the caller gets a
    CallTimeoutError while the work keeps running and still updates shared
    state when it finishes. With ``cancel_on_timeout`` the work is cancelled
    (a queued mailbox entry is skipped, a running one is interrupted).

    Raises:
        CallTimeoutError: When the deadline passes first
    """
    future = asyncio.ensure_future(awaitable)
    if timeout is None:
        return await future
    try:
        if cancel_on_timeout:
            return await asyncio.wait_for(future, timeout)
        return await asyncio.wait_for(asyncio.shield(future), timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "call_timed_out",
            label=label,
            timeout=timeout,
            cancelled=cancel_on_timeout,
        )
        if not cancel_on_timeout:
            future.add_done_callback(lambda f: _consume_late_result(label, f))
        raise CallTimeoutError(label, timeout) from None
