"""
Delegation State Machine

Tracks delegated tasks through their lifecycle and drives the optional
plan-approval gate:

    pending -> in_progress -> completed | failed | cancelled
                    |
                    +-> awaiting_plan_approval -> in_progress (approved or rejected)

With ``plan_approval_required`` the assignee first runs a planning phase with
read-only tools and must submit a dev plan. Approval unlocks the execution
phase with the full tool set; rejection restarts planning with the reviewer's
feedback.

Task execution runs inside the assignee's mailbox, so it never overlaps with
other calls to the same actor. When a task completes it is persisted at once
and becomes immutable; the delegator's supervisor review runs afterwards as a
supervised background job and its outcome is stored as a separate
ReviewRecord. Review-triggered rework creates a linked follow-up task whose
round count is capped, after which the result is accepted and the boss is
told.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

import structlog

from workforce.core.domain.call_guard import CallChainGuard
from workforce.core.domain.dev_plans import DevPlanQueue
from workforce.core.domain.dispatcher import ActorMailboxDispatcher, with_timeout
from workforce.core.domain.errors import StateError, ValidationError, WorkforceError
from workforce.core.domain.models import (
    SYSTEM_ACTOR,
    Actor,
    CallContext,
    DelegatedTask,
    DevPlan,
    DevPlanStatus,
    PlanStatus,
    ReviewOutcome,
    ReviewRecord,
    TaskStatus,
)
from workforce.core.domain.supervisor import BackgroundTaskSupervisor
from workforce.core.interfaces.actors import ActorDirectoryProtocol, MessengerProtocol
from workforce.core.interfaces.store import StoreProtocol
from workforce.core.interfaces.tools import ToolContext
from workforce.core.prompts.collaboration_prompts import (
    APPROVED_PLAN_SECTION,
    EXECUTION_TASK_PROMPT,
    PLAN_REVIEW_PROMPT,
    PLANNING_TASK_PROMPT,
    REJECTION_FEEDBACK_SECTION,
    REVIEW_REJECT_KEYWORDS,
    REWORK_DESCRIPTION,
    SUPERVISOR_REVIEW_PROMPT,
)

TASKS_KEY = "delegated_tasks"
REVIEWS_KEY = "task_reviews"

DEFAULT_DELEGATE_TIMEOUT = 300.0
DEFAULT_MAX_REWORK_ROUNDS = 3
MAX_STORED_TASKS = 200
REVIEW_RESULT_PREVIEW = 2000
TASK_HISTORY_LIMIT = 3

ACTIVE_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_PLAN_APPROVAL}
)


def wants_rework(text: str) -> bool:
    """Keyword heuristic for a review answer that rejects the result."""
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in REVIEW_REJECT_KEYWORDS)


def _submitted_plan(call: Any, result: Any) -> bool:
    return call.name == "submit_dev_plan" and bool(result.success)


class DelegationStateMachine:
    """Delegated task lifecycle, plan gate and supervisor review."""

    def __init__(
        self,
        directory: ActorDirectoryProtocol,
        dispatcher: ActorMailboxDispatcher,
        loop_runner: Any,
        dev_plans: DevPlanQueue,
        supervisor: BackgroundTaskSupervisor,
        messenger: MessengerProtocol | None = None,
        store: StoreProtocol | None = None,
        guard: CallChainGuard | None = None,
        delegate_timeout: float = DEFAULT_DELEGATE_TIMEOUT,
        max_rework_rounds: int = DEFAULT_MAX_REWORK_ROUNDS,
        cancel_on_timeout: bool = False,
        max_tasks: int = MAX_STORED_TASKS,
    ):
        """
        Initialize the state machine.

        Args:
            directory: Actor lookup
            dispatcher: Per-actor mailboxes; task phases run in the assignee's
            loop_runner: AgenticLoopRunner used for both task phases
            dev_plans: Plan queue; its events drive the plan gate
            supervisor: Owner of background executions and reviews
            messenger: Sends review prompts and boss notifications (set later
                by the factory when the communication service is built)
            store: Buffered persistence
            guard: Admission check for synchronous delegations
            delegate_timeout: Caller-side deadline for one task phase
            max_rework_rounds: Review-triggered rework generations allowed
            cancel_on_timeout: Cancel the phase instead of letting it finish
            max_tasks: Stored task limit (oldest terminal tasks go first)
        """
        self.directory = directory
        self.dispatcher = dispatcher
        self.loop_runner = loop_runner
        self.dev_plans = dev_plans
        self.supervisor = supervisor
        self.messenger = messenger
        self.store = store
        self.guard = guard or CallChainGuard()
        self.delegate_timeout = delegate_timeout
        self.max_rework_rounds = max_rework_rounds
        self.cancel_on_timeout = cancel_on_timeout
        self.max_tasks = max_tasks

        self.tasks: list[DelegatedTask] = []
        self.reviews: dict[str, ReviewRecord] = {}
        self._contexts: dict[str, CallContext] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self.logger = structlog.get_logger().bind(component="delegation")

        self._unsubscribe = dev_plans.subscribe(self._on_plan_event)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        if self.store is None:
            return
        self.tasks = [DelegatedTask.from_dict(t) for t in await self.store.load(TASKS_KEY) or []]
        reviews = [ReviewRecord.from_dict(r) for r in await self.store.load(REVIEWS_KEY) or []]
        self.reviews = {r.task_id: r for r in reviews}
        self.logger.info("tasks_loaded", tasks=len(self.tasks), reviews=len(self.reviews))

    def _save(self) -> None:
        self._cleanup()
        if self.store is None:
            return
        self.store.save(TASKS_KEY, [t.to_dict() for t in self.tasks])
        self.store.save(REVIEWS_KEY, [r.to_dict() for r in self.reviews.values()])

    async def _flush(self) -> None:
        """Save and wait until the write is on disk (critical transitions)."""
        self._save()
        if self.store is not None:
            await self.store.flush()

    def _cleanup(self) -> None:
        excess = len(self.tasks) - self.max_tasks
        if excess <= 0:
            return
        removable = [t for t in self.tasks if t.is_terminal][:excess]
        drop = {t.id for t in removable}
        self.tasks = [t for t in self.tasks if t.id not in drop]
        for task_id in drop:
            self.reviews.pop(task_id, None)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _require_actor(self, actor_id: str) -> Actor:
        actor = self.directory.get(actor_id)
        if actor is None:
            raise ValidationError(f"Unknown actor: {actor_id}")
        return actor

    def create_task(
        self,
        from_actor: str,
        to_actor: str,
        description: str,
        priority: int = 3,
        plan_approval_required: bool = False,
        conversation_id: str | None = None,
        rework_of: str | None = None,
    ) -> DelegatedTask:
        """
        Validate and register a new pending task.

        Raises:
            ValidationError: Self-delegation, unknown or unavailable assignee,
                empty description, bad priority or rework limit reached
        """
        if from_actor == to_actor:
            raise ValidationError("Cannot delegate a task to yourself")
        if not description or not description.strip():
            raise ValidationError("Task description is required")
        if not 1 <= int(priority) <= 5:
            raise ValidationError(f"Priority must be between 1 and 5, got {priority}")
        assignee = self._require_actor(to_actor)
        if not assignee.is_available:
            raise ValidationError(f"{assignee.name} is {assignee.status.value} and cannot take tasks")

        rework_round = 0
        if rework_of is not None:
            parent = self.get_task(rework_of)
            if parent is None:
                raise ValidationError(f"Task not found: {rework_of}")
            rework_round = parent.rework_round + 1
            if rework_round > self.max_rework_rounds:
                raise ValidationError(
                    f"Rework limit reached for task {rework_of} "
                    f"({self.max_rework_rounds} rounds), accept the result or escalate"
                )

        task = DelegatedTask(
            from_actor=from_actor,
            to_actor=to_actor,
            description=description.strip(),
            priority=int(priority),
            plan_approval_required=plan_approval_required,
            conversation_id=conversation_id,
            rework_of=rework_of,
            rework_round=rework_round,
        )
        self.tasks.append(task)
        self._save()
        self.logger.info(
            "task_created",
            task_id=task.id,
            from_actor=from_actor,
            to_actor=to_actor,
            priority=task.priority,
            plan_gate=plan_approval_required,
            rework_round=rework_round,
        )
        return task

    async def delegate(
        self,
        from_actor: str,
        to_actor: str,
        description: str,
        priority: int = 3,
        plan_approval_required: bool = False,
        wait_for_result: bool = False,
        context: CallContext | None = None,
        conversation_id: str | None = None,
        rework_of: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a task and start it.

        With ``wait_for_result`` the caller waits for the first phase to end
        (the call is admission-checked against its call chain); otherwise the
        task runs as a supervised background job.

        Returns:
            Result dict with ``task_id`` and ``status``, or a failure dict
        """
        try:
            if wait_for_result and context is not None:
                self.guard.validate(from_actor, to_actor, context)
            task = self.create_task(
                from_actor,
                to_actor,
                description,
                priority=priority,
                plan_approval_required=plan_approval_required,
                conversation_id=conversation_id,
                rework_of=rework_of,
            )
        except WorkforceError as e:
            self.logger.warning("delegation_rejected", from_actor=from_actor, to_actor=to_actor, error=e.message)
            return e.to_result()

        if wait_for_result:
            self._contexts[task.id] = (context or CallContext()).extend(from_actor)
            return await self.execute_task(task.id)

        self.supervisor.spawn(self.execute_task(task.id), name=f"task:{task.id}")
        return {
            "success": True,
            "task_id": task.id,
            "status": task.status.value,
            "message": f"Task delegated to {to_actor}, running in the background",
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_task(self, task_id: str) -> dict[str, Any]:
        """
        Run the next phase of a task inside the assignee's mailbox.

        Returns:
            Phase result dict, or a failure dict (unknown task, terminal task,
            timeout, dropped from a cleared queue)
        """
        task = self.get_task(task_id)
        if task is None:
            return ValidationError(f"Task not found: {task_id}").to_result()
        if task.is_terminal:
            return StateError(f"Task {task_id} is already {task.status.value}").to_result()
        if task.status == TaskStatus.AWAITING_PLAN_APPROVAL and task.plan_status == PlanStatus.SUBMITTED:
            return {
                "success": True,
                "task_id": task.id,
                "status": task.status.value,
                "message": "Plan submitted, waiting for approval",
            }
        return await self._run_in_mailbox(task, lambda: self._execute_phase(task))

    async def _run_in_mailbox(self, task: DelegatedTask, factory: Any) -> dict[str, Any]:
        future = self.dispatcher.enqueue(task.to_actor, factory)
        try:
            return await with_timeout(
                future,
                self.delegate_timeout,
                f"task {task.id} ({task.to_actor})",
                cancel_on_timeout=self.cancel_on_timeout,
            )
        except WorkforceError as e:
            return {**e.to_result(), "task_id": task.id}

    async def _execute_phase(self, task: DelegatedTask) -> dict[str, Any]:
        # Status may have changed while the entry waited in the mailbox
        if task.is_terminal:
            return StateError(f"Task {task.id} is already {task.status.value}").to_result()
        assignee = self.directory.get(task.to_actor)
        if assignee is None or not assignee.is_available:
            task.transition(TaskStatus.FAILED, result=f"Assignee {task.to_actor} is not available")
            await self._flush()
            return {"success": False, "task_id": task.id, "error": task.result, "status": task.status.value}
        if task.tools_unlocked:
            return await self._run_execution(task, assignee)
        return await self._run_planning(task, assignee)

    def _tool_context(self, task: DelegatedTask) -> ToolContext:
        return ToolContext(
            actor_id=task.to_actor,
            call=self._contexts.get(task.id, CallContext()),
            conversation_id=task.conversation_id,
            task_id=task.id,
        )

    def _cancel_event(self, task: DelegatedTask) -> asyncio.Event:
        return self._cancel_events.setdefault(task.id, asyncio.Event())

    def _task_history(self, task: DelegatedTask) -> list[dict[str, Any]]:
        """Earlier completed tasks between the same pair, as chat history."""
        previous = [
            t
            for t in self.tasks
            if t.id != task.id
            and t.from_actor == task.from_actor
            and t.to_actor == task.to_actor
            and t.status == TaskStatus.COMPLETED
        ][-TASK_HISTORY_LIMIT:]
        history: list[dict[str, Any]] = []
        for t in previous:
            history.append({"role": "user", "content": f"[{t.from_actor}]: {t.description}"})
            history.append({"role": "assistant", "content": (t.result or "")[:500]})
        return history

    def _sender_name(self, actor_id: str) -> str:
        actor = self.directory.get(actor_id)
        return actor.name if actor else actor_id

    def _fail(self, task: DelegatedTask, error: str) -> dict[str, Any]:
        if not task.is_terminal:
            task.transition(TaskStatus.FAILED, result=error)
        self.logger.error("task_failed", task_id=task.id, to_actor=task.to_actor, error=error)
        return {"success": False, "task_id": task.id, "status": task.status.value, "error": error}

    async def _run_planning(self, task: DelegatedTask, assignee: Actor) -> dict[str, Any]:
        latest = self.dev_plans.get_by_task(task.id)
        feedback = latest.feedback if latest and latest.status == DevPlanStatus.REJECTED else None
        task.transition(TaskStatus.IN_PROGRESS)
        task.set_plan_status(PlanStatus.PLANNING)
        self._save()

        instruction = PLANNING_TASK_PROMPT.format(
            from_name=self._sender_name(task.from_actor),
            task_id=task.id,
            description=task.description,
            feedback_section=REJECTION_FEEDBACK_SECTION.format(feedback=feedback) if feedback else "",
        )
        self.logger.info("task_planning_started", task_id=task.id, assignee=task.to_actor, revising=bool(feedback))
        try:
            outcome = await self.loop_runner.run(
                assignee,
                instruction,
                history=self._task_history(task),
                context=self._tool_context(task),
                tool_filter="planning",
                on_tool_executed=_submitted_plan,
                cancel_event=self._cancel_event(task),
                conversation_id=task.conversation_id,
            )
        except Exception as e:
            result = self._fail(task, f"Planning failed: {e}")
            await self._flush()
            return result

        if task.is_terminal:
            return {"success": False, "task_id": task.id, "status": task.status.value, "error": "Task was cancelled"}

        if task.plan_status == PlanStatus.SUBMITTED:
            task.add_discussion(task.to_actor, f"[planning] {outcome.content}")
            task.transition(TaskStatus.AWAITING_PLAN_APPROVAL)
            await self._flush()
            plan = self.dev_plans.get_by_task(task.id)
            return {
                "success": True,
                "task_id": task.id,
                "status": task.status.value,
                "plan_id": plan.id if plan else None,
                "message": "Plan submitted, waiting for approval",
            }

        task.add_discussion(task.to_actor, f"[planning] {outcome.content}")
        result = self._fail(task, "Planning phase ended without a submitted plan")
        await self._flush()
        return result

    async def _run_execution(self, task: DelegatedTask, assignee: Actor) -> dict[str, Any]:
        task.transition(TaskStatus.IN_PROGRESS)
        self._save()

        plan_section = ""
        if task.plan_approval_required:
            plan = self.dev_plans.get_by_task(task.id)
            if plan is not None and plan.status == DevPlanStatus.APPROVED:
                comment = f"Reviewer note: {plan.approve_comment}\n" if plan.approve_comment else ""
                plan_section = APPROVED_PLAN_SECTION.format(content=plan.content, comment=comment)

        instruction = EXECUTION_TASK_PROMPT.format(
            from_name=self._sender_name(task.from_actor),
            task_id=task.id,
            description=task.description,
            plan_section=plan_section,
        )
        self.logger.info("task_execution_started", task_id=task.id, assignee=task.to_actor)
        try:
            outcome = await self.loop_runner.run(
                assignee,
                instruction,
                history=self._task_history(task),
                context=self._tool_context(task),
                tool_filter="full",
                cancel_event=self._cancel_event(task),
                conversation_id=task.conversation_id,
            )
        except Exception as e:
            result = self._fail(task, f"Execution failed: {e}")
            await self._flush()
            return result

        if task.is_terminal:
            return {"success": False, "task_id": task.id, "status": task.status.value, "error": "Task was cancelled"}

        task.add_discussion(task.to_actor, outcome.content)
        task.transition(TaskStatus.COMPLETED, result=outcome.content)
        self._contexts.pop(task.id, None)
        self._cancel_events.pop(task.id, None)
        await self._flush()
        self.logger.info(
            "task_completed",
            task_id=task.id,
            assignee=task.to_actor,
            iterations=outcome.iterations,
            tools_used=outcome.tools_used,
        )
        self._schedule_review(task)
        return {
            "success": True,
            "task_id": task.id,
            "status": task.status.value,
            "result": outcome.content,
            "tools_used": outcome.tools_used,
        }

    # ------------------------------------------------------------------
    # Plan gate
    # ------------------------------------------------------------------

    def submit_plan(self, task_id: str, author: str, content: str) -> DevPlan:
        """
        Submit the dev plan of a gated task (used by the submit_dev_plan tool).

        Raises:
            ValidationError: Unknown task, wrong author or no plan gate
            StateError: Task is not in its planning phase
        """
        task = self.get_task(task_id)
        if task is None:
            raise ValidationError(f"Task not found: {task_id}")
        if task.to_actor != author:
            raise ValidationError(f"Only the assignee ({task.to_actor}) can submit a plan for {task_id}")
        if not task.plan_approval_required:
            raise ValidationError(f"Task {task_id} does not require a plan")
        if task.status != TaskStatus.IN_PROGRESS or task.plan_status == PlanStatus.APPROVED:
            raise StateError(f"Task {task_id} is not in its planning phase ({task.status.value})")

        plan = self.dev_plans.submit(task_id, author, task.from_actor, content)
        task.set_plan_status(PlanStatus.SUBMITTED)
        self._save()
        return plan

    def _check_reviewer(self, plan_id: str, reviewer: str) -> DevPlan:
        plan = self.dev_plans.get(plan_id)
        if plan is None:
            raise ValidationError(f"Plan not found: {plan_id}")
        actor = self.directory.get(reviewer)
        if reviewer != plan.reviewer_actor and not (actor and actor.is_privileged):
            raise ValidationError(f"Only {plan.reviewer_actor} or a c-level actor can review plan {plan_id}")
        return plan

    def approve_plan(self, plan_id: str, reviewer: str, comment: str | None = None) -> DevPlan:
        self._check_reviewer(plan_id, reviewer)
        return self.dev_plans.approve(plan_id, reviewer, comment)

    def reject_plan(self, plan_id: str, reviewer: str, feedback: str) -> DevPlan:
        self._check_reviewer(plan_id, reviewer)
        return self.dev_plans.reject(plan_id, reviewer, feedback)

    def _on_plan_event(self, event: str, plan: DevPlan) -> None:
        task = self.get_task(plan.task_id)
        if task is None:
            self.logger.warning("plan_event_unknown_task", plan_event=event, task_id=plan.task_id)
            return
        if event in ("submitted", "revised"):
            self.supervisor.spawn(self._request_plan_review(task, plan, event), name=f"plan_review:{plan.id}")
        elif event in ("approved", "rejected"):
            self.supervisor.spawn(
                self._resume_after_review(task, approved=event == "approved"),
                name=f"plan_{event}:{task.id}",
            )

    async def _request_plan_review(self, task: DelegatedTask, plan: DevPlan, event: str) -> None:
        if self.messenger is None:
            return
        prompt = PLAN_REVIEW_PROMPT.format(
            author_name=self._sender_name(plan.author_actor),
            action="revised" if event == "revised" else "submitted",
            task_id=task.id,
            revision_note=f" (revision {plan.revision_count})" if plan.revision_count else "",
            plan_id=plan.id,
            content=plan.content,
        )
        reply = await self.messenger.send_message(
            SYSTEM_ACTOR,
            plan.reviewer_actor,
            prompt,
            conversation_id=task.conversation_id,
            history_strategy="focused",
        )
        if not reply.get("success"):
            self.logger.warning("plan_review_prompt_failed", plan_id=plan.id, error=reply.get("error"))

    async def _resume_after_review(self, task: DelegatedTask, approved: bool) -> None:
        """Apply the plan decision in the assignee's mailbox, then run the next phase."""

        async def apply() -> dict[str, Any]:
            if task.is_terminal:
                return StateError(f"Task {task.id} is already {task.status.value}").to_result()
            if approved:
                task.set_plan_status(PlanStatus.APPROVED)
            else:
                if task.status == TaskStatus.AWAITING_PLAN_APPROVAL:
                    task.transition(TaskStatus.IN_PROGRESS)
                task.set_plan_status(PlanStatus.PLANNING)
            await self._flush()
            self.logger.info("plan_decision_applied", task_id=task.id, approved=approved)
            return await self._execute_phase(task)

        result = await self._run_in_mailbox(task, apply)
        if not result.get("success"):
            self.logger.warning("plan_resume_failed", task_id=task.id, error=result.get("error"))

    # ------------------------------------------------------------------
    # Supervisor review
    # ------------------------------------------------------------------

    def _schedule_review(self, task: DelegatedTask) -> None:
        if task.from_actor == SYSTEM_ACTOR or self.messenger is None:
            self._record_review(task, ReviewOutcome.SKIPPED, "No supervisor to review")
            return
        self.supervisor.spawn(self._review(task), name=f"review:{task.id}")

    def _record_review(
        self,
        task: DelegatedTask,
        outcome: ReviewOutcome,
        feedback: str = "",
        rework_task_id: str | None = None,
    ) -> ReviewRecord:
        record = ReviewRecord(
            task_id=task.id,
            reviewer=task.from_actor,
            outcome=outcome,
            feedback=feedback,
            rework_task_id=rework_task_id,
        )
        self.reviews[task.id] = record
        self._save()
        self.logger.info("task_reviewed", task_id=task.id, outcome=outcome.value, rework_task_id=rework_task_id)
        return record

    def _rework_task_of(self, task_id: str) -> DelegatedTask | None:
        return next((t for t in reversed(self.tasks) if t.rework_of == task_id), None)

    async def _review(self, task: DelegatedTask) -> ReviewRecord:
        assignee_name = self._sender_name(task.to_actor)
        result = task.result or ""
        if len(result) > REVIEW_RESULT_PREVIEW:
            result = result[:REVIEW_RESULT_PREVIEW] + "\n...(truncated)"
        prompt = SUPERVISOR_REVIEW_PROMPT.format(
            assignee_name=assignee_name,
            assignee=task.to_actor,
            task_id=task.id,
            description=task.description,
            result=result,
        )
        reply = await self.messenger.send_message(
            SYSTEM_ACTOR,
            task.from_actor,
            prompt,
            conversation_id=task.conversation_id,
            history_strategy="focused",
            reviewing_task_id=task.id,
        )
        if not reply.get("success"):
            error = reply.get("error", "review failed")
            self.messenger.notify_boss(
                task.from_actor,
                f"Review of task {task.id} by {task.from_actor} failed: {error}",
            )
            return self._record_review(task, ReviewOutcome.FAILED, error)

        response = reply.get("response") or ""
        tools_used = reply.get("tools_used") or []

        rework = self._rework_task_of(task.id)
        if rework is not None:
            return self._record_review(task, ReviewOutcome.REWORK, response, rework.id)
        # Reviewer reported or delegated follow-up work itself
        if "notify_boss" in tools_used or "delegate_task" in tools_used:
            return self._record_review(task, ReviewOutcome.ACCEPTED, response)

        if wants_rework(response):
            if task.rework_round >= self.max_rework_rounds:
                self.messenger.notify_boss(
                    task.from_actor,
                    f"Task {task.id} reached the rework limit ({self.max_rework_rounds}); "
                    f"accepted the latest result from {assignee_name}. Review note: {response[:300]}",
                )
                return self._record_review(task, ReviewOutcome.ACCEPTED_AT_LIMIT, response)
            redo = await self.delegate(
                task.from_actor,
                task.to_actor,
                REWORK_DESCRIPTION.format(
                    reviewer_name=self._sender_name(task.from_actor),
                    feedback=response,
                    description=task.description,
                ),
                priority=min(task.priority, 2),
                conversation_id=task.conversation_id,
                rework_of=task.id,
            )
            if not redo.get("success"):
                return self._record_review(task, ReviewOutcome.FAILED, redo.get("error", ""))
            self.messenger.notify_boss(
                task.from_actor,
                f"{self._sender_name(task.from_actor)} sent task {task.id} back to {assignee_name} for rework.",
            )
            return self._record_review(task, ReviewOutcome.REWORK, response, redo["task_id"])

        self.messenger.notify_boss(
            task.from_actor,
            f"Task {task.id} completed by {assignee_name}. Review: {response[:300]}",
        )
        return self._record_review(task, ReviewOutcome.ACCEPTED, response)

    def get_review(self, task_id: str) -> ReviewRecord | None:
        return self.reviews.get(task_id)

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> DelegatedTask | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def get_tasks(
        self,
        actor_id: str | None = None,
        task_type: str = "all",
        status: TaskStatus | str | None = None,
    ) -> list[DelegatedTask]:
        """
        List tasks newest first.

        Args:
            actor_id: Restrict to tasks involving this actor
            task_type: "assigned" (delegated by the actor), "received"
                (assigned to the actor) or "all"
            status: Restrict to one status
        """
        status = TaskStatus(status) if status else None
        selected = []
        for task in self.tasks:
            if actor_id is not None:
                assigned = task.from_actor == actor_id
                received = task.to_actor == actor_id
                if task_type == "assigned" and not assigned:
                    continue
                if task_type == "received" and not received:
                    continue
                if task_type == "all" and not (assigned or received):
                    continue
            if status is not None and task.status != status:
                continue
            selected.append(task)
        return sorted(selected, key=lambda t: t.created_at, reverse=True)

    def get_pending_tasks(self, actor_id: str) -> list[DelegatedTask]:
        """Open tasks assigned to ``actor_id``, highest priority first."""
        pending = [t for t in self.tasks if t.to_actor == actor_id and t.status in ACTIVE_STATUSES]
        return sorted(pending, key=lambda t: (t.priority, t.created_at))

    def add_discussion(self, task_id: str, actor_id: str, content: str) -> dict[str, Any]:
        task = self.get_task(task_id)
        if task is None:
            return ValidationError(f"Task not found: {task_id}").to_result()
        try:
            task.add_discussion(actor_id, content)
        except StateError as e:
            return e.to_result()
        self._save()
        return {"success": True, "task_id": task_id, "entries": len(task.discussion)}

    def update_task(
        self,
        task_id: str,
        priority: int | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Change priority or description of a task that has not started."""
        task = self.get_task(task_id)
        if task is None:
            return ValidationError(f"Task not found: {task_id}").to_result()
        if task.status != TaskStatus.PENDING:
            return StateError(f"Task {task_id} already started ({task.status.value})").to_result()
        if priority is not None:
            if not 1 <= int(priority) <= 5:
                return ValidationError(f"Priority must be between 1 and 5, got {priority}").to_result()
            task.priority = int(priority)
        if description:
            task.description = description.strip()
        self._save()
        return {"success": True, "task": task.to_dict()}

    def _cancel(self, task: DelegatedTask, reason: str) -> None:
        task.transition(TaskStatus.CANCELLED, result=reason)
        event = self._cancel_events.pop(task.id, None)
        if event is not None:
            event.set()
        self._contexts.pop(task.id, None)

    async def cancel_task(self, task_id: str, requested_by: str, reason: str = "") -> dict[str, Any]:
        """
        Cancel a task. Only the delegator (or the system) may cancel.

        A running phase stops cooperatively at its next iteration.
        """
        task = self.get_task(task_id)
        if task is None:
            return ValidationError(f"Task not found: {task_id}").to_result()
        if requested_by not in (task.from_actor, SYSTEM_ACTOR):
            return ValidationError(f"Only {task.from_actor} can cancel task {task_id}").to_result()
        try:
            self._cancel(task, reason or f"Cancelled by {requested_by}")
        except StateError as e:
            return e.to_result()
        await self._flush()
        self.logger.info("task_cancelled", task_id=task_id, requested_by=requested_by)
        return {"success": True, "task_id": task_id, "status": task.status.value}

    async def clear_stale_tasks(self, max_age_days: float = 1, actor_id: str | None = None) -> int:
        """Cancel open tasks older than ``max_age_days``. Returns the count."""
        cutoff = datetime.now() - timedelta(days=max_age_days)
        stale = [
            t
            for t in self.tasks
            if t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
            and t.created_at < cutoff
            and (actor_id is None or actor_id in (t.from_actor, t.to_actor))
        ]
        for task in stale:
            self._cancel(task, "Cancelled as stale")
        if stale:
            await self._flush()
            self.logger.info("stale_tasks_cleared", count=len(stale), actor_id=actor_id)
        return len(stale)

    def clear_completed_tasks(self, actor_id: str | None = None) -> int:
        """Remove terminal tasks (and their reviews). Returns the count."""
        removed = [
            t
            for t in self.tasks
            if t.is_terminal and (actor_id is None or actor_id in (t.from_actor, t.to_actor))
        ]
        drop = {t.id for t in removed}
        self.tasks = [t for t in self.tasks if t.id not in drop]
        for task_id in drop:
            self.reviews.pop(task_id, None)
        self._save()
        return len(removed)

    def get_stats(self) -> dict[str, Any]:
        by_status = {status.value: 0 for status in TaskStatus}
        for task in self.tasks:
            by_status[task.status.value] += 1
        by_outcome: dict[str, int] = {}
        for review in self.reviews.values():
            by_outcome[review.outcome.value] = by_outcome.get(review.outcome.value, 0) + 1
        return {"total": len(self.tasks), "by_status": by_status, "reviews": by_outcome}
