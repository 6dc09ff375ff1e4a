"""
Dev Plan Queue

Holds the development plans assignees submit for approval before they may
execute gated tasks. Plans move pending -> approved | rejected; submitting
again for a task whose latest plan is still pending revises that plan in
place, otherwise a new revision is created.

Subscribers are notified synchronously with ``(event, plan)`` where event is
one of "submitted", "revised", "approved", "rejected". A failing subscriber is
logged and never affects the queue or the other subscribers.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from workforce.core.domain.errors import StateError, ValidationError
from workforce.core.domain.models import DevPlan, DevPlanStatus
from workforce.core.interfaces.store import StoreProtocol

PlanListener = Callable[[str, DevPlan], Any]

STORE_KEY = "dev_plans"
MAX_STORED_PLANS = 200


class DevPlanQueue:
    """In-memory plan registry with optional buffered persistence."""

    def __init__(self, store: StoreProtocol | None = None, max_plans: int = MAX_STORED_PLANS):
        self.store = store
        self.max_plans = max_plans
        self._plans: list[DevPlan] = []
        self._listeners: list[PlanListener] = []
        self.logger = structlog.get_logger().bind(component="dev_plans")

    async def load(self) -> None:
        if self.store is None:
            return
        data = await self.store.load(STORE_KEY) or []
        self._plans = [DevPlan.from_dict(item) for item in data]
        self.logger.info("dev_plans_loaded", count=len(self._plans))

    def _save(self) -> None:
        self.cleanup()
        if self.store is not None:
            self.store.save(STORE_KEY, [p.to_dict() for p in self._plans])

    def subscribe(self, listener: PlanListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, plan: DevPlan) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, plan)
            except Exception as e:
                self.logger.error(
                    "plan_listener_failed",
                    plan_event=event,
                    plan_id=plan.id,
                    error=str(e),
                )

    def submit(self, task_id: str, author: str, reviewer: str, content: str) -> DevPlan:
        """
        Submit (or revise) the plan for a task.

        Raises:
            ValidationError: If task_id, author or content is missing
        """
        if not task_id or not author or not content or not content.strip():
            raise ValidationError("task_id, author and content are required to submit a plan")

        pending = next(
            (
                p
                for p in reversed(self._plans)
                if p.task_id == task_id and p.status == DevPlanStatus.PENDING
            ),
            None,
        )
        if pending is not None:
            pending.content = content
            pending.revision_count += 1
            pending.updated_at = datetime.now()
            event, plan = "revised", pending
        else:
            previous = sum(1 for p in self._plans if p.task_id == task_id)
            plan = DevPlan(
                task_id=task_id,
                author_actor=author,
                reviewer_actor=reviewer,
                content=content,
                revision_count=previous,
            )
            self._plans.append(plan)
            event = "submitted"

        self._save()
        self.logger.info(
            "dev_plan_submitted",
            plan_id=plan.id,
            task_id=task_id,
            author=author,
            reviewer=reviewer,
            revision=plan.revision_count,
            plan_event=event,
        )
        self._emit(event, plan)
        return plan

    def _require_pending(self, plan_id: str) -> DevPlan:
        plan = self.get(plan_id)
        if plan is None:
            raise ValidationError(f"Plan not found: {plan_id}")
        if plan.status != DevPlanStatus.PENDING:
            raise StateError(f"Plan {plan_id} is already {plan.status.value}")
        return plan

    def approve(self, plan_id: str, reviewer: str, comment: str | None = None) -> DevPlan:
        """
        Approve a pending plan.

        Raises:
            ValidationError: Unknown plan
            StateError: Plan is not pending
        """
        plan = self._require_pending(plan_id)
        plan.status = DevPlanStatus.APPROVED
        plan.approve_comment = comment
        plan.reviewed_at = plan.updated_at = datetime.now()
        self._save()
        self.logger.info("dev_plan_approved", plan_id=plan_id, reviewer=reviewer)
        self._emit("approved", plan)
        return plan

    def reject(self, plan_id: str, reviewer: str, feedback: str) -> DevPlan:
        """
        Reject a pending plan with feedback.

        Raises:
            ValidationError: Unknown plan or empty feedback
            StateError: Plan is not pending
        """
        if not feedback or not feedback.strip():
            raise ValidationError("Feedback is required to reject a plan")
        plan = self._require_pending(plan_id)
        plan.status = DevPlanStatus.REJECTED
        plan.feedback = feedback
        plan.reviewed_at = plan.updated_at = datetime.now()
        self._save()
        self.logger.info("dev_plan_rejected", plan_id=plan_id, reviewer=reviewer)
        self._emit("rejected", plan)
        return plan

    def get(self, plan_id: str) -> DevPlan | None:
        return next((p for p in self._plans if p.id == plan_id), None)

    def get_by_task(self, task_id: str) -> DevPlan | None:
        """Latest plan of a task."""
        return next((p for p in reversed(self._plans) if p.task_id == task_id), None)

    def get_all_by_task(self, task_id: str) -> list[DevPlan]:
        return [p for p in self._plans if p.task_id == task_id]

    def get_pending(self, reviewer: str | None = None) -> list[DevPlan]:
        return [
            p
            for p in self._plans
            if p.status == DevPlanStatus.PENDING
            and (reviewer is None or p.reviewer_actor == reviewer)
        ]

    def get_all(
        self,
        status: DevPlanStatus | str | None = None,
        author: str | None = None,
        reviewer: str | None = None,
    ) -> list[DevPlan]:
        status = DevPlanStatus(status) if status else None
        return [
            p
            for p in self._plans
            if (status is None or p.status == status)
            and (author is None or p.author_actor == author)
            and (reviewer is None or p.reviewer_actor == reviewer)
        ]

    def cleanup(self) -> int:
        """Drop the oldest plans beyond ``max_plans``. Returns how many were dropped."""
        excess = len(self._plans) - self.max_plans
        if excess <= 0:
            return 0
        self._plans = self._plans[excess:]
        return excess
