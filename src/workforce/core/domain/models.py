"""
Core Domain Models

This module defines the core data models used by the orchestration core:
actors, call contexts, message records, delegated tasks, dev plans and the
ephemeral tool call/result values exchanged inside one loop iteration.

All persistent models provide ``to_dict()`` / ``from_dict()`` so that the
store can serialize them as plain JSON.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from workforce.core.domain.errors import StateError

SYSTEM_ACTOR = "system"


def new_id(prefix: str) -> str:
    """Generate a short unique identifier with a readable prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class ActorTier(str, Enum):
    """Capability tier of an actor. c_level actors get the privileged loop ceiling."""

    STAFF = "staff"
    MANAGER = "manager"
    C_LEVEL = "c_level"


class ActorStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


@dataclass
class Actor:
    """
    A simulated employee.

    Owns no mutable conversation state; message logs, tasks and plans live in
    the services keyed by ``id``. Only ``status`` changes over time (HR
    actions such as suspension or termination).

    Attributes:
        id: Stable actor identifier (e.g. "ceo", "cfo")
        name: Display name
        role: Job title used in prompts
        tier: Capability tier
        status: Employment status
        system_prompt: Persona prompt prepended to every model call
        model: Model alias for this actor (None uses the default model)
    """

    id: str
    name: str
    role: str = ""
    tier: ActorTier = ActorTier.STAFF
    status: ActorStatus = ActorStatus.ACTIVE
    system_prompt: str = ""
    model: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.tier == ActorTier.C_LEVEL

    @property
    def is_available(self) -> bool:
        return self.status == ActorStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "tier": self.tier.value,
            "status": self.status.value,
            "system_prompt": self.system_prompt,
            "model": self.model,
        }


@dataclass(frozen=True)
class CallContext:
    """
    Call-graph position of an actor-to-actor call.

    Passed by value down every nested call. ``call_chain`` records who invoked
    whom, ``nesting_depth`` counts the hops.
    """

    call_chain: tuple[str, ...] = ()
    nesting_depth: int = 0

    def effective_chain(self, actor_id: str) -> tuple[str, ...]:
        """Chain including ``actor_id`` as the current caller."""
        if self.call_chain and self.call_chain[-1] == actor_id:
            return self.call_chain
        return (*self.call_chain, actor_id)

    def extend(self, actor_id: str) -> "CallContext":
        """Context for a call made by ``actor_id`` one hop deeper."""
        return CallContext(
            call_chain=self.effective_chain(actor_id),
            nesting_depth=self.nesting_depth + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"call_chain": list(self.call_chain), "nesting_depth": self.nesting_depth}


class MessageStatus(str, Enum):
    PENDING = "pending"
    RESPONDED = "responded"
    FAILED = "failed"


@dataclass
class MessageRecord:
    """
    One actor-to-actor message and its reply.

    Created pending, mutated exactly once to a terminal status through
    ``resolve()`` or ``fail()``, then immutable.
    """

    from_actor: str
    to_actor: str
    content: str
    id: str = field(default_factory=lambda: new_id("msg"))
    response: str | None = None
    status: MessageStatus = MessageStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    responded_at: datetime | None = None
    conversation_id: str | None = None
    call_chain: list[str] = field(default_factory=list)
    nesting_depth: int = 0

    def resolve(self, response: str) -> None:
        self._finish(MessageStatus.RESPONDED, response)

    def fail(self, error: str) -> None:
        self._finish(MessageStatus.FAILED, error)

    def _finish(self, status: MessageStatus, response: str) -> None:
        if self.status != MessageStatus.PENDING:
            raise StateError(
                f"Message {self.id} already {self.status.value}, cannot mark {status.value}"
            )
        self.status = status
        self.response = response
        self.responded_at = datetime.now()

    def involves(self, actor_a: str, actor_b: str) -> bool:
        return {self.from_actor, self.to_actor} == {actor_a, actor_b}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_actor": self.from_actor,
            "to_actor": self.to_actor,
            "content": self.content,
            "response": self.response,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "responded_at": _iso(self.responded_at),
            "conversation_id": self.conversation_id,
            "call_chain": self.call_chain,
            "nesting_depth": self.nesting_depth,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageRecord":
        return cls(
            id=data["id"],
            from_actor=data["from_actor"],
            to_actor=data["to_actor"],
            content=data.get("content", ""),
            response=data.get("response"),
            status=MessageStatus(data.get("status", "pending")),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            responded_at=_parse_dt(data.get("responded_at")),
            conversation_id=data.get("conversation_id"),
            call_chain=list(data.get("call_chain", [])),
            nesting_depth=data.get("nesting_depth", 0),
        )


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_PLAN_APPROVAL = "awaiting_plan_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)

# Allowed transitions; a task may also "re-enter" its current non-terminal status.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset(
        {
            TaskStatus.AWAITING_PLAN_APPROVAL,
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.CANCELLED,
        }
    ),
    TaskStatus.AWAITING_PLAN_APPROVAL: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class PlanStatus(str, Enum):
    """Plan gate status of a delegated task (only used when gating is enabled)."""

    PLANNING = "planning"
    SUBMITTED = "submitted"
    APPROVED = "approved"


@dataclass
class DelegatedTask:
    """
    A tracked unit of work assigned from one actor to another.

    Every status change goes through ``transition()``, which enforces the
    lifecycle table. Terminal tasks (completed, failed, cancelled) reject any
    further mutation.

    Attributes:
        from_actor: Delegator (also the supervisor who reviews the result)
        to_actor: Assignee
        description: What has to be done
        priority: 1 (highest) to 5, default 3
        plan_approval_required: Gate execution behind an approved dev plan
        plan_status: Gate status, None when gating is disabled
        discussion: Append-only log of progress notes
        result: Final output, or the error text for failed tasks
        rework_of: Id of the task whose review triggered this one
        rework_round: 0 for original work, +1 for each rework generation
    """

    from_actor: str
    to_actor: str
    description: str
    id: str = field(default_factory=lambda: new_id("task"))
    priority: int = 3
    status: TaskStatus = TaskStatus.PENDING
    plan_approval_required: bool = False
    plan_status: PlanStatus | None = None
    discussion: list[dict[str, Any]] = field(default_factory=list)
    result: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    conversation_id: str | None = None
    rework_of: str | None = None
    rework_round: int = 0

    def __post_init__(self):
        if self.plan_approval_required and self.plan_status is None:
            self.plan_status = PlanStatus.PLANNING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def tools_unlocked(self) -> bool:
        """True when the assignee may use the full tool set."""
        return not self.plan_approval_required or self.plan_status == PlanStatus.APPROVED

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise StateError(f"Task {self.id} is {self.status.value} and cannot be modified")

    def transition(self, new_status: TaskStatus, result: str | None = None) -> None:
        """
        Move the task to ``new_status``.

        Raises:
            StateError: If the task is terminal or the transition is not allowed
        """
        self._ensure_mutable()
        if new_status != self.status and new_status not in TASK_TRANSITIONS[self.status]:
            raise StateError(
                f"Task {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        now = datetime.now()
        if new_status == TaskStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = now
        if new_status.is_terminal:
            self.completed_at = now
        if result is not None:
            self.result = result

    def set_plan_status(self, plan_status: PlanStatus) -> None:
        self._ensure_mutable()
        if not self.plan_approval_required:
            raise StateError(f"Task {self.id} has no plan approval gate")
        self.plan_status = plan_status

    def add_discussion(self, actor_id: str, content: str) -> None:
        self._ensure_mutable()
        self.discussion.append(
            {"actor": actor_id, "content": content, "timestamp": _iso(datetime.now())}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_actor": self.from_actor,
            "to_actor": self.to_actor,
            "description": self.description,
            "priority": self.priority,
            "status": self.status.value,
            "plan_approval_required": self.plan_approval_required,
            "plan_status": self.plan_status.value if self.plan_status else None,
            "discussion": list(self.discussion),
            "result": self.result,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "conversation_id": self.conversation_id,
            "rework_of": self.rework_of,
            "rework_round": self.rework_round,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DelegatedTask":
        plan_status = data.get("plan_status")
        return cls(
            id=data["id"],
            from_actor=data["from_actor"],
            to_actor=data["to_actor"],
            description=data.get("description", ""),
            priority=data.get("priority", 3),
            status=TaskStatus(data.get("status", "pending")),
            plan_approval_required=data.get("plan_approval_required", False),
            plan_status=PlanStatus(plan_status) if plan_status else None,
            discussion=list(data.get("discussion", [])),
            result=data.get("result"),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            conversation_id=data.get("conversation_id"),
            rework_of=data.get("rework_of"),
            rework_round=data.get("rework_round", 0),
        )


class ReviewOutcome(str, Enum):
    ACCEPTED = "accepted"
    REWORK = "rework"
    SKIPPED = "skipped"
    ACCEPTED_AT_LIMIT = "accepted_at_limit"
    FAILED = "failed"


@dataclass
class ReviewRecord:
    """Outcome of the supervisor review of a completed task."""

    task_id: str
    reviewer: str
    outcome: ReviewOutcome
    feedback: str = ""
    rework_task_id: str | None = None
    reviewed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "reviewer": self.reviewer,
            "outcome": self.outcome.value,
            "feedback": self.feedback,
            "rework_task_id": self.rework_task_id,
            "reviewed_at": _iso(self.reviewed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewRecord":
        return cls(
            task_id=data["task_id"],
            reviewer=data["reviewer"],
            outcome=ReviewOutcome(data["outcome"]),
            feedback=data.get("feedback", ""),
            rework_task_id=data.get("rework_task_id"),
            reviewed_at=_parse_dt(data.get("reviewed_at")) or datetime.now(),
        )


class DevPlanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class DevPlan:
    """
    A plan an assignee must get approved before unrestricted execution.

    A rejected plan may be resubmitted (``revision_count`` increases and the
    status returns to pending); approval is terminal for that revision.
    """

    task_id: str
    author_actor: str
    reviewer_actor: str
    content: str
    id: str = field(default_factory=lambda: new_id("plan"))
    status: DevPlanStatus = DevPlanStatus.PENDING
    feedback: str | None = None
    approve_comment: str | None = None
    revision_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    reviewed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "author_actor": self.author_actor,
            "reviewer_actor": self.reviewer_actor,
            "content": self.content,
            "status": self.status.value,
            "feedback": self.feedback,
            "approve_comment": self.approve_comment,
            "revision_count": self.revision_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "reviewed_at": _iso(self.reviewed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DevPlan":
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            author_actor=data["author_actor"],
            reviewer_actor=data["reviewer_actor"],
            content=data.get("content", ""),
            status=DevPlanStatus(data.get("status", "pending")),
            feedback=data.get("feedback"),
            approve_comment=data.get("approve_comment"),
            revision_count=data.get("revision_count", 0),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=_parse_dt(data.get("updated_at")) or datetime.now(),
            reviewed_at=_parse_dt(data.get("reviewed_at")),
        )


@dataclass
class ToolCall:
    """A named action with flat scalar arguments requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Outcome of one tool execution. Exists only within one loop iteration."""

    name: str
    success: bool
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"name": self.name, "success": True, "result": self.result}
        return {"name": self.name, "success": False, "error": self.error}
