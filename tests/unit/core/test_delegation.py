"""
Unit tests for DelegationStateMachine.

Uses a real roster, dispatcher, plan queue and supervisor; the agentic loop
is replaced by a scripted runner and the messenger by AsyncMock.

Tests verify:
- Task validation and background/synchronous execution
- The plan approval gate (planning, approval, rejection with feedback)
- Supervisor review outcomes including the rework limit
- Cancellation, timeouts and terminal immutability
- Queries, maintenance and persistence
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from workforce.core.domain.agentic_loop import LoopResult
from workforce.core.domain.delegation import DelegationStateMachine, wants_rework
from workforce.core.domain.dev_plans import DevPlanQueue
from workforce.core.domain.dispatcher import ActorMailboxDispatcher
from workforce.core.domain.errors import ProviderError, ValidationError
from workforce.core.domain.models import (
    SYSTEM_ACTOR,
    CallContext,
    DevPlanStatus,
    PlanStatus,
    ReviewOutcome,
    TaskStatus,
    ToolCall,
    ToolResult,
)

ACCEPT = {"success": True, "response": "Looks good, well done.", "tools_used": []}
REJECT = {"success": True, "response": "This is incorrect, please redo it.", "tools_used": []}


class ScriptedLoopRunner:
    """Records every run; ``handler`` decides the outcome."""

    def __init__(self, handler=None):
        self.handler = handler
        self.calls: list[dict] = []

    async def run(
        self,
        actor,
        instruction,
        history=None,
        context=None,
        tool_filter="full",
        on_tool_executed=None,
        cancel_event=None,
        conversation_id=None,
    ):
        self.calls.append(
            {"actor": actor.id, "instruction": instruction, "tool_filter": tool_filter, "context": context}
        )
        if self.handler is not None:
            return await self.handler(
                actor=actor,
                context=context,
                tool_filter=tool_filter,
                on_tool_executed=on_tool_executed,
                cancel_event=cancel_event,
            )
        return LoopResult(content=f"{actor.id} finished the work", iterations=1)


@pytest.fixture
def runner():
    return ScriptedLoopRunner()


@pytest.fixture
def messenger():
    mock = MagicMock()
    mock.send_message = AsyncMock(return_value=ACCEPT)
    mock.notify_boss = MagicMock()
    return mock


@pytest.fixture
def dev_plans(memory_store):
    return DevPlanQueue(store=memory_store)


@pytest.fixture
def machine(roster, runner, messenger, dev_plans, memory_store, supervisor):
    return DelegationStateMachine(
        directory=roster,
        dispatcher=ActorMailboxDispatcher(supervisor=supervisor),
        loop_runner=runner,
        dev_plans=dev_plans,
        supervisor=supervisor,
        messenger=messenger,
        store=memory_store,
    )


def planning_handler(machine, plan_text="Plan: change parser, add tests"):
    """Assignee submits a plan in the planning phase and works normally otherwise."""

    async def handler(actor, context, tool_filter, on_tool_executed, cancel_event):
        if tool_filter == "planning":
            plan = machine.submit_plan(context.task_id, actor.id, plan_text)
            stop = on_tool_executed(
                ToolCall(name="submit_dev_plan", arguments={"content": plan_text}),
                ToolResult(name="submit_dev_plan", success=True, result={"plan_id": plan.id}),
            )
            return LoopResult(content="Plan submitted", iterations=1, stopped_by_callback=bool(stop))
        return LoopResult(content="Implemented as planned", iterations=2, tools_used=["write_file"])

    return handler


class TestCreateTask:
    def test_creates_pending_task(self, machine, memory_store):
        task = machine.create_task("dev_lead", "dev1", "  Fix the login bug ", priority=2)

        assert task.status == TaskStatus.PENDING
        assert task.description == "Fix the login bug"
        assert task.rework_round == 0
        assert memory_store.data["delegated_tasks"][0]["id"] == task.id

    @pytest.mark.parametrize(
        "from_actor,to_actor,description,priority",
        [
            ("dev1", "dev1", "x", 3),
            ("dev_lead", "dev1", "   ", 3),
            ("dev_lead", "dev1", "x", 0),
            ("dev_lead", "dev1", "x", 6),
            ("dev_lead", "ghost", "x", 3),
        ],
    )
    def test_rejects_invalid_requests(self, machine, from_actor, to_actor, description, priority):
        with pytest.raises(ValidationError):
            machine.create_task(from_actor, to_actor, description, priority=priority)

    def test_rejects_unavailable_assignee(self, machine, roster):
        roster.suspend("dev1")

        with pytest.raises(ValidationError, match="suspended"):
            machine.create_task("dev_lead", "dev1", "x")

    def test_rework_round_is_capped(self, machine):
        machine.max_rework_rounds = 1
        original = machine.create_task("dev_lead", "dev1", "x")
        first = machine.create_task("dev_lead", "dev1", "redo", rework_of=original.id)

        assert first.rework_round == 1
        with pytest.raises(ValidationError, match="Rework limit"):
            machine.create_task("dev_lead", "dev1", "redo again", rework_of=first.id)


class TestDelegate:
    @pytest.mark.asyncio
    async def test_background_delegation_completes_and_is_reviewed(self, machine, supervisor, messenger):
        result = await machine.delegate("dev_lead", "dev1", "Write the report")

        assert result["success"]
        assert result["status"] == "pending"
        await supervisor.join(timeout=2)

        task = machine.get_task(result["task_id"])
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "dev1 finished the work"
        review = machine.get_review(task.id)
        assert review.outcome == ReviewOutcome.ACCEPTED
        args, kwargs = messenger.send_message.await_args
        assert args[:2] == (SYSTEM_ACTOR, "dev_lead")
        assert kwargs["reviewing_task_id"] == task.id
        messenger.notify_boss.assert_called_once()

    @pytest.mark.asyncio
    async def test_wait_for_result_returns_outcome(self, machine, runner, supervisor):
        result = await machine.delegate(
            "dev_lead", "dev1", "Write the report", wait_for_result=True, context=CallContext()
        )
        await supervisor.join(timeout=2)

        assert result["success"]
        assert result["status"] == "completed"
        assert result["result"] == "dev1 finished the work"
        assert runner.calls[0]["context"].call.call_chain == ("dev_lead",)
        assert runner.calls[0]["context"].task_id == result["task_id"]

    @pytest.mark.asyncio
    async def test_wait_for_result_detects_cycle(self, machine):
        context = CallContext(call_chain=("dev1",), nesting_depth=1)

        result = await machine.delegate("dev_lead", "dev1", "Help", wait_for_result=True, context=context)

        assert result["success"] is False
        assert result["error_type"] == "cycle_detected"
        assert "dev1 → dev_lead → dev1" in result["error"]
        assert machine.tasks == []

    @pytest.mark.asyncio
    async def test_invalid_delegation_returns_failure_dict(self, machine):
        result = await machine.delegate("dev1", "dev1", "Myself")

        assert result == {
            "success": False,
            "error": "Cannot delegate a task to yourself",
            "error_type": "validation_error",
        }

    @pytest.mark.asyncio
    async def test_provider_failure_fails_task(self, machine, runner, supervisor):
        async def broken(**kwargs):
            raise ProviderError("model unavailable")

        runner.handler = broken
        result = await machine.delegate("dev_lead", "dev1", "x", wait_for_result=True)

        assert result["success"] is False
        assert result["status"] == "failed"
        assert "model unavailable" in machine.get_task(result["task_id"]).result

    @pytest.mark.asyncio
    async def test_timeout_returns_error_but_work_finishes(self, machine, runner, supervisor):
        async def slow(**kwargs):
            await asyncio.sleep(0.05)
            return LoopResult(content="late result")

        runner.handler = slow
        machine.delegate_timeout = 0.01

        result = await machine.delegate("dev_lead", "dev1", "Slow job", wait_for_result=True)

        assert result["success"] is False
        assert result["error_type"] == "timeout"
        await supervisor.join(timeout=2)
        assert machine.get_task(result["task_id"]).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_assignee_suspended_before_start_fails_task(self, machine, roster):
        task = machine.create_task("dev_lead", "dev1", "x")
        roster.suspend("dev1")

        result = await machine.execute_task(task.id)

        assert result["success"] is False
        assert task.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_system_delegation_skips_review(self, machine, supervisor, messenger):
        result = await machine.delegate(SYSTEM_ACTOR, "dev1", "Nightly job", wait_for_result=True)
        await supervisor.join(timeout=2)

        assert machine.get_review(result["task_id"]).outcome == ReviewOutcome.SKIPPED
        messenger.send_message.assert_not_awaited()


class TestPlanGate:
    @pytest.mark.asyncio
    async def test_gated_task_waits_for_approval_then_executes(self, machine, runner, supervisor, messenger):
        runner.handler = planning_handler(machine)

        result = await machine.delegate(
            "dev_lead", "dev1", "Refactor parser", plan_approval_required=True, wait_for_result=True
        )

        assert result["success"]
        assert result["status"] == "awaiting_plan_approval"
        task = machine.get_task(result["task_id"])
        assert task.plan_status == PlanStatus.SUBMITTED
        assert [c["tool_filter"] for c in runner.calls] == ["planning"]

        await supervisor.join(timeout=2)
        args, kwargs = messenger.send_message.await_args
        assert args[1] == "dev_lead"
        assert result["plan_id"] in args[2]
        assert kwargs["history_strategy"] == "focused"

        machine.approve_plan(result["plan_id"], "dev_lead", comment="Keep it small")
        await supervisor.join(timeout=2)

        assert task.status == TaskStatus.COMPLETED
        assert task.plan_status == PlanStatus.APPROVED
        assert [c["tool_filter"] for c in runner.calls] == ["planning", "full"]
        execution_prompt = runner.calls[1]["instruction"]
        assert "Plan: change parser, add tests" in execution_prompt
        assert "Keep it small" in execution_prompt

    @pytest.mark.asyncio
    async def test_execute_while_awaiting_approval_is_noop(self, machine, runner, supervisor):
        runner.handler = planning_handler(machine)
        result = await machine.delegate("dev_lead", "dev1", "x", plan_approval_required=True, wait_for_result=True)
        await supervisor.join(timeout=2)

        again = await machine.execute_task(result["task_id"])

        assert again["status"] == "awaiting_plan_approval"
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_rejection_restarts_planning_with_feedback(self, machine, runner, supervisor, dev_plans):
        runner.handler = planning_handler(machine)
        result = await machine.delegate("dev_lead", "dev1", "x", plan_approval_required=True, wait_for_result=True)

        machine.reject_plan(result["plan_id"], "dev_lead", "Add a rollback strategy")
        await supervisor.join(timeout=2)

        task = machine.get_task(result["task_id"])
        assert task.status == TaskStatus.AWAITING_PLAN_APPROVAL
        assert [c["tool_filter"] for c in runner.calls] == ["planning", "planning"]
        assert "Add a rollback strategy" in runner.calls[1]["instruction"]
        plans = dev_plans.get_all_by_task(task.id)
        assert [p.status for p in plans] == [DevPlanStatus.REJECTED, DevPlanStatus.PENDING]
        assert plans[1].revision_count == 1

    @pytest.mark.asyncio
    async def test_planning_without_plan_fails_task(self, machine, runner):
        async def no_plan(**kwargs):
            return LoopResult(content="I think it's fine")

        runner.handler = no_plan
        result = await machine.delegate("dev_lead", "dev1", "x", plan_approval_required=True, wait_for_result=True)

        assert result["success"] is False
        assert machine.get_task(result["task_id"]).status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_reviewer_or_privileged_can_decide(self, machine, runner, supervisor):
        runner.handler = planning_handler(machine)
        result = await machine.delegate("dev_lead", "dev1", "x", plan_approval_required=True, wait_for_result=True)

        with pytest.raises(ValidationError):
            machine.approve_plan(result["plan_id"], "dev1")

        machine.approve_plan(result["plan_id"], "ceo")
        await supervisor.join(timeout=2)
        assert machine.get_task(result["task_id"]).status == TaskStatus.COMPLETED

    def test_submit_plan_validation(self, machine):
        plain = machine.create_task("dev_lead", "dev1", "no gate")
        gated = machine.create_task("dev_lead", "dev1", "gate", plan_approval_required=True)

        with pytest.raises(ValidationError):
            machine.submit_plan(plain.id, "dev1", "plan")
        with pytest.raises(ValidationError):
            machine.submit_plan(gated.id, "dev_lead", "plan")
        with pytest.raises(ValidationError):
            machine.submit_plan("task_missing", "dev1", "plan")


class TestReview:
    @pytest.mark.asyncio
    async def test_rework_until_limit(self, machine, supervisor, messenger):
        messenger.send_message.return_value = REJECT
        machine.max_rework_rounds = 1

        result = await machine.delegate("dev_lead", "dev1", "Draft the memo")
        await supervisor.join(timeout=2)

        assert len(machine.tasks) == 2
        original, rework = machine.tasks
        assert original.id == result["task_id"]
        assert rework.rework_of == original.id
        assert rework.rework_round == 1
        assert rework.status == TaskStatus.COMPLETED
        assert "Draft the memo" in rework.description

        first_review = machine.get_review(original.id)
        assert first_review.outcome == ReviewOutcome.REWORK
        assert first_review.rework_task_id == rework.id
        assert machine.get_review(rework.id).outcome == ReviewOutcome.ACCEPTED_AT_LIMIT
        assert original.status == TaskStatus.COMPLETED
        assert original.result == "dev1 finished the work"

    @pytest.mark.asyncio
    async def test_review_that_notifies_boss_is_accepted(self, machine, supervisor, messenger):
        messenger.send_message.return_value = {
            "success": True,
            "response": "Reported. It does not meet the bar but is acceptable for now.",
            "tools_used": ["notify_boss"],
        }

        result = await machine.delegate("dev_lead", "dev1", "x")
        await supervisor.join(timeout=2)

        assert machine.get_review(result["task_id"]).outcome == ReviewOutcome.ACCEPTED
        messenger.notify_boss.assert_not_called()

    @pytest.mark.asyncio
    async def test_reviewer_delegating_elsewhere_creates_no_rework(self, machine, supervisor, messenger):
        messenger.send_message.return_value = {
            "success": True,
            "response": "Incorrect totals, I asked Bob to redo the numbers.",
            "tools_used": ["delegate_task"],
        }

        result = await machine.delegate("dev_lead", "dev1", "Prepare the budget table")
        await supervisor.join(timeout=2)

        review = machine.get_review(result["task_id"])
        assert review.outcome == ReviewOutcome.ACCEPTED
        assert review.rework_task_id is None
        assert [t.id for t in machine.tasks] == [result["task_id"]]

    @pytest.mark.asyncio
    async def test_failed_review_is_recorded(self, machine, supervisor, messenger):
        messenger.send_message.return_value = {"success": False, "error": "dev_lead is suspended"}

        result = await machine.delegate("dev_lead", "dev1", "x")
        await supervisor.join(timeout=2)

        review = machine.get_review(result["task_id"])
        assert review.outcome == ReviewOutcome.FAILED
        assert machine.get_task(result["task_id"]).status == TaskStatus.COMPLETED
        messenger.notify_boss.assert_called_once()

    def test_wants_rework(self):
        assert wants_rework("Please REDO this section")
        assert wants_rework("结果不正确，需要修改")
        assert not wants_rework("Great job")
        assert not wants_rework("")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_stops_running_task(self, machine, runner, supervisor):
        started = asyncio.Event()

        async def wait_for_cancel(cancel_event, **kwargs):
            started.set()
            await cancel_event.wait()
            return LoopResult(content="stopped", cancelled=True)

        runner.handler = wait_for_cancel
        result = await machine.delegate("dev_lead", "dev1", "Long job")
        await asyncio.wait_for(started.wait(), timeout=1)

        denied = await machine.cancel_task(result["task_id"], "dev1")
        cancelled = await machine.cancel_task(result["task_id"], "dev_lead", reason="Priorities changed")
        await supervisor.join(timeout=2)

        assert denied["success"] is False
        assert cancelled == {"success": True, "task_id": result["task_id"], "status": "cancelled"}
        task = machine.get_task(result["task_id"])
        assert task.status == TaskStatus.CANCELLED
        assert task.result == "Priorities changed"
        assert machine.get_review(task.id) is None

    @pytest.mark.asyncio
    async def test_cancel_terminal_task_fails(self, machine, supervisor):
        result = await machine.delegate("dev_lead", "dev1", "x", wait_for_result=True)
        await supervisor.join(timeout=2)

        outcome = await machine.cancel_task(result["task_id"], SYSTEM_ACTOR)

        assert outcome["success"] is False
        assert outcome["error_type"] == "state_error"


class TestTerminalTasks:
    @pytest.mark.asyncio
    async def test_completed_task_rejects_changes(self, machine, supervisor):
        result = await machine.delegate("dev_lead", "dev1", "x", wait_for_result=True)
        await supervisor.join(timeout=2)
        task_id = result["task_id"]

        assert machine.add_discussion(task_id, "dev1", "note")["success"] is False
        assert machine.update_task(task_id, priority=1)["error_type"] == "state_error"
        assert (await machine.execute_task(task_id))["error_type"] == "state_error"
        assert machine.get_task(task_id).result == "dev1 finished the work"


class TestQueries:
    def test_get_tasks_filters(self, machine):
        a = machine.create_task("dev_lead", "dev1", "a")
        b = machine.create_task("ceo", "dev_lead", "b")

        assert {t.id for t in machine.get_tasks("dev_lead")} == {a.id, b.id}
        assert [t.id for t in machine.get_tasks("dev_lead", task_type="assigned")] == [a.id]
        assert [t.id for t in machine.get_tasks("dev_lead", task_type="received")] == [b.id]
        assert machine.get_tasks(status="completed") == []

    def test_pending_tasks_by_priority(self, machine):
        low = machine.create_task("dev_lead", "dev1", "low", priority=5)
        high = machine.create_task("dev_lead", "dev1", "high", priority=1)

        assert machine.get_pending_tasks("dev1") == [high, low]

    def test_update_pending_task(self, machine):
        task = machine.create_task("dev_lead", "dev1", "a")

        result = machine.update_task(task.id, priority=1, description="a, but faster")

        assert result["success"]
        assert task.priority == 1
        assert machine.update_task(task.id, priority=9)["success"] is False

    @pytest.mark.asyncio
    async def test_clear_stale_tasks(self, machine):
        old = machine.create_task("dev_lead", "dev1", "old")
        old.created_at = datetime.now() - timedelta(days=3)
        fresh = machine.create_task("dev_lead", "dev1", "fresh")

        assert await machine.clear_stale_tasks(max_age_days=1) == 1
        assert old.status == TaskStatus.CANCELLED
        assert fresh.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_clear_completed_and_stats(self, machine, supervisor):
        await machine.delegate("dev_lead", "dev1", "done", wait_for_result=True)
        machine.create_task("dev_lead", "dev1", "open")
        await supervisor.join(timeout=2)

        stats = machine.get_stats()
        assert stats["by_status"]["completed"] == 1
        assert stats["reviews"] == {"accepted": 1}

        assert machine.clear_completed_tasks() == 1
        assert machine.get_stats()["total"] == 1
        assert machine.reviews == {}


class TestPersistence:
    @pytest.mark.asyncio
    async def test_load_restores_tasks_and_reviews(
        self, machine, supervisor, roster, runner, dev_plans, memory_store
    ):
        result = await machine.delegate("dev_lead", "dev1", "x", wait_for_result=True)
        await supervisor.join(timeout=2)

        restored = DelegationStateMachine(
            directory=roster,
            dispatcher=ActorMailboxDispatcher(supervisor=supervisor),
            loop_runner=runner,
            dev_plans=dev_plans,
            supervisor=supervisor,
            store=memory_store,
        )
        await restored.load()

        assert restored.get_task(result["task_id"]).status == TaskStatus.COMPLETED
        assert restored.get_review(result["task_id"]).outcome == ReviewOutcome.ACCEPTED
        assert memory_store.flushes > 0
