# ============================================
# COLLABORATION TOOLS
# ============================================
"""
Tools through which actors work with each other: messaging, delegation,
the dev plan gate, boss notifications and history browsing.

Every tool acts on behalf of ``context.actor_id`` and forwards the caller's
call context, so nested calls stay subject to the call chain guard.
"""

from typing import Any, Dict

from workforce.application.communication import ActorCommunicationService
from workforce.application.roster import ActorRoster
from workforce.core.domain.delegation import DelegationStateMachine
from workforce.core.interfaces.tools import ToolContext
from workforce.infrastructure.tools.base import Tool


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


class SendToAgentTool(Tool):
    category = "collaboration"

    def __init__(self, communication: ActorCommunicationService, roster: ActorRoster):
        self.communication = communication
        self.roster = roster

    @property
    def name(self) -> str:
        return "send_to_agent"

    @property
    def description(self) -> str:
        return "Send a message to a colleague and wait for the reply"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "target_agent": {"type": "string", "description": "Colleague id or name", "required": True},
            "message": {"type": "string", "description": "What to say or ask", "required": True},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        target = self.roster.resolve(str(args["target_agent"]))
        if target is None:
            return {"success": False, "error": f"Unknown colleague: {args['target_agent']}"}
        result = await self.communication.send_message(
            context.actor_id,
            target.id,
            str(args["message"]),
            context=context.call,
            conversation_id=context.conversation_id,
        )
        if not result.get("success"):
            return result
        return {"success": True, "from": target.id, "response": result["response"]}


class ListColleaguesTool(Tool):
    category = "collaboration"

    def __init__(self, roster: ActorRoster):
        self.roster = roster

    @property
    def name(self) -> str:
        return "list_colleagues"

    @property
    def description(self) -> str:
        return "List your colleagues with their roles and availability"

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        colleagues = [
            {"id": a.id, "name": a.name, "role": a.role, "status": a.status.value}
            for a in self.roster.all()
            if a.id != context.actor_id
        ]
        return {"success": True, "colleagues": colleagues}


class DelegateTaskTool(Tool):
    category = "collaboration"

    def __init__(self, delegation: DelegationStateMachine, roster: ActorRoster):
        self.delegation = delegation
        self.roster = roster

    @property
    def name(self) -> str:
        return "delegate_task"

    @property
    def description(self) -> str:
        return (
            "Assign a tracked task to a colleague. Runs in the background unless "
            "wait_for_result is true. With require_plan_approval the assignee must "
            "get a development plan approved by you first."
        )

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "target_agent": {"type": "string", "description": "Assignee id or name", "required": True},
            "task_description": {"type": "string", "description": "What has to be done", "required": True},
            "priority": {"type": "integer", "description": "1 (highest) to 5, default 3", "required": False},
            "wait_for_result": {"type": "boolean", "description": "Wait for the result", "required": False},
            "require_plan_approval": {"type": "boolean", "description": "Gate execution behind a plan", "required": False},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        target = self.roster.resolve(str(args["target_agent"]))
        if target is None:
            return {"success": False, "error": f"Unknown colleague: {args['target_agent']}"}

        rework_of = None
        if context.reviewing_task_id:
            reviewed = self.delegation.get_task(context.reviewing_task_id)
            if reviewed is not None and reviewed.to_actor == target.id:
                rework_of = reviewed.id

        return await self.delegation.delegate(
            context.actor_id,
            target.id,
            str(args["task_description"]),
            priority=int(args.get("priority") or 3),
            plan_approval_required=_flag(args.get("require_plan_approval", False)),
            wait_for_result=_flag(args.get("wait_for_result", False)),
            context=context.call,
            conversation_id=context.conversation_id,
            rework_of=rework_of,
        )


class ListMyTasksTool(Tool):
    category = "collaboration"

    def __init__(self, delegation: DelegationStateMachine):
        self.delegation = delegation

    @property
    def name(self) -> str:
        return "list_my_tasks"

    @property
    def description(self) -> str:
        return "List tasks you assigned or received"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "type": {"type": "string", "description": "assigned, received or all", "required": False},
            "status": {"type": "string", "description": "Only tasks with this status", "required": False},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        tasks = self.delegation.get_tasks(
            context.actor_id,
            task_type=str(args.get("type") or "all"),
            status=args.get("status") or None,
        )
        return {
            "success": True,
            "tasks": [
                {
                    "id": t.id,
                    "from": t.from_actor,
                    "to": t.to_actor,
                    "status": t.status.value,
                    "priority": t.priority,
                    "description": t.description[:200],
                }
                for t in tasks[:30]
            ],
        }


class SubmitDevPlanTool(Tool):
    category = "plan"

    def __init__(self, delegation: DelegationStateMachine):
        self.delegation = delegation

    @property
    def name(self) -> str:
        return "submit_dev_plan"

    @property
    def description(self) -> str:
        return "Submit your development plan for a task that requires approval"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "task_id": {"type": "string", "description": "Task id (defaults to your current task)", "required": False},
            "content": {"type": "string", "description": "Approach, affected areas, risks, estimate", "required": True},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        task_id = args.get("task_id") or context.task_id
        if not task_id:
            return {"success": False, "error": "task_id is required outside of a task"}
        plan = self.delegation.submit_plan(str(task_id), context.actor_id, str(args["content"]))
        return {
            "success": True,
            "plan_id": plan.id,
            "revision": plan.revision_count,
            "message": f"Plan submitted to {plan.reviewer_actor}. Stop here and wait for the review.",
        }


class ApproveDevPlanTool(Tool):
    category = "plan"

    def __init__(self, delegation: DelegationStateMachine):
        self.delegation = delegation

    @property
    def name(self) -> str:
        return "approve_dev_plan"

    @property
    def description(self) -> str:
        return "Approve a pending development plan so the assignee can start"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "plan_id": {"type": "string", "description": "Plan id", "required": True},
            "comment": {"type": "string", "description": "Optional note for the assignee", "required": False},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        plan = self.delegation.approve_plan(str(args["plan_id"]), context.actor_id, args.get("comment"))
        return {"success": True, "plan_id": plan.id, "status": plan.status.value}


class RejectDevPlanTool(Tool):
    category = "plan"

    def __init__(self, delegation: DelegationStateMachine):
        self.delegation = delegation

    @property
    def name(self) -> str:
        return "reject_dev_plan"

    @property
    def description(self) -> str:
        return "Reject a pending development plan with feedback"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "plan_id": {"type": "string", "description": "Plan id", "required": True},
            "feedback": {"type": "string", "description": "What must change", "required": True},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        plan = self.delegation.reject_plan(str(args["plan_id"]), context.actor_id, str(args["feedback"]))
        return {"success": True, "plan_id": plan.id, "status": plan.status.value}


class NotifyBossTool(Tool):
    category = "collaboration"

    def __init__(self, communication: ActorCommunicationService):
        self.communication = communication

    @property
    def name(self) -> str:
        return "notify_boss"

    @property
    def description(self) -> str:
        return "Send a notification to the human boss"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {"message": {"type": "string", "description": "Notification text", "required": True}}

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        self.communication.notify_boss(context.actor_id, str(args["message"]))
        return {"success": True, "message": "Boss notified"}


class CancelDelegatedTaskTool(Tool):
    category = "collaboration"

    def __init__(self, delegation: DelegationStateMachine):
        self.delegation = delegation

    @property
    def name(self) -> str:
        return "cancel_delegated_task"

    @property
    def description(self) -> str:
        return "Cancel a task you delegated"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "task_id": {"type": "string", "description": "Task id", "required": True},
            "reason": {"type": "string", "description": "Why it is cancelled", "required": False},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        return await self.delegation.cancel_task(
            str(args["task_id"]), context.actor_id, reason=str(args.get("reason") or "")
        )


class CommunicationHistoryTool(Tool):
    category = "collaboration"

    def __init__(self, communication: ActorCommunicationService, roster: ActorRoster):
        self.communication = communication
        self.roster = roster

    @property
    def name(self) -> str:
        return "communication_history"

    @property
    def description(self) -> str:
        return "Browse earlier messages, page 1 is the newest"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "with_agent": {"type": "string", "description": "Colleague id (omit for all your messages)", "required": False},
            "page": {"type": "integer", "description": "Page number, default 1", "required": False},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        page = int(args.get("page") or 1)
        other = args.get("with_agent")
        if other:
            colleague = self.roster.resolve(str(other))
            if colleague is None:
                return {"success": False, "error": f"Unknown colleague: {other}"}
            result = self.communication.get_pairwise_history_page(context.actor_id, colleague.id, page)
        else:
            result = self.communication.get_messages_page(context.actor_id, page)
        return {"success": True, **result}


def create_collaboration_tools(
    roster: ActorRoster,
    communication: ActorCommunicationService,
    delegation: DelegationStateMachine,
) -> list[Tool]:
    return [
        SendToAgentTool(communication, roster),
        ListColleaguesTool(roster),
        DelegateTaskTool(delegation, roster),
        ListMyTasksTool(delegation),
        SubmitDevPlanTool(delegation),
        ApproveDevPlanTool(delegation),
        RejectDevPlanTool(delegation),
        NotifyBossTool(communication),
        CancelDelegatedTaskTool(delegation),
        CommunicationHistoryTool(communication, roster),
    ]
