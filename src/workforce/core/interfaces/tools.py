"""
Tool Protocols

A tool is a named action the model can request. Tools receive their parsed
arguments plus a ToolContext describing who is calling and from where in the
call graph. Failures are reported as ``{"success": False, "error": ...}``
dicts or raised; the executor turns both into a ToolResult.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from workforce.core.domain.models import CallContext, ToolResult


@dataclass
class ToolContext:
    """
    Caller information passed to every tool execution.

    Attributes:
        actor_id: Actor whose loop requested the tool
        call: Call-graph position of that actor's current turn
        conversation_id: Conversation the turn belongs to
        task_id: Delegated task being worked on, if any
        reviewing_task_id: Task under supervisor review, if any
        tools_used: Names of tools already used in this turn
        tool_filter: Tool set the loop exposes ("full", "planning" or "none")
    """

    actor_id: str
    call: CallContext = field(default_factory=CallContext)
    conversation_id: str | None = None
    task_id: str | None = None
    reviewing_task_id: str | None = None
    tools_used: list[str] = field(default_factory=list)
    tool_filter: str = "full"


class ToolProtocol(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def parameters(self) -> dict[str, dict[str, Any]]:
        """``{param: {"type": str, "description": str, "required": bool}}``"""
        ...

    @property
    def category(self) -> str: ...

    async def execute(self, args: dict[str, Any], context: ToolContext) -> Any: ...


class ToolExecutorProtocol(Protocol):
    async def execute(self, name: str, args: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run one tool. Unknown names yield a failed ToolResult."""
        ...

    def describe_tools(self, tool_filter: str = "full") -> str:
        """Tool schema text for the model prompt."""
        ...

    def format_results(self, results: list[ToolResult]) -> str: ...
