"""
Tool Executor

Resolves tool names produced by the model (aliases, near-miss spellings),
normalizes argument names, checks required parameters and the caller's
employment status, then runs the tool. Every outcome, including unknown
tools and exceptions, becomes a ToolResult so the agentic loop can show it
to the model.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional

import structlog

from workforce.core.domain.errors import WorkforceError
from workforce.core.domain.models import ToolResult
from workforce.core.interfaces.actors import ActorDirectoryProtocol
from workforce.core.interfaces.tools import ToolContext
from workforce.infrastructure.tools.base import Tool

MAX_RESULT_CHARS = 10_000

TOOL_NAME_ALIASES = {
    "fs_read": "read_file",
    "file_read": "read_file",
    "read_code": "read_file",
    "readFile": "read_file",
    "fs_write": "write_file",
    "file_write": "write_file",
    "write_code": "write_file",
    "writeFile": "write_file",
    "ls": "list_files",
    "list_dir": "list_files",
    "list_directory": "list_files",
    "listFiles": "list_files",
    "send_message": "send_to_agent",
    "message_agent": "send_to_agent",
    "delegate": "delegate_task",
    "list_agents": "list_colleagues",
    "browse_communication_history": "communication_history",
}

ARGUMENT_ALIASES = {
    "target": "target_agent",
    "targetAgent": "target_agent",
    "recipient": "target_agent",
    "agent": "target_agent",
    "to": "target_agent",
    "taskId": "task_id",
    "planId": "plan_id",
    "filePath": "path",
    "file_path": "path",
    "description": "task_description",
    "task": "task_description",
}

# Tools available while a gated task waits for plan approval
PLANNING_TOOLS = frozenset(
    {
        "read_file",
        "list_files",
        "send_to_agent",
        "list_colleagues",
        "communication_history",
        "submit_dev_plan",
    }
)

_CAMEL_RE = re.compile(r"([A-Z])")


def _normalize_name(name: str) -> str:
    return re.sub(r"[_\-\s]", "", name.lower())


class ToolExecutor:
    """Registry plus safe execution of tools."""

    def __init__(self, directory: Optional[ActorDirectoryProtocol] = None):
        self.directory = directory
        self.tools: Dict[str, Tool] = {}
        self.logger = structlog.get_logger().bind(component="tool_executor")

    def register(self, tool: Tool) -> None:
        self.tools[tool.name] = tool

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def resolve(self, name: str) -> Optional[Tool]:
        """Exact name, then alias, then a match ignoring case, '_', '-' and spaces."""
        name = (name or "").strip()
        if name in self.tools:
            return self.tools[name]
        alias = TOOL_NAME_ALIASES.get(name)
        if alias in self.tools:
            return self.tools[alias]
        wanted = _normalize_name(name)
        return next((t for t in self.tools.values() if _normalize_name(t.name) == wanted), None)

    def available(self, tool_filter: str = "full") -> List[Tool]:
        if tool_filter == "none":
            return []
        if tool_filter == "planning":
            return [t for t in self.tools.values() if t.name in PLANNING_TOOLS]
        return list(self.tools.values())

    def describe_tools(self, tool_filter: str = "full") -> str:
        tools = self.available(tool_filter)
        if not tools:
            return ""
        return "\n".join(tool.describe() for tool in tools)

    @staticmethod
    def _normalize_args(tool: Tool, args: Dict[str, Any]) -> Dict[str, Any]:
        defined = tool.parameters
        if not defined or not args:
            return dict(args or {})
        normalized: Dict[str, Any] = {}
        unmapped: Dict[str, Any] = {}
        for key, value in args.items():
            candidates = [
                key,
                ARGUMENT_ALIASES.get(key, ""),
                _CAMEL_RE.sub(r"_\1", key).lower(),
                f"{key}_id",
                key[:-3] if key.endswith("_id") else "",
            ]
            target = next((c for c in candidates if c and c in defined), None)
            if target is not None and target not in normalized:
                normalized[target] = value
            else:
                unmapped[key] = value
        for key, value in unmapped.items():
            normalized.setdefault(key, value)
        return normalized

    @staticmethod
    def _param_hint(tool: Tool) -> str:
        params = ", ".join(
            f"{p}{'' if spec.get('required') else '?'}" for p, spec in tool.parameters.items()
        )
        return f"Usage: {tool.name}({params})"

    def _blocked(self, context: ToolContext) -> Optional[str]:
        if self.directory is None:
            return None
        actor = self.directory.get(context.actor_id)
        if actor is not None and not actor.is_available:
            return f"You are {actor.status.value} and cannot use tools."
        return None

    async def execute(self, name: str, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        tool = self.resolve(name)
        if tool is None:
            known = ", ".join(sorted(self.tools))
            return ToolResult(name=name, success=False, error=f"Unknown tool: {name}. Available tools: {known}")
        if tool.name != name:
            self.logger.info("tool_name_resolved", requested=name, resolved=tool.name)

        blocked = self._blocked(context)
        if blocked:
            self.logger.warning("tool_blocked", actor_id=context.actor_id, tool=tool.name)
            return ToolResult(name=tool.name, success=False, error=blocked)

        if tool not in self.available(context.tool_filter):
            self.logger.warning(
                "tool_filtered", actor_id=context.actor_id, tool=tool.name, tool_filter=context.tool_filter
            )
            if context.tool_filter == "planning":
                allowed = ", ".join(t.name for t in self.available("planning"))
                error = f"{tool.name} is not available until your plan is approved. Available now: {allowed}"
            else:
                error = f"{tool.name} is not available in this conversation."
            return ToolResult(name=tool.name, success=False, error=error)

        normalized = self._normalize_args(tool, args)
        missing = [p for p in tool.required_parameters if normalized.get(p) in (None, "")]
        if missing:
            return ToolResult(
                name=tool.name,
                success=False,
                error=f"Missing required parameter(s): {', '.join(missing)}. {self._param_hint(tool)}",
            )

        self.logger.info("tool_executing", tool=tool.name, actor_id=context.actor_id, arg_keys=list(normalized))
        try:
            result = await tool.execute(normalized, context)
        except WorkforceError as e:
            return ToolResult(name=tool.name, success=False, error=e.message)
        except Exception as e:
            self.logger.error("tool_failed", tool=tool.name, error_type=type(e).__name__, error=str(e))
            return ToolResult(name=tool.name, success=False, error=f"{type(e).__name__}: {e}")

        if isinstance(result, dict) and result.get("success") is False:
            error = result.get("error") or "Tool failed"
            return ToolResult(name=tool.name, success=False, error=f"{error}\n{self._param_hint(tool)}")
        return ToolResult(name=tool.name, success=True, result=result)

    @staticmethod
    def _render(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, indent=2, default=str)

    def format_results(self, results: List[ToolResult]) -> str:
        blocks = []
        for result in results:
            body = self._render(result.result) if result.success else f"Error: {result.error}"
            if len(body) > MAX_RESULT_CHARS:
                body = body[:MAX_RESULT_CHARS] + f"\n...(truncated, {len(body)} chars total)"
            blocks.append(
                f'<tool_result name="{result.name}" success="{str(result.success).lower()}">\n'
                f"{body}\n</tool_result>"
            )
        return "\n\n".join(blocks)
