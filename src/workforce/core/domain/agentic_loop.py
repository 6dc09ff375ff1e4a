"""
Agentic Loop Runner

Drives the "ask model -> detect tool calls -> execute tools -> re-ask" cycle
for one actor turn until the model gives a final answer, the iteration cap
is reached, a callback stops the loop or the caller cancels.

Key properties:
- Always terminates: ordinary actors are capped at ``max_iterations``,
  privileged (c_level) actors at a larger but still finite ceiling.
- Cooperative cancellation: a cancel event is checked between iterations
  (and between stream chunks) but never interrupts an in-flight call.
- Context too long: a model call is retried with the newest half of the
  history, then with no history, before the error propagates.
- Malformed tool-call markup is shown back to the model as a visible error
  turn instead of being dropped silently.
- Token usage of every model call is reported to the usage sink (estimated
  when the provider does not report it).
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from workforce.core.domain.context_budget import (
    ContextWindowBudgeter,
    budget_for,
    compress_tool_history,
)
from workforce.core.domain.errors import ContextTooLongError, ProviderError
from workforce.core.domain.models import Actor, ToolCall, ToolResult
from workforce.core.domain.stream_filter import StreamTagFilter
from workforce.core.domain.token_estimator import estimate_messages, estimate_tokens
from workforce.core.domain.tool_calls import (
    ParseIssue,
    has_tool_calls,
    parse_with_issues,
    strip_tool_calls,
)
from workforce.core.interfaces.llm import LLMProviderProtocol
from workforce.core.interfaces.tools import ToolContext, ToolExecutorProtocol
from workforce.core.interfaces.usage import UsageSinkProtocol
from workforce.core.prompts.collaboration_prompts import (
    CANCELLED_NOTICE,
    ITERATION_LIMIT_SENTINEL,
    NEXT_STEP_DIRECTIVE,
    TOOL_CALL_ERROR_TEMPLATE,
    TOOL_FORMAT_REMINDER,
    TOOL_RESULTS_PREFIX,
    TOOL_SCHEMA_PROMPT,
)

# Callback invoked after each tool execution; returning True stops the loop.
ToolCallback = Callable[[ToolCall, ToolResult], bool | None]


@dataclass
class LoopResult:
    """
    Outcome of one agentic loop invocation.

    Attributes:
        content: Final answer (or partial text plus a sentinel)
        tools_used: Distinct tool names in first-use order
        iterations: Model calls made
        hit_iteration_limit: Cap reached without a final answer
        cancelled: Stopped by the cancel event
        stopped_by_callback: Stopped by ``on_tool_executed``
        parse_issues: Malformed tool-call blocks seen during the loop
    """

    content: str
    tools_used: list[str] = field(default_factory=list)
    iterations: int = 0
    hit_iteration_limit: bool = False
    cancelled: bool = False
    stopped_by_callback: bool = False
    parse_issues: list[ParseIssue] = field(default_factory=list)


@dataclass
class _ToolRound:
    results: list[ToolResult]
    turn: str
    stop: bool


class AgenticLoopRunner:
    """
    Tool-augmented response loop for a single actor turn.

    Dependencies are injected: the LLM provider, the tool executor, the
    context budgeter and the usage sink. The runner holds no per-call state.
    """

    MAX_ITERATIONS = 100
    PRIVILEGED_MAX_ITERATIONS = 500

    def __init__(
        self,
        llm_provider: LLMProviderProtocol,
        tool_executor: ToolExecutorProtocol | None = None,
        budgeter: ContextWindowBudgeter | None = None,
        usage_sink: UsageSinkProtocol | None = None,
        max_iterations: int = MAX_ITERATIONS,
        privileged_max_iterations: int = PRIVILEGED_MAX_ITERATIONS,
        history_token_budget: int | None = None,
        context_limit: int = 128_000,
        temperature: float = 0.7,
    ):
        """
        Initialize the runner.

        Args:
            llm_provider: Completion provider (result-dict convention)
            tool_executor: Executes parsed tool calls (None disables tools)
            budgeter: Context window budgeter (a default one is created)
            usage_sink: Receives token usage per model call
            max_iterations: Iteration cap for ordinary actors
            privileged_max_iterations: Finite cap for c_level actors
            history_token_budget: Fixed per-iteration history budget
                (None derives it from context_limit)
            context_limit: Model context window used to derive the budget
            temperature: Sampling temperature for model calls
        """
        if max_iterations < 1 or privileged_max_iterations < 1:
            raise ValueError("Iteration caps must be positive")
        self.llm_provider = llm_provider
        self.tool_executor = tool_executor
        self.budgeter = budgeter or ContextWindowBudgeter()
        self.usage_sink = usage_sink
        self.max_iterations = max_iterations
        self.privileged_max_iterations = privileged_max_iterations
        self.history_token_budget = history_token_budget
        self.context_limit = context_limit
        self.temperature = temperature
        self.logger = structlog.get_logger().bind(component="agentic_loop")

    def iteration_limit(self, actor: Actor) -> int:
        return self.privileged_max_iterations if actor.is_privileged else self.max_iterations

    # ------------------------------------------------------------------
    # Single model call
    # ------------------------------------------------------------------

    def _build_messages(
        self,
        actor: Actor,
        message: str,
        history: list[dict[str, Any]],
        hint: str = "",
    ) -> list[dict[str, Any]]:
        system_prompt = actor.system_prompt or f"You are {actor.name}, {actor.role}."
        if hint:
            system_prompt = f"{system_prompt}\n\n{hint}"
        return [
            {"role": "system", "content": system_prompt},
            *history,
            {"role": "user", "content": message},
        ]

    @staticmethod
    def _history_attempts(history: list[dict[str, Any]]) -> list[list[dict[str, Any]]]:
        """Full history, then the newest half, then nothing."""
        attempts = [history]
        half = history[len(history) - len(history) // 2 :] if history else []
        if len(half) < len(history):
            attempts.append(half)
        if half:
            attempts.append([])
        return attempts

    def _record_usage(
        self,
        actor: Actor,
        messages: list[dict[str, Any]],
        content: str,
        usage: dict[str, Any] | None,
        model: str | None,
    ) -> None:
        if self.usage_sink is None:
            return
        usage = usage or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        estimated = False
        if not prompt_tokens:
            prompt_tokens = estimate_messages(messages)
            estimated = True
        if not completion_tokens:
            completion_tokens = estimate_tokens(content)
            estimated = True
        self.usage_sink.record(
            actor.id,
            prompt_tokens,
            completion_tokens,
            model=model or actor.model,
            estimated=estimated,
        )

    async def chat(
        self,
        actor: Actor,
        message: str,
        history: list[dict[str, Any]] | None = None,
        hint: str = "",
    ) -> str:
        """
        One model call with the context-too-long fallback.

        Raises:
            ContextTooLongError: When even an empty history is too long
            ProviderError: On any other provider failure
        """
        attempts = self._history_attempts(list(history or []))
        for index, attempt_history in enumerate(attempts):
            messages = self._build_messages(actor, message, attempt_history, hint)
            result = await self.llm_provider.complete(
                messages=messages,
                model=actor.model,
                temperature=self.temperature,
            )
            if result.get("success"):
                content = result.get("content") or ""
                self._record_usage(actor, messages, content, result.get("usage"), result.get("model"))
                return content

            error = result.get("error", "Unknown provider error")
            if result.get("context_too_long"):
                if index < len(attempts) - 1:
                    self.logger.warning(
                        "context_too_long_retry",
                        actor_id=actor.id,
                        history_before=len(attempt_history),
                        history_after=len(attempts[index + 1]),
                    )
                    continue
                raise ContextTooLongError(error)
            raise ProviderError(error, retryable=bool(result.get("retryable")))

        raise ContextTooLongError("Context too long")

    # ------------------------------------------------------------------
    # Loop helpers
    # ------------------------------------------------------------------

    def _tools_text(self, tool_filter: str) -> str:
        if self.tool_executor is None or tool_filter == "none":
            return ""
        return self.tool_executor.describe_tools(tool_filter)

    @staticmethod
    def _with_tool_prompt(message: str, tools_text: str, iteration: int) -> str:
        if not tools_text:
            return message
        if iteration == 1:
            return f"{message}\n\n---\n{TOOL_SCHEMA_PROMPT.format(tools=tools_text)}"
        return f"{message}\n\n---\n{TOOL_FORMAT_REMINDER}"

    def _fit_history(
        self,
        actor: Actor,
        history: list[dict[str, Any]],
        prompt: str,
        conversation_id: str | None,
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], str]:
        """Compress old tool rounds, then keep the newest messages that fit."""
        budget = self.history_token_budget
        if budget is None:
            budget = budget_for(
                system_prompt=actor.system_prompt,
                instruction=prompt,
                context_limit=self.context_limit,
            )
        history, _ = compress_tool_history(history, budget)
        window = self.budgeter.fit(history, token_budget=budget, conversation_id=conversation_id)
        return history, window.messages, window.hint

    async def _run_tools(
        self,
        calls: list[ToolCall],
        issues: list[ParseIssue],
        context: ToolContext,
        tools_used: list[str],
        on_tool_executed: ToolCallback | None,
    ) -> _ToolRound:
        results: list[ToolResult] = []
        stop = False
        for call in calls:
            result = await self.tool_executor.execute(call.name, call.arguments, context)
            results.append(result)
            if call.name not in tools_used:
                tools_used.append(call.name)
            context.tools_used.append(call.name)
            if on_tool_executed is not None and on_tool_executed(call, result):
                stop = True

        parts: list[str] = []
        if results:
            parts.append(f"{TOOL_RESULTS_PREFIX}\n\n{self.tool_executor.format_results(results)}")
        if issues:
            parts.append(
                TOOL_CALL_ERROR_TEMPLATE.format(
                    issues="\n".join(f"- {issue.describe()}" for issue in issues)
                )
            )
        return _ToolRound(results=results, turn="\n\n".join(parts), stop=stop)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        actor: Actor,
        instruction: str,
        history: list[dict[str, Any]] | None = None,
        context: ToolContext | None = None,
        tool_filter: str = "full",
        on_tool_executed: ToolCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        conversation_id: str | None = None,
    ) -> LoopResult:
        """
        Run the loop to completion.

        Args:
            actor: Actor whose turn this is
            instruction: Current instruction (user turn)
            history: Prior chat history, oldest first
            context: Tool context (call chain, task ids)
            tool_filter: "full", "planning" or "none"
            on_tool_executed: Callback per tool execution, True stops the loop
            cancel_event: Checked before every iteration
            conversation_id: Key for cached history summaries

        Returns:
            LoopResult

        Raises:
            ProviderError: When the model call fails after retries/fallback
        """
        context = context or ToolContext(actor_id=actor.id, conversation_id=conversation_id)
        context.tool_filter = tool_filter
        limit = self.iteration_limit(actor)
        tools_text = self._tools_text(tool_filter)
        loop_history = list(history or [])
        message = instruction
        partial: list[str] = []
        outcome = LoopResult(content="")

        self.logger.info(
            "loop_start",
            actor_id=actor.id,
            tool_filter=tool_filter,
            history_length=len(loop_history),
            limit=limit,
        )

        final_content: str | None = None
        while outcome.iterations < limit:
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                break
            outcome.iterations += 1
            prompt = self._with_tool_prompt(message, tools_text, outcome.iterations)
            loop_history, window, hint = self._fit_history(actor, loop_history, prompt, conversation_id)

            response = await self.chat(actor, prompt, window, hint)

            if not actor.is_available:
                self.logger.warning("actor_unavailable_mid_loop", actor_id=actor.id, status=actor.status.value)
                final_content = strip_tool_calls(response) or response
                break

            if not tools_text or not has_tool_calls(response):
                final_content = response
                break

            parsed = parse_with_issues(response)
            outcome.parse_issues.extend(parsed.issues)
            text = strip_tool_calls(response)
            if text:
                partial.append(text)

            tool_round = await self._run_tools(
                parsed.calls, parsed.issues, context, outcome.tools_used, on_tool_executed
            )
            self.logger.info(
                "loop_tools_executed",
                actor_id=actor.id,
                iteration=outcome.iterations,
                tools=[c.name for c in parsed.calls],
                issues=len(parsed.issues),
            )

            loop_history = [
                *loop_history,
                {"role": "user", "content": message},
                {"role": "assistant", "content": response},
                {"role": "user", "content": tool_round.turn},
            ]

            if tool_round.stop:
                outcome.stopped_by_callback = True
                partial.append(tool_round.turn)
                break

            called = ", ".join(dict.fromkeys(c.name for c in parsed.calls)) or "the same tools"
            message = NEXT_STEP_DIRECTIVE.format(tools=called)

        if final_content is not None:
            outcome.content = final_content
        else:
            outcome.content = "\n\n".join(partial).strip()
            if outcome.cancelled:
                outcome.content = f"{outcome.content}\n\n{CANCELLED_NOTICE}".strip()
            elif not outcome.stopped_by_callback:
                outcome.hit_iteration_limit = True
                outcome.content = f"{outcome.content}\n\n{ITERATION_LIMIT_SENTINEL}".strip()
                self.logger.warning("loop_iteration_limit", actor_id=actor.id, limit=limit)

        self.logger.info(
            "loop_complete",
            actor_id=actor.id,
            iterations=outcome.iterations,
            tools_used=outcome.tools_used,
            cancelled=outcome.cancelled,
            hit_limit=outcome.hit_iteration_limit,
        )
        return outcome

    async def _stream_model(
        self,
        actor: Actor,
        prompt: str,
        history: list[dict[str, Any]],
        hint: str,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream one model call, retrying with less history on context errors.

        Yields ``{"type": "raw", "content"}`` chunks, then one
        ``{"type": "round_end", "content", "aborted"}``.
        """
        attempts = self._history_attempts(history)
        for index, attempt_history in enumerate(attempts):
            messages = self._build_messages(actor, prompt, attempt_history, hint)
            content = ""
            usage: dict[str, Any] = {}
            error: dict[str, Any] | None = None
            aborted = False
            async for chunk in self.llm_provider.complete_stream(
                messages=messages, model=actor.model, temperature=self.temperature
            ):
                if cancel_event is not None and cancel_event.is_set():
                    aborted = True
                    break
                kind = chunk.get("type")
                if kind == "token":
                    token = chunk.get("content", "")
                    content += token
                    yield {"type": "raw", "content": token}
                elif kind == "done":
                    usage = chunk.get("usage") or {}
                elif kind == "error":
                    error = chunk
                    break

            if error is None:
                self._record_usage(actor, messages, content, usage, usage.get("model"))
                yield {"type": "round_end", "content": content, "aborted": aborted}
                return
            if error.get("context_too_long") and not content and index < len(attempts) - 1:
                self.logger.warning("stream_context_too_long_retry", actor_id=actor.id)
                continue
            if error.get("context_too_long"):
                raise ContextTooLongError(error.get("message", "Context too long"))
            raise ProviderError(error.get("message", "Stream failed"), retryable=bool(error.get("retryable")))

    async def stream(
        self,
        actor: Actor,
        instruction: str,
        history: list[dict[str, Any]] | None = None,
        context: ToolContext | None = None,
        tool_filter: str = "full",
        cancel_event: asyncio.Event | None = None,
        conversation_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Streaming counterpart of ``run()``.

        Yields events:
        - {"type": "token", "content": str}: visible text (tool calls and
          thinking spans hidden)
        - {"type": "tool_result", "name", "success"}
        - {"type": "final", "result": LoopResult}
        """
        context = context or ToolContext(actor_id=actor.id, conversation_id=conversation_id)
        context.tool_filter = tool_filter
        limit = self.iteration_limit(actor)
        tools_text = self._tools_text(tool_filter)
        loop_history = list(history or [])
        message = instruction
        visible: list[str] = []
        outcome = LoopResult(content="")
        finished = False

        while outcome.iterations < limit:
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                break
            outcome.iterations += 1
            prompt = self._with_tool_prompt(message, tools_text, outcome.iterations)
            loop_history, window, hint = self._fit_history(actor, loop_history, prompt, conversation_id)

            tag_filter = StreamTagFilter()
            response = ""
            aborted = False
            async for event in self._stream_model(actor, prompt, window, hint, cancel_event):
                if event["type"] == "raw":
                    shown = tag_filter.process(event["content"])
                    if shown:
                        visible.append(shown)
                        yield {"type": "token", "content": shown}
                else:
                    response = event["content"]
                    aborted = event["aborted"]
            tail = tag_filter.flush()
            if tail:
                visible.append(tail)
                yield {"type": "token", "content": tail}

            if aborted:
                outcome.cancelled = True
                break
            if not actor.is_available or not tools_text or not has_tool_calls(response):
                finished = True
                break

            parsed = parse_with_issues(response)
            outcome.parse_issues.extend(parsed.issues)
            tool_round = await self._run_tools(parsed.calls, parsed.issues, context, outcome.tools_used, None)
            for result in tool_round.results:
                yield {"type": "tool_result", "name": result.name, "success": result.success}

            loop_history = [
                *loop_history,
                {"role": "user", "content": message},
                {"role": "assistant", "content": response},
                {"role": "user", "content": tool_round.turn},
            ]
            called = ", ".join(dict.fromkeys(c.name for c in parsed.calls)) or "the same tools"
            message = NEXT_STEP_DIRECTIVE.format(tools=called)

        outcome.content = "".join(visible).strip()
        if outcome.cancelled:
            yield {"type": "token", "content": f"\n\n{CANCELLED_NOTICE}"}
            outcome.content = f"{outcome.content}\n\n{CANCELLED_NOTICE}".strip()
        elif not finished:
            outcome.hit_iteration_limit = True
            outcome.content = f"{outcome.content}\n\n{ITERATION_LIMIT_SENTINEL}".strip()
        yield {"type": "final", "result": outcome}
