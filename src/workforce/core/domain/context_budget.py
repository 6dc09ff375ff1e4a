"""
Context Window Budgeter

Trims conversation history to fit a token budget (or a fixed message count)
and tells the model about what was left out.

The kept window is always the largest contiguous suffix of the history whose
estimated cost fits the budget, so a larger budget never drops a message a
smaller budget kept. When older messages are excluded the window carries a
hint: cached summaries of the excluded pages when available, otherwise a
pointer to the history pager tool so older pages are fetched explicitly
instead of being silently lost.
"""

import math
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from workforce.core.domain.token_estimator import (
    estimate_message_cost,
    estimate_messages,
    estimate_tokens,
)
from workforce.core.interfaces.pager import HistoryPagerProtocol
from workforce.core.prompts.collaboration_prompts import TOOL_RESULTS_PREFIX

PAGE_SIZE = 50
SUMMARY_CACHE_TTL = 30 * 60
SUMMARY_CACHE_MAX_ENTRIES = 100

DEFAULT_CONTEXT_LIMIT = 128_000
DEFAULT_OUTPUT_RESERVE = 4096
SAFETY_MARGIN = 500

TOOL_LOOP_COMPRESS_RATIO = 0.6
TOOL_LOOP_KEEP_ROUNDS = 2
TRUNCATED_MESSAGE_CHARS = 300

_TOOL_NAME_RE = re.compile(r"<name>([^<]+)</name>")


class SummaryCache:
    """
    LRU cache of page summaries keyed by (conversation id, page index).

    Entries expire ``ttl`` seconds after they were stored; when the cache
    grows past ``max_entries`` the least recently read entries go first.
    """

    def __init__(
        self,
        ttl: float = SUMMARY_CACHE_TTL,
        max_entries: int = SUMMARY_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[tuple[str, int], tuple[str, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, conversation_id: str, page_index: int, summary: str) -> None:
        key = (conversation_id, page_index)
        self._entries[key] = (summary, self._clock())
        self._entries.move_to_end(key)
        self._evict()

    def get(self, conversation_id: str, page_index: int) -> str | None:
        key = (conversation_id, page_index)
        entry = self._entries.get(key)
        if entry is None:
            return None
        summary, stored_at = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return summary

    def clear_conversation(self, conversation_id: str) -> None:
        for key in [k for k in self._entries if k[0] == conversation_id]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (_, ts) in self._entries.items() if now - ts > self.ttl]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


@dataclass
class BudgetWindow:
    """
    Result of fitting history into a budget.

    Attributes:
        messages: Kept contiguous suffix of the history
        has_more: True when older messages were excluded
        excluded_count: Number of excluded messages
        total_messages: Length of the full history
        estimated_tokens: Estimated cost of the kept messages
        hint: Summary or pager instructions for the excluded prefix
    """

    messages: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    excluded_count: int = 0
    total_messages: int = 0
    estimated_tokens: int = 0
    hint: str = ""


def fit_suffix(history: list[dict[str, Any]], token_budget: int) -> tuple[list[dict[str, Any]], int]:
    """
    Largest contiguous suffix of ``history`` whose estimated cost fits.

    Returns:
        (kept messages, their estimated cost)
    """
    used = 0
    start = len(history)
    for i in range(len(history) - 1, -1, -1):
        cost = estimate_message_cost(history[i])
        if used + cost > token_budget:
            break
        used += cost
        start = i
    return list(history[start:]), used


def budget_for(
    system_prompt: str = "",
    instruction: str = "",
    context_limit: int = DEFAULT_CONTEXT_LIMIT,
    output_reserve: int = DEFAULT_OUTPUT_RESERVE,
    safety_margin: int = SAFETY_MARGIN,
) -> int:
    """History budget left after the system prompt, instruction and reserves."""
    remaining = (
        context_limit
        - output_reserve
        - safety_margin
        - estimate_tokens(system_prompt)
        - estimate_tokens(instruction)
    )
    return max(0, remaining)


def paginate(messages: list[Any], page: int = 0, page_size: int = PAGE_SIZE) -> dict[str, Any]:
    """
    Slice a message list into pages counted from the newest end.

    Page 0 holds the newest ``page_size`` messages.
    """
    total = len(messages)
    total_pages = math.ceil(total / page_size) if total else 0
    if page < 0 or page >= max(total_pages, 1) or total == 0:
        return {
            "total_messages": total,
            "total_pages": total_pages,
            "page": page,
            "messages": [],
            "has_more": False,
        }
    end = total - page * page_size
    start = max(0, end - page_size)
    return {
        "total_messages": total,
        "total_pages": total_pages,
        "page": page,
        "messages": messages[start:end],
        "has_more": start > 0,
    }


def compress_tool_history(
    messages: list[dict[str, Any]],
    token_budget: int,
    keep_rounds: int = TOOL_LOOP_KEEP_ROUNDS,
    truncate_to: int = TRUNCATED_MESSAGE_CHARS,
) -> tuple[list[dict[str, Any]], bool]:
    """
    Shrink old tool rounds once the loop history passes 60% of the budget.

    The newest ``keep_rounds`` assistant/result pairs stay verbatim; older
    tool results and long assistant turns are truncated.

    Returns:
        (messages, was_compressed)
    """
    if not messages or estimate_messages(messages) <= token_budget * TOOL_LOOP_COMPRESS_RATIO:
        return messages, False

    keep_count = keep_rounds * 2
    older, recent = messages[:-keep_count], messages[-keep_count:]
    if not older:
        return messages, False

    compressed: list[dict[str, Any]] = []
    for msg in older:
        content = msg.get("content")
        if not isinstance(content, str) or len(content) <= truncate_to:
            compressed.append(msg)
        elif msg.get("role") == "user" and content.startswith(TOOL_RESULTS_PREFIX):
            compressed.append({
                "role": "user",
                "content": content[:truncate_to] + "\n...(truncated, call the tool again for full output)",
            })
        elif msg.get("role") == "assistant":
            tools = _TOOL_NAME_RE.findall(content)
            tool_note = f"\n(tools called: {', '.join(tools)})" if tools else ""
            compressed.append({
                "role": "assistant",
                "content": content[:200] + f"\n...(truncated){tool_note}",
            })
        else:
            compressed.append(msg)
    return compressed + recent, True


class ContextWindowBudgeter:
    """Fits history into a window and builds the hint for excluded messages."""

    def __init__(
        self,
        summary_cache: SummaryCache | None = None,
        pager: HistoryPagerProtocol | None = None,
        page_size: int = PAGE_SIZE,
        pager_tool: str = "communication_history",
    ):
        self.summary_cache = summary_cache or SummaryCache()
        self.pager = pager
        self.page_size = page_size
        self.pager_tool = pager_tool
        self.logger = structlog.get_logger().bind(component="context_budget")

    def fit(
        self,
        history: list[dict[str, Any]],
        token_budget: int | None = None,
        recent_count: int | None = None,
        conversation_id: str | None = None,
        include_summary: bool = True,
    ) -> BudgetWindow:
        """
        Keep the newest messages that fit.

        Args:
            history: Full chat history, oldest first
            token_budget: Token allowance (takes precedence over recent_count)
            recent_count: Fixed number of newest messages to keep
            conversation_id: Key for cached summaries
            include_summary: Use cached summaries in the hint

        Returns:
            BudgetWindow with the kept suffix and hint
        """
        if not history:
            return BudgetWindow()

        if token_budget is not None:
            kept, used = fit_suffix(history, max(0, token_budget))
        else:
            count = self.page_size if recent_count is None else max(0, recent_count)
            kept = list(history[-count:]) if count else []
            used = sum(estimate_message_cost(m) for m in kept)

        excluded = len(history) - len(kept)
        window = BudgetWindow(
            messages=kept,
            has_more=excluded > 0,
            excluded_count=excluded,
            total_messages=len(history),
            estimated_tokens=used,
        )
        if excluded:
            window.hint = self._build_hint(excluded, len(kept), conversation_id, include_summary)
            self.logger.debug(
                "history_trimmed",
                total=len(history),
                kept=len(kept),
                excluded=excluded,
                token_budget=token_budget,
            )
        return window

    def _build_hint(
        self,
        excluded: int,
        kept: int,
        conversation_id: str | None,
        include_summary: bool,
    ) -> str:
        older_pages = math.ceil(excluded / self.page_size)
        summaries: list[str] = []
        if include_summary and conversation_id:
            for page in range(1, older_pages + 1):
                cached = self.summary_cache.get(conversation_id, page)
                if cached:
                    summaries.append(cached)

        if summaries:
            joined = "\n".join(summaries)
            return (
                f"[Summary of earlier messages]\n{joined}\n\n"
                f"[End of summary, the {kept} most recent messages follow]"
            )
        return (
            f"[Note: {excluded} earlier messages ({older_pages} page(s)) are not shown. "
            f"Use the {self.pager_tool} tool with a page number to read them.]"
        )

    def cache_summary(self, conversation_id: str, page_index: int, summary: str) -> None:
        self.summary_cache.put(conversation_id, page_index, summary)

    async def load_page(self, conversation_id: str, page_index: int) -> list[dict[str, Any]]:
        """Fetch an older page through the external history pager."""
        if self.pager is None:
            return []
        return await self.pager.get_page(conversation_id, page_index)
