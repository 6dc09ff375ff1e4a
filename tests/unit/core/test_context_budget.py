"""
Unit tests for the context window budgeter.

Tests verify:
- The kept window is a contiguous suffix and grows monotonically with the budget
- Excluded messages produce a pager hint or cached summaries
- SummaryCache TTL and LRU eviction
- Pagination from the newest end
- Tool history compression past 60% of the budget
"""

import pytest

from workforce.core.domain.context_budget import (
    BudgetWindow,
    ContextWindowBudgeter,
    SummaryCache,
    budget_for,
    compress_tool_history,
    fit_suffix,
    paginate,
)
from workforce.core.domain.token_estimator import estimate_message_cost, estimate_tokens
from workforce.core.prompts.collaboration_prompts import TOOL_RESULTS_PREFIX


def make_history(count: int, size: int = 40) -> list[dict]:
    return [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i} " + "x" * size}
        for i in range(count)
    ]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestFitSuffix:
    def test_keeps_everything_when_budget_allows(self):
        history = make_history(5)

        kept, used = fit_suffix(history, 10_000)

        assert kept == history
        assert used == sum(estimate_message_cost(m) for m in history)

    def test_keeps_newest_messages(self):
        history = make_history(10)
        budget = estimate_message_cost(history[-1]) * 3

        kept, _ = fit_suffix(history, budget)

        assert kept == history[-3:]

    def test_zero_budget(self):
        assert fit_suffix(make_history(3), 0) == ([], 0)

    def test_larger_budget_never_drops_kept_messages(self):
        history = make_history(30, size=25)
        previous: list[dict] = []
        for budget in range(0, 1000, 37):
            kept, _ = fit_suffix(history, budget)
            assert kept == history[len(history) - len(kept) :]
            assert len(kept) >= len(previous)
            previous = kept


class TestBudgeter:
    def test_empty_history(self):
        assert ContextWindowBudgeter().fit([]) == BudgetWindow()

    def test_no_hint_when_nothing_excluded(self):
        window = ContextWindowBudgeter().fit(make_history(4), token_budget=10_000)

        assert not window.has_more
        assert window.hint == ""
        assert window.total_messages == 4

    def test_pager_hint_when_messages_excluded(self):
        history = make_history(20)

        window = ContextWindowBudgeter().fit(history, recent_count=5)

        assert window.messages == history[-5:]
        assert window.has_more
        assert window.excluded_count == 15
        assert "15 earlier messages" in window.hint
        assert "communication_history" in window.hint

    def test_token_budget_keeps_newest_that_fit(self):
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"{i}" + "x" * 103}
            for i in range(10)
        ]
        assert {estimate_message_cost(m) for m in history} == {50}

        window = ContextWindowBudgeter().fit(history, token_budget=120)

        assert window.messages == history[-2:]
        assert window.estimated_tokens == 100
        assert window.has_more
        assert window.excluded_count == 8
        assert "8 earlier messages" in window.hint

    def test_cached_summaries_replace_pager_hint(self):
        budgeter = ContextWindowBudgeter(page_size=10)
        budgeter.cache_summary("conv-1", 1, "CFO approved the budget.")

        window = budgeter.fit(make_history(20), recent_count=5, conversation_id="conv-1")

        assert "CFO approved the budget." in window.hint
        assert "[Summary of earlier messages]" in window.hint

    def test_summaries_ignored_when_disabled(self):
        budgeter = ContextWindowBudgeter()
        budgeter.cache_summary("conv-1", 1, "summary")

        window = budgeter.fit(
            make_history(60), recent_count=5, conversation_id="conv-1", include_summary=False
        )

        assert window.hint.startswith("[Note:")

    def test_token_budget_takes_precedence(self):
        history = make_history(10)
        budget = estimate_message_cost(history[-1]) * 2

        window = ContextWindowBudgeter().fit(history, token_budget=budget, recent_count=9)

        assert len(window.messages) == 2

    @pytest.mark.asyncio
    async def test_load_page_without_pager(self):
        assert await ContextWindowBudgeter().load_page("conv", 1) == []

    @pytest.mark.asyncio
    async def test_load_page_uses_pager(self):
        class Pager:
            async def get_page(self, conversation_id, page_index):
                return [{"role": "user", "content": f"{conversation_id}:{page_index}"}]

        budgeter = ContextWindowBudgeter(pager=Pager())

        assert await budgeter.load_page("conv", 2) == [{"role": "user", "content": "conv:2"}]


class TestSummaryCache:
    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = SummaryCache(ttl=60, clock=clock)
        cache.put("c", 1, "s")

        clock.now = 59
        assert cache.get("c", 1) == "s"
        clock.now = 121
        assert cache.get("c", 1) is None

    def test_least_recently_read_evicted_first(self):
        cache = SummaryCache(max_entries=2, clock=FakeClock())
        cache.put("c", 1, "one")
        cache.put("c", 2, "two")
        cache.get("c", 1)
        cache.put("c", 3, "three")

        assert cache.get("c", 2) is None
        assert cache.get("c", 1) == "one"
        assert len(cache) == 2

    def test_clear_conversation(self):
        cache = SummaryCache()
        cache.put("a", 1, "x")
        cache.put("b", 1, "y")

        cache.clear_conversation("a")

        assert cache.get("a", 1) is None
        assert cache.get("b", 1) == "y"


class TestPaginate:
    def test_page_zero_is_newest(self):
        items = list(range(12))

        page = paginate(items, page=0, page_size=5)

        assert page["messages"] == [7, 8, 9, 10, 11]
        assert page["total_pages"] == 3
        assert page["has_more"]

    def test_last_page(self):
        page = paginate(list(range(12)), page=2, page_size=5)

        assert page["messages"] == [0, 1]
        assert not page["has_more"]

    def test_out_of_range(self):
        assert paginate(list(range(3)), page=5, page_size=5)["messages"] == []
        assert paginate([], page=0)["total_pages"] == 0


class TestCompressToolHistory:
    def test_small_history_untouched(self):
        history = make_history(6)

        assert compress_tool_history(history, 100_000) == (history, False)

    def test_old_tool_results_truncated_recent_kept(self):
        long_result = f"{TOOL_RESULTS_PREFIX}\n\n" + "r" * 2000
        long_answer = "<tool_call><name>read_file</name></tool_call>" + "a" * 2000
        history = [
            {"role": "assistant", "content": long_answer},
            {"role": "user", "content": long_result},
            {"role": "assistant", "content": long_answer},
            {"role": "user", "content": long_result},
            {"role": "assistant", "content": long_answer},
            {"role": "user", "content": long_result},
        ]

        compressed, changed = compress_tool_history(history, token_budget=1000)

        assert changed
        assert compressed[-4:] == history[-4:]
        assert "truncated" in compressed[0]["content"]
        assert "read_file" in compressed[0]["content"]
        assert compressed[1]["content"].startswith(TOOL_RESULTS_PREFIX)
        assert len(compressed[1]["content"]) < 500


class TestBudgetFor:
    def test_subtracts_prompt_and_reserves(self):
        budget = budget_for("system", "instruction", context_limit=10_000, output_reserve=1000, safety_margin=500)

        assert budget == 8500 - estimate_tokens("system") - estimate_tokens("instruction")

    def test_never_negative(self):
        assert budget_for("x" * 10_000, context_limit=100) == 0


class TestTokenEstimator:
    def test_cjk_costs_more_than_latin(self):
        assert estimate_tokens("预算审批") > estimate_tokens("abcd")

    def test_empty(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0
