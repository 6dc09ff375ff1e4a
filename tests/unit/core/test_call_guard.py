"""
Unit tests for the call chain guard.

Tests verify:
- Cycles are detected including the caller itself
- Depth limit is enforced at max_depth
- The system actor bypasses the checks
- CallContext.extend records the caller once
"""

import pytest

from workforce.core.domain.call_guard import (
    MAX_NESTING_DEPTH,
    CallChainGuard,
    check_call_chain,
    render_cycle,
)
from workforce.core.domain.errors import CycleError, DepthError
from workforce.core.domain.models import SYSTEM_ACTOR, CallContext


class TestCheckCallChain:
    def test_allows_new_target(self):
        check_call_chain("cfo", CallContext(call_chain=("ceo",), nesting_depth=1))

    def test_rejects_target_in_chain(self):
        with pytest.raises(CycleError) as exc_info:
            check_call_chain("ceo", CallContext(call_chain=("ceo", "cfo"), nesting_depth=2))

        assert exc_info.value.target == "ceo"
        assert exc_info.value.chain == "ceo → cfo → ceo"

    def test_rejects_depth_at_limit(self):
        context = CallContext(call_chain=("a",), nesting_depth=MAX_NESTING_DEPTH)

        with pytest.raises(DepthError) as exc_info:
            check_call_chain("b", context)

        assert exc_info.value.depth == MAX_NESTING_DEPTH

    def test_allows_depth_below_limit(self):
        check_call_chain("b", CallContext(call_chain=("a",), nesting_depth=MAX_NESTING_DEPTH - 1))

    def test_cycle_checked_before_depth(self):
        context = CallContext(call_chain=("a", "b"), nesting_depth=MAX_NESTING_DEPTH)

        with pytest.raises(CycleError):
            check_call_chain("a", context)


class TestRenderCycle:
    def test_starts_at_first_occurrence_of_target(self):
        assert render_cycle(("x", "ceo", "cfo"), "ceo") == "ceo → cfo → ceo"

    def test_target_not_in_chain_renders_whole_chain(self):
        assert render_cycle(["a", "b"], "c") == "a → b → c"


class TestCallChainGuard:
    def test_caller_counts_as_part_of_chain(self):
        """ceo asks cfo, cfo calls back to ceo: ceo → cfo → ceo."""
        guard = CallChainGuard()
        context_of_cfo = CallContext().extend("ceo")

        with pytest.raises(CycleError) as exc_info:
            guard.validate("cfo", "ceo", context_of_cfo)

        assert exc_info.value.chain == "ceo → cfo → ceo"

    def test_direct_call_back_to_self_in_chain(self):
        guard = CallChainGuard()

        with pytest.raises(CycleError):
            guard.validate("cfo", "cfo", CallContext())

    def test_custom_max_depth(self):
        guard = CallChainGuard(max_depth=2)

        guard.validate("a", "b", CallContext(nesting_depth=1))
        with pytest.raises(DepthError):
            guard.validate("a", "b", CallContext(nesting_depth=2))

    def test_system_actor_bypasses_checks(self):
        guard = CallChainGuard(max_depth=1)
        context = CallContext(call_chain=("ceo",), nesting_depth=10)

        guard.validate(SYSTEM_ACTOR, "ceo", context)

    def test_validate_has_no_side_effects(self):
        guard = CallChainGuard()
        context = CallContext(call_chain=("ceo",), nesting_depth=1)

        guard.validate("cfo", "dev1", context)

        assert context.call_chain == ("ceo",)
        assert context.nesting_depth == 1


class TestCallContext:
    def test_extend_appends_caller_and_increments_depth(self):
        context = CallContext().extend("ceo").extend("cfo")

        assert context.call_chain == ("ceo", "cfo")
        assert context.nesting_depth == 2

    def test_extend_does_not_duplicate_tail(self):
        context = CallContext(call_chain=("ceo",), nesting_depth=1).extend("ceo")

        assert context.call_chain == ("ceo",)
        assert context.nesting_depth == 2

    def test_to_dict(self):
        assert CallContext(("a", "b"), 2).to_dict() == {"call_chain": ["a", "b"], "nesting_depth": 2}
