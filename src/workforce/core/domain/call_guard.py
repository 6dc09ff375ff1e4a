"""
Call Chain Guard

Admission checks for actor-to-actor calls, evaluated before any queuing or
I/O happens:

- Cycle check: the target must not already appear in the call chain,
  otherwise two actors would wait on each other's mailbox forever.
- Depth check: the nesting depth must stay below ``MAX_NESTING_DEPTH``.

The guard has no side effects. Calls originated by the non-actor "system"
(internally triggered notifications such as supervisor reviews) bypass it.
"""

import structlog

from workforce.core.domain.errors import CycleError, DepthError
from workforce.core.domain.models import SYSTEM_ACTOR, CallContext

MAX_NESTING_DEPTH = 5
CHAIN_SEPARATOR = " → "

logger = structlog.get_logger().bind(component="call_guard")


def render_cycle(call_chain: tuple[str, ...] | list[str], target: str) -> str:
    """Render the cycle closed by ``target`` as ``a → b → target``."""
    chain = list(call_chain)
    start = chain.index(target) if target in chain else 0
    return CHAIN_SEPARATOR.join([*chain[start:], target])


def check_call_chain(
    target: str,
    context: CallContext,
    max_depth: int = MAX_NESTING_DEPTH,
) -> None:
    """
    Validate a proposed call against the cycle and depth rules.

    Args:
        target: Actor id about to be called
        context: Call context of the call, including the caller in its chain
        max_depth: Maximum allowed nesting depth

    Raises:
        CycleError: If target already appears in the call chain
        DepthError: If the nesting depth reached max_depth
    """
    if target in context.call_chain:
        raise CycleError(target, render_cycle(context.call_chain, target))
    if context.nesting_depth >= max_depth:
        raise DepthError(context.nesting_depth, max_depth)


class CallChainGuard:
    """Admission gate used by the communication service before enqueueing."""

    def __init__(self, max_depth: int = MAX_NESTING_DEPTH):
        self.max_depth = max_depth

    def validate(self, from_actor: str, target: str, context: CallContext) -> None:
        """
        Check a call from ``from_actor`` to ``target``.

        The caller is appended to the chain when it is not already the tail,
        so ``cfo`` calling ``ceo`` inside chain ``[ceo]`` is detected as the
        cycle ``ceo → cfo → ceo``.

        Raises:
            CycleError: On a cycle
            DepthError: When the depth limit is reached
        """
        if from_actor == SYSTEM_ACTOR:
            return
        effective = CallContext(
            call_chain=context.effective_chain(from_actor),
            nesting_depth=context.nesting_depth,
        )
        try:
            check_call_chain(target, effective, self.max_depth)
        except (CycleError, DepthError) as e:
            logger.warning(
                "call_rejected",
                from_actor=from_actor,
                target=target,
                depth=context.nesting_depth,
                reason=e.error_type,
                error=e.message,
            )
            raise
