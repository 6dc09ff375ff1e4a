"""
Core Domain Errors

Error taxonomy for the orchestration core. Domain objects raise these
exceptions internally; the service layer converts them into structured
failure dicts (``{"success": False, "error": ..., "error_type": ...}``) so
that actor logic can react to a failure instead of crashing.

Hierarchy:
- WorkforceError
  - ValidationError: self-delegation, unknown actor, bad parameters
  - ConcurrencyError: call admission failures
    - CycleError: target already in the call chain
    - DepthError: nesting depth limit reached
  - StateError: operation invalid for the current status
  - CallTimeoutError: caller-side deadline exceeded
  - QueueClearedError: queued call dropped because the actor was terminated
  - ProviderError: language-model failure (retryable or fatal)
    - ContextTooLongError: prompt rejected as too large
  - PersistenceError: store failure (logged only)
"""

from typing import Any


class WorkforceError(Exception):
    """Base class for all orchestration errors."""

    error_type = "workforce_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_result(self) -> dict[str, Any]:
        """Render the error as a structured failure value."""
        return {
            "success": False,
            "error": self.message,
            "error_type": self.error_type,
        }


class ValidationError(WorkforceError):
    """Request rejected before any queuing (bad actor, bad parameters)."""

    error_type = "validation_error"


class ConcurrencyError(WorkforceError):
    """Call rejected by the admission checks."""

    error_type = "concurrency_error"


class CycleError(ConcurrencyError):
    """
    Target actor already appears in the call chain.

    Attributes:
        chain: The offending chain rendered as ``a → b → target``
        target: Actor id that closed the cycle
    """

    error_type = "cycle_detected"

    def __init__(self, target: str, chain: str):
        super().__init__(f"Circular call detected: {chain}")
        self.target = target
        self.chain = chain


class DepthError(ConcurrencyError):
    """Nesting depth reached the configured limit."""

    error_type = "depth_exceeded"

    def __init__(self, depth: int, max_depth: int):
        super().__init__(
            f"Call nesting depth limit reached ({depth} >= {max_depth})"
        )
        self.depth = depth
        self.max_depth = max_depth


class StateError(WorkforceError):
    """Operation is not valid for the current task, plan or message status."""

    error_type = "state_error"


class CallTimeoutError(WorkforceError, TimeoutError):
    """
    Caller-side deadline exceeded.

    The underlying work may still be running and can complete later.
    """

    error_type = "timeout"

    def __init__(self, label: str, timeout: float):
        super().__init__(f"{label} timed out after {timeout:g}s")
        self.label = label
        self.timeout = timeout


class QueueClearedError(WorkforceError):
    """Queued call was dropped before it started."""

    error_type = "queue_cleared"


class ProviderError(WorkforceError):
    """
    Language-model provider failure.

    Attributes:
        retryable: True for transient transport failures
    """

    error_type = "provider_error"

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ContextTooLongError(ProviderError):
    """Provider rejected the prompt because it exceeds the context window."""

    error_type = "context_too_long"

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class PersistenceError(WorkforceError):
    """Store failure. Logged only, in-memory state stays authoritative."""

    error_type = "persistence_error"
