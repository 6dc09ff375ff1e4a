"""
LLM Provider Protocol

Contract between the orchestration core and the language-model adapter.
Completions return plain result dicts (never raise for provider failures),
mirroring the adapter's success/error convention:

    {"success": True, "content": "...", "usage": {...}, "model": "..."}
    {"success": False, "error": "...", "error_type": "...",
     "retryable": bool, "context_too_long": bool}
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class LLMProviderProtocol(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Run a chat completion and return a result dict."""
        ...

    def complete_stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a chat completion.

        Yields chunks of the form ``{"type": "token", "content": str}``,
        a final ``{"type": "done", "usage": {...}}`` and
        ``{"type": "error", "message": str, ...}`` on failure.
        """
        ...
