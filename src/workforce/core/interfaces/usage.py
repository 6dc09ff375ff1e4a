"""Usage/budget sink protocol."""

from typing import Protocol


class UsageSinkProtocol(Protocol):
    def record(
        self,
        actor_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        model: str | None = None,
        estimated: bool = False,
    ) -> None:
        """Record the token usage of one model call."""
        ...
