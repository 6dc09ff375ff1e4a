"""
Actor Directory and Messenger Protocols

The delegation state machine looks actors up through the directory and
talks to them (supervisor reviews, plan-review prompts, boss notifications)
through the messenger, without depending on the application layer.
"""

from typing import Any, Protocol

from workforce.core.domain.models import Actor, CallContext


class ActorDirectoryProtocol(Protocol):
    def get(self, actor_id: str) -> Actor | None: ...

    def all(self) -> list[Actor]: ...


class MessengerProtocol(Protocol):
    async def send_message(
        self,
        from_actor: str,
        to_actor: str,
        message: str,
        context: CallContext | None = None,
        conversation_id: str | None = None,
        history_strategy: str = "full",
        allow_tools: bool = True,
        reviewing_task_id: str | None = None,
    ) -> dict[str, Any]:
        """Deliver a message and return ``{"success", "response", "tools_used"}``."""
        ...

    def notify_boss(self, actor_id: str, message: str) -> None:
        """Push a notification for the human owner of ``actor_id``."""
        ...
