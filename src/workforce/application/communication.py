"""
Application Layer - Actor Communication Service

Actor-to-actor messaging on top of the mailbox dispatcher:

1. Admission: empty messages, call cycles, nesting depth and unavailable
   actors are rejected before anything is queued.
2. The call is enqueued on the target's mailbox and raced against a timeout.
3. Inside the mailbox the target answers through the agentic loop, with a
   layered history of the pair's earlier messages.

Failures come back as structured result dicts, never as exceptions, so the
calling actor's loop can read them as a tool result.

The service also keeps the boss inbox (notifications for the human owner)
and serves older history pages to the communication_history tool.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import structlog

from workforce.application.roster import ActorRoster
from workforce.core.domain.call_guard import CallChainGuard
from workforce.core.domain.context_budget import PAGE_SIZE, paginate
from workforce.core.domain.dispatcher import ActorMailboxDispatcher, with_timeout
from workforce.core.domain.errors import ValidationError, WorkforceError
from workforce.core.domain.models import (
    SYSTEM_ACTOR,
    ActorStatus,
    CallContext,
    MessageRecord,
    MessageStatus,
    new_id,
)
from workforce.core.interfaces.store import StoreProtocol
from workforce.core.interfaces.tools import ToolContext
from workforce.core.prompts.collaboration_prompts import (
    MESSAGE_CONTEXT_PREAMBLE,
    SYSTEM_SENDER_NAME,
)

MESSAGES_KEY = "messages"
BOSS_INBOX_KEY = "boss_inbox"

DEFAULT_MESSAGE_TIMEOUT = 120.0
MAX_STORED_MESSAGES = 500
MAX_BOSS_NOTIFICATIONS = 200

FULL_RECENT_COUNT = 5
FULL_SUMMARY_COUNT = 10
FOCUSED_RECENT_COUNT = 2
HISTORY_PAGE_SIZE = 30

BROWSE_HINT = (
    'Older messages can be read with communication_history(with_agent="<actor id>", page=<n>).'
)


class ActorCommunicationService:
    """Send messages between actors and keep their message log."""

    def __init__(
        self,
        roster: ActorRoster,
        dispatcher: ActorMailboxDispatcher,
        loop_runner: Any,
        guard: Optional[CallChainGuard] = None,
        store: Optional[StoreProtocol] = None,
        default_timeout: float = DEFAULT_MESSAGE_TIMEOUT,
        cancel_on_timeout: bool = False,
        max_messages: int = MAX_STORED_MESSAGES,
    ):
        self.roster = roster
        self.dispatcher = dispatcher
        self.loop_runner = loop_runner
        self.guard = guard or CallChainGuard()
        self.store = store
        self.default_timeout = default_timeout
        self.cancel_on_timeout = cancel_on_timeout
        self.max_messages = max_messages

        self.messages: list[MessageRecord] = []
        self.boss_inbox: list[dict[str, Any]] = []
        self.logger = structlog.get_logger().bind(component="communication")

    async def load(self) -> None:
        if self.store is None:
            return
        self.messages = [MessageRecord.from_dict(m) for m in await self.store.load(MESSAGES_KEY) or []]
        self.boss_inbox = list(await self.store.load(BOSS_INBOX_KEY) or [])
        self.logger.info("messages_loaded", count=len(self.messages), notifications=len(self.boss_inbox))

    def _save(self) -> None:
        if len(self.messages) > self.max_messages:
            self.messages = self.messages[-self.max_messages :]
        if len(self.boss_inbox) > MAX_BOSS_NOTIFICATIONS:
            self.boss_inbox = self.boss_inbox[-MAX_BOSS_NOTIFICATIONS:]
        if self.store is None:
            return
        self.store.save(MESSAGES_KEY, [m.to_dict() for m in self.messages])
        self.store.save(BOSS_INBOX_KEY, self.boss_inbox)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _admit(self, from_actor: str, to_actor: str, message: str, context: CallContext) -> None:
        """
        Admission checks, in order: content, call chain, sender, target.

        Raises:
            ValidationError: Empty message, unknown or unavailable actor
            ConcurrencyError: Cycle or depth violation
        """
        if not message or not message.strip():
            raise ValidationError("Message content is required")
        if from_actor == to_actor:
            raise ValidationError("Cannot send a message to yourself")
        self.guard.validate(from_actor, to_actor, context)
        if from_actor != SYSTEM_ACTOR:
            sender = self.roster.get(from_actor)
            if sender is None:
                raise ValidationError(f"Unknown actor: {from_actor}")
            if not sender.is_available:
                raise ValidationError(f"{sender.name} is {sender.status.value} and cannot send messages")
        target = self.roster.get(to_actor)
        if target is None:
            raise ValidationError(f"Unknown actor: {to_actor}")
        if not target.is_available:
            raise ValidationError(f"{target.name} is {target.status.value} and cannot receive messages")

    async def send_message(
        self,
        from_actor: str,
        to_actor: str,
        message: str,
        context: Optional[CallContext] = None,
        conversation_id: Optional[str] = None,
        history_strategy: str = "full",
        allow_tools: bool = True,
        reviewing_task_id: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict[str, Any]:
        """
        Send ``message`` and wait for the target's answer.

        Args:
            from_actor: Sender id (or "system" for internal notices)
            to_actor: Target id
            message: Message text
            context: Call context of the sender's current turn
            conversation_id: Conversation the exchange belongs to
            history_strategy: "full", "focused" or "minimal"
            allow_tools: Let the target use tools while answering
            reviewing_task_id: Task under review (links rework delegations)
            timeout: Caller-side deadline (defaults to default_timeout)
            cancel_event: Stops the target's loop between iterations

        Returns:
            {"success": True, "message_id", "response", "tools_used"} or a
            failure dict with "error" and "error_type"
        """
        context = context or CallContext()
        try:
            self._admit(from_actor, to_actor, message, context)
        except WorkforceError as e:
            self.logger.warning(
                "message_rejected",
                from_actor=from_actor,
                to_actor=to_actor,
                error_type=e.error_type,
                error=e.message,
            )
            return e.to_result()

        if from_actor == SYSTEM_ACTOR:
            call = CallContext(nesting_depth=context.nesting_depth + 1)
        else:
            call = context.extend(from_actor)
        target = self.roster.get(to_actor)

        async def execute() -> dict[str, Any]:
            history, context_block = self.build_context_history(from_actor, to_actor, history_strategy)
            record = MessageRecord(
                from_actor=from_actor,
                to_actor=to_actor,
                content=message,
                conversation_id=conversation_id,
                call_chain=list(call.call_chain),
                nesting_depth=call.nesting_depth,
            )
            self.messages.append(record)
            self._save()

            instruction = MESSAGE_CONTEXT_PREAMBLE.format(
                from_name=self._display_name(from_actor),
                from_actor=from_actor,
                history_section=context_block,
                message=message,
            )
            tool_context = ToolContext(
                actor_id=to_actor,
                call=call,
                conversation_id=conversation_id,
                reviewing_task_id=reviewing_task_id,
            )
            try:
                outcome = await self.loop_runner.run(
                    target,
                    instruction,
                    history=history,
                    context=tool_context,
                    tool_filter="full" if allow_tools else "none",
                    cancel_event=cancel_event,
                    conversation_id=conversation_id,
                )
            except Exception as e:
                record.fail(str(e))
                self._save()
                raise
            record.resolve(outcome.content)
            self._save()
            return {
                "success": True,
                "message_id": record.id,
                "response": outcome.content,
                "tools_used": outcome.tools_used,
            }

        self.logger.info(
            "message_sent",
            from_actor=from_actor,
            to_actor=to_actor,
            depth=call.nesting_depth,
            queue=self.dispatcher.queue_status(to_actor),
        )
        future = self.dispatcher.enqueue(to_actor, execute)
        try:
            return await with_timeout(
                future,
                timeout if timeout is not None else self.default_timeout,
                f"message {from_actor} -> {to_actor}",
                cancel_on_timeout=self.cancel_on_timeout,
            )
        except WorkforceError as e:
            self.logger.warning("message_failed", from_actor=from_actor, to_actor=to_actor, error=e.message)
            return e.to_result()
        except Exception as e:
            self.logger.error(
                "message_failed",
                from_actor=from_actor,
                to_actor=to_actor,
                error_type=type(e).__name__,
                error=str(e),
            )
            return WorkforceError(f"{type(e).__name__}: {e}").to_result()

    def _display_name(self, actor_id: str) -> str:
        if actor_id == SYSTEM_ACTOR:
            return SYSTEM_SENDER_NAME
        actor = self.roster.get(actor_id)
        return actor.name if actor else actor_id

    # ------------------------------------------------------------------
    # Layered history
    # ------------------------------------------------------------------

    def _pair_messages(self, actor_a: str, actor_b: str) -> list[MessageRecord]:
        return [
            m
            for m in self.messages
            if m.involves(actor_a, actor_b) and m.status != MessageStatus.PENDING
        ]

    @staticmethod
    def _format_as_llm_history(records: list[MessageRecord], target: str) -> list[dict[str, Any]]:
        """Render records from the target's perspective: its own words are assistant turns."""
        history: list[dict[str, Any]] = []
        for record in records:
            incoming = record.to_actor == target
            history.append({
                "role": "user" if incoming else "assistant",
                "content": f"[{record.from_actor}]: {record.content}",
            })
            if record.response:
                history.append({
                    "role": "assistant" if incoming else "user",
                    "content": f"[{record.to_actor}]: {record.response}",
                })
        return history

    @staticmethod
    def _summarize(records: list[MessageRecord]) -> str:
        lines = []
        for record in records:
            line = f"• [{record.created_at:%m-%d %H:%M}] {record.from_actor} → {record.to_actor}: {record.content[:100]}"
            if record.response:
                line += f" (reply: {record.response[:80]})"
            lines.append(line)
        return "\n".join(lines)

    def build_context_history(
        self,
        from_actor: str,
        to_actor: str,
        strategy: str = "full",
    ) -> tuple[list[dict[str, Any]], str]:
        """
        History handed to ``to_actor`` when answering ``from_actor``.

        Strategies:
        - minimal: only the last exchange
        - focused: the last two exchanges plus a browse hint
        - full: the last five exchanges verbatim, up to ten older ones as a
          one-line summary each, and a note about anything older

        Returns:
            (chat history, context block for the instruction)
        """
        records = self._pair_messages(from_actor, to_actor)
        if not records:
            return [], ""

        if strategy == "minimal":
            return self._format_as_llm_history(records[-1:], to_actor), ""

        if strategy == "focused":
            recent = records[-FOCUSED_RECENT_COUNT:]
            block = ""
            if len(records) > len(recent):
                block = f"--- {len(records) - len(recent)} earlier messages not shown. {BROWSE_HINT} ---\n"
            return self._format_as_llm_history(recent, to_actor), block

        recent = records[-FULL_RECENT_COUNT:]
        older_pool = records[: -FULL_RECENT_COUNT] if len(records) > FULL_RECENT_COUNT else []
        older = older_pool[-FULL_SUMMARY_COUNT:]
        block = ""
        if older:
            skipped = len(older_pool) - len(older)
            skip_note = f" ({skipped} older messages not shown)" if skipped else ""
            block = (
                f"[Earlier exchanges, for reference only{skip_note}]\n"
                f"{self._summarize(older)}\n{BROWSE_HINT}\n"
                "--- end of summary, the current message follows ---\n"
            )
        return self._format_as_llm_history(recent, to_actor), block

    # ------------------------------------------------------------------
    # History pages
    # ------------------------------------------------------------------

    @staticmethod
    def _page(records: list[MessageRecord], page: int, page_size: int) -> dict[str, Any]:
        """1-based page counted from the newest message."""
        sliced = paginate(records, page=max(page, 1) - 1, page_size=page_size)
        return {
            "page": max(page, 1),
            "total_pages": sliced["total_pages"],
            "total_messages": sliced["total_messages"],
            "has_more": sliced["has_more"],
            "messages": [
                {
                    "id": m.id,
                    "from": m.from_actor,
                    "to": m.to_actor,
                    "content": m.content,
                    "response": m.response,
                    "status": m.status.value,
                    "time": m.created_at.isoformat(),
                }
                for m in sliced["messages"]
            ],
        }

    def get_pairwise_history_page(
        self,
        actor_a: str,
        actor_b: str,
        page: int = 1,
        page_size: int = HISTORY_PAGE_SIZE,
    ) -> dict[str, Any]:
        return self._page(self._pair_messages(actor_a, actor_b), page, page_size)

    def get_messages_page(
        self,
        actor_id: Optional[str] = None,
        page: int = 1,
        page_size: int = HISTORY_PAGE_SIZE,
    ) -> dict[str, Any]:
        records = [
            m for m in self.messages if actor_id is None or actor_id in (m.from_actor, m.to_actor)
        ]
        return self._page(records, page, page_size)

    async def get_page(self, conversation_id: str, page_index: int) -> list[dict[str, Any]]:
        """Older page of a conversation as chat messages (page 0 is the newest)."""
        records = [m for m in self.messages if m.conversation_id == conversation_id]
        sliced = paginate(records, page=page_index, page_size=PAGE_SIZE)
        history: list[dict[str, Any]] = []
        for record in sliced["messages"]:
            history.append({"role": "user", "content": f"[{record.from_actor} → {record.to_actor}]: {record.content}"})
            if record.response:
                history.append({"role": "assistant", "content": f"[{record.to_actor}]: {record.response}"})
        return history

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def get_messages(self, actor_id: Optional[str] = None, limit: int = 50) -> list[MessageRecord]:
        records = [
            m for m in self.messages if actor_id is None or actor_id in (m.from_actor, m.to_actor)
        ]
        return records[-limit:]

    def get_recent_activity(self, limit: int = 20) -> list[dict[str, Any]]:
        return [
            {
                "id": m.id,
                "from": m.from_actor,
                "to": m.to_actor,
                "preview": m.content[:80],
                "status": m.status.value,
                "time": m.created_at.isoformat(),
            }
            for m in reversed(self.messages[-limit:])
        ]

    def get_stats(self) -> dict[str, Any]:
        by_status = {s.value: 0 for s in MessageStatus}
        per_actor: dict[str, dict[str, int]] = {}
        for m in self.messages:
            by_status[m.status.value] += 1
            per_actor.setdefault(m.from_actor, {"sent": 0, "received": 0})["sent"] += 1
            per_actor.setdefault(m.to_actor, {"sent": 0, "received": 0})["received"] += 1
        return {
            "total_messages": len(self.messages),
            "by_status": by_status,
            "per_actor": per_actor,
            "unread_notifications": sum(1 for n in self.boss_inbox if not n.get("read")),
            "queues": {a.id: self.dispatcher.queue_status(a.id) for a in self.roster.all()},
        }

    def clear_messages(self, actor_id: Optional[str] = None) -> int:
        before = len(self.messages)
        if actor_id is None:
            self.messages = []
        else:
            self.messages = [m for m in self.messages if actor_id not in (m.from_actor, m.to_actor)]
        self._save()
        return before - len(self.messages)

    def terminate_actor(self, actor_id: str) -> dict[str, Any]:
        """Terminate an actor and drop every call still waiting in its mailbox."""
        try:
            self.roster.set_status(actor_id, ActorStatus.TERMINATED)
        except ValidationError as e:
            return e.to_result()
        cleared = self.dispatcher.clear_queue(actor_id)
        self.logger.info("actor_terminated", actor_id=actor_id, **cleared)
        return {"success": True, "actor_id": actor_id, **cleared}

    # ------------------------------------------------------------------
    # Boss inbox
    # ------------------------------------------------------------------

    def notify_boss(self, actor_id: str, message: str) -> None:
        notification = {
            "id": new_id("note"),
            "from_actor": actor_id,
            "message": message,
            "created_at": datetime.now().isoformat(),
            "read": False,
        }
        self.boss_inbox.append(notification)
        self._save()
        self.logger.info("boss_notified", from_actor=actor_id, preview=message[:80])

    def get_boss_inbox(self, unread_only: bool = False) -> list[dict[str, Any]]:
        return [n for n in self.boss_inbox if not unread_only or not n.get("read")]

    def mark_notifications_read(self) -> int:
        unread = [n for n in self.boss_inbox if not n.get("read")]
        for notification in unread:
            notification["read"] = True
        self._save()
        return len(unread)
