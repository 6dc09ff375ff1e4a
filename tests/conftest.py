"""
Shared fixtures for workforce unit tests.

ScriptedLLM stands in for the LLM provider: it replays a list of responses
(strings, result dicts or callables receiving the messages) and records every
request it receives.
"""

from typing import Any, Callable, Union

import pytest

from workforce.application.roster import ActorRoster
from workforce.core.domain.models import Actor, ActorTier
from workforce.core.domain.supervisor import BackgroundTaskSupervisor

Scripted = Union[str, dict, Callable[[list], Any]]


class ScriptedLLM:
    """LLM provider double following the result-dict convention."""

    def __init__(self, responses: list[Scripted] | None = None, default: str = "OK"):
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[list[dict[str, Any]]] = []

    def _next(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        item = self.responses.pop(0) if self.responses else self.default
        if callable(item):
            item = item(messages)
        if isinstance(item, str):
            return {
                "success": True,
                "content": item,
                "usage": {"prompt_tokens": 10, "completion_tokens": 5},
                "model": "test-model",
            }
        return item

    async def complete(self, messages, model=None, **kwargs):
        self.calls.append(messages)
        return self._next(messages)

    async def complete_stream(self, messages, model=None, **kwargs):
        self.calls.append(messages)
        result = self._next(messages)
        if not result.get("success"):
            yield {
                "type": "error",
                "message": result.get("error", "failed"),
                "retryable": result.get("retryable", False),
                "context_too_long": result.get("context_too_long", False),
            }
            return
        content = result["content"]
        for i in range(0, len(content), 7):
            yield {"type": "token", "content": content[i : i + 7]}
        yield {"type": "done", "usage": result.get("usage", {})}


class MemoryStore:
    """StoreProtocol double that keeps records in a dict."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.flushes = 0

    async def load(self, key):
        return self.data.get(key)

    def save(self, key, data):
        self.data[key] = data

    async def flush(self):
        self.flushes += 1


@pytest.fixture
def scripted_llm():
    return ScriptedLLM()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def supervisor():
    return BackgroundTaskSupervisor()


@pytest.fixture
def actors():
    return [
        Actor(id="ceo", name="Alice", role="CEO", tier=ActorTier.C_LEVEL),
        Actor(id="cfo", name="Bob", role="CFO", tier=ActorTier.C_LEVEL),
        Actor(id="dev_lead", name="Carol", role="Engineering Lead", tier=ActorTier.MANAGER),
        Actor(id="dev1", name="Dan", role="Developer"),
    ]


@pytest.fixture
def roster(actors, memory_store):
    return ActorRoster(actors=actors, store=memory_store)


@pytest.fixture
def make_llm():
    """Build a ScriptedLLM from a list of responses."""
    return ScriptedLLM
