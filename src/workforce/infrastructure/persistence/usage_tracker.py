"""
Token usage tracking per actor and model.

Implements UsageSinkProtocol. Counts are kept in memory and persisted through
the buffered store under the "usage" key.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from workforce.core.interfaces.store import StoreProtocol

USAGE_KEY = "usage"


def _empty_totals() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "calls": 0, "estimated_calls": 0}


class UsageTracker:
    def __init__(self, store: Optional[StoreProtocol] = None):
        self.store = store
        self.by_actor: Dict[str, Dict[str, int]] = {}
        self.by_model: Dict[str, Dict[str, int]] = {}
        self.by_day: Dict[str, Dict[str, int]] = {}
        self.logger = structlog.get_logger().bind(component="usage_tracker")

    async def load(self) -> None:
        if self.store is None:
            return
        data = await self.store.load(USAGE_KEY) or {}
        self.by_actor = data.get("by_actor", {})
        self.by_model = data.get("by_model", {})
        self.by_day = data.get("by_day", {})

    def record(
        self,
        actor_id: str,
        prompt_tokens: int,
        completion_tokens: int,
        model: Optional[str] = None,
        estimated: bool = False,
    ) -> None:
        day = datetime.now().strftime("%Y-%m-%d")
        buckets = [
            self.by_actor.setdefault(actor_id, _empty_totals()),
            self.by_model.setdefault(model or "default", _empty_totals()),
            self.by_day.setdefault(day, _empty_totals()),
        ]
        for totals in buckets:
            totals["prompt_tokens"] += prompt_tokens
            totals["completion_tokens"] += completion_tokens
            totals["calls"] += 1
            if estimated:
                totals["estimated_calls"] += 1
        self.logger.debug(
            "usage_recorded",
            actor_id=actor_id,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            estimated=estimated,
        )
        if self.store is not None:
            self.store.save(USAGE_KEY, self.to_dict())

    def get_usage(self, actor_id: str) -> Dict[str, int]:
        return dict(self.by_actor.get(actor_id, _empty_totals()))

    def get_summary(self) -> Dict[str, Any]:
        total = _empty_totals()
        for totals in self.by_actor.values():
            for k in total:
                total[k] += totals.get(k, 0)
        return {"total": total, **self.to_dict()}

    def to_dict(self) -> Dict[str, Any]:
        return {"by_actor": self.by_actor, "by_model": self.by_model, "by_day": self.by_day}
