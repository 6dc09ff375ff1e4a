"""
Unit tests for ActorRoster.

Tests verify:
- Building from profile entries (pydantic validation, reports_to)
- Lookup by id or display name
- HR status changes and their persistence
"""

import pydantic
import pytest

from workforce.application.roster import STATUS_KEY, ActorRoster
from workforce.core.domain.errors import ValidationError
from workforce.core.domain.models import Actor, ActorStatus, ActorTier

ENTRIES = [
    {"id": "ceo", "name": "Alice Chen", "role": "CEO", "tier": "c_level"},
    {"id": "cto", "name": "Carol Okafor", "role": "CTO", "tier": "c_level", "reports_to": "ceo"},
    {"id": "dev1", "name": "Eve Novak", "role": "Engineer", "model": "fast", "reports_to": "cto"},
]


class TestFromConfig:
    def test_builds_actors(self):
        roster = ActorRoster.from_config(ENTRIES)

        dev = roster.get("dev1")
        assert dev.tier == ActorTier.STAFF
        assert dev.model == "fast"
        assert roster.get("ceo").is_privileged
        assert roster.boss_of("dev1") == "cto"
        assert roster.boss_of("ceo") is None

    def test_invalid_tier_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            ActorRoster.from_config([{"id": "x", "name": "X", "tier": "intern"}])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError):
            ActorRoster.from_config([ENTRIES[0], ENTRIES[0]])


class TestLookup:
    def test_resolve_by_name_case_insensitive(self, roster):
        assert roster.resolve("carol").id == "dev_lead"
        assert roster.resolve("DEV1").id == "dev1"
        assert roster.resolve("nobody") is None
        assert roster.resolve("") is None

    def test_active_excludes_suspended(self, roster):
        roster.suspend("cfo")

        assert "cfo" not in [a.id for a in roster.active()]
        assert len(roster.all()) == 4


class TestStatus:
    def test_suspend_and_resume(self, roster, memory_store):
        roster.suspend("dev1")
        assert not roster.get("dev1").is_available
        assert memory_store.data[STATUS_KEY]["dev1"] == "suspended"

        roster.resume("dev1")
        assert roster.get("dev1").is_available

    def test_terminated_is_final(self, roster):
        roster.set_status("dev1", ActorStatus.TERMINATED)

        with pytest.raises(ValidationError):
            roster.resume("dev1")

    def test_unknown_actor(self, roster):
        with pytest.raises(ValidationError):
            roster.suspend("ghost")

    @pytest.mark.asyncio
    async def test_load_applies_saved_status(self, memory_store):
        memory_store.data[STATUS_KEY] = {"ceo": "suspended", "gone": "terminated"}
        roster = ActorRoster(actors=[Actor(id="ceo", name="Alice", role="CEO")], store=memory_store)

        await roster.load()

        assert roster.get("ceo").status == ActorStatus.SUSPENDED
