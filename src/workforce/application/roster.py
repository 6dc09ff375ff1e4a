"""
Application Layer - Actor Roster

Holds the actors of a workforce profile. Actor definitions come from the
``actors`` section of a profile YAML and are validated with pydantic before
they become domain ``Actor`` objects.

The roster is the only owner of actor status; HR actions (suspend, resume,
terminate) go through it so every service sees the same ``Actor`` instance.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from workforce.core.domain.errors import ValidationError
from workforce.core.domain.models import Actor, ActorStatus, ActorTier
from workforce.core.interfaces.store import StoreProtocol

STATUS_KEY = "actor_status"


class ActorProfile(BaseModel):
    """Actor entry of a profile YAML."""

    id: str
    name: str
    role: str = ""
    tier: ActorTier = ActorTier.STAFF
    status: ActorStatus = ActorStatus.ACTIVE
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    reports_to: Optional[str] = Field(default=None, description="Boss actor id")

    def to_actor(self) -> Actor:
        return Actor(
            id=self.id,
            name=self.name,
            role=self.role,
            tier=self.tier,
            status=self.status,
            system_prompt=self.system_prompt or "",
            model=self.model,
        )


class ActorRoster:
    """Actor directory with HR status changes."""

    def __init__(self, actors: Optional[list[Actor]] = None, store: Optional[StoreProtocol] = None):
        self.store = store
        self._actors: dict[str, Actor] = {}
        self._reports_to: dict[str, str] = {}
        self.logger = structlog.get_logger().bind(component="roster")
        for actor in actors or []:
            self.add(actor)

    @classmethod
    def from_config(
        cls,
        entries: list[dict[str, Any]],
        store: Optional[StoreProtocol] = None,
    ) -> "ActorRoster":
        """
        Build a roster from the ``actors`` list of a profile.

        Raises:
            pydantic.ValidationError: If an entry is malformed
            ValidationError: On duplicate actor ids
        """
        roster = cls(store=store)
        for entry in entries or []:
            profile = ActorProfile(**entry)
            roster.add(profile.to_actor(), reports_to=profile.reports_to)
        return roster

    async def load(self) -> None:
        """Apply persisted HR status changes on top of the profile."""
        if self.store is None:
            return
        saved = await self.store.load(STATUS_KEY) or {}
        for actor_id, status in saved.items():
            actor = self._actors.get(actor_id)
            if actor is not None:
                actor.status = ActorStatus(status)

    def _save(self) -> None:
        if self.store is not None:
            self.store.save(STATUS_KEY, {a.id: a.status.value for a in self._actors.values()})

    def add(self, actor: Actor, reports_to: Optional[str] = None) -> None:
        if actor.id in self._actors:
            raise ValidationError(f"Duplicate actor id: {actor.id}")
        self._actors[actor.id] = actor
        if reports_to:
            self._reports_to[actor.id] = reports_to

    def get(self, actor_id: str) -> Optional[Actor]:
        return self._actors.get(actor_id)

    def resolve(self, identifier: str) -> Optional[Actor]:
        """Find an actor by id, then by display name (case-insensitive)."""
        if not identifier:
            return None
        actor = self._actors.get(identifier)
        if actor is not None:
            return actor
        lowered = identifier.strip().lower()
        return next(
            (a for a in self._actors.values() if a.id.lower() == lowered or a.name.lower() == lowered),
            None,
        )

    def all(self) -> list[Actor]:
        return list(self._actors.values())

    def active(self) -> list[Actor]:
        return [a for a in self._actors.values() if a.is_available]

    def boss_of(self, actor_id: str) -> Optional[str]:
        return self._reports_to.get(actor_id)

    def set_status(self, actor_id: str, status: ActorStatus) -> Actor:
        """
        Change an actor's employment status.

        Raises:
            ValidationError: Unknown actor, or the actor is already terminated
        """
        actor = self._actors.get(actor_id)
        if actor is None:
            raise ValidationError(f"Unknown actor: {actor_id}")
        if actor.status == ActorStatus.TERMINATED and status != ActorStatus.TERMINATED:
            raise ValidationError(f"{actor.name} has been terminated")
        previous = actor.status
        actor.status = status
        self._save()
        self.logger.info("actor_status_changed", actor_id=actor_id, previous=previous.value, status=status.value)
        return actor

    def suspend(self, actor_id: str) -> Actor:
        return self.set_status(actor_id, ActorStatus.SUSPENDED)

    def resume(self, actor_id: str) -> Actor:
        return self.set_status(actor_id, ActorStatus.ACTIVE)
