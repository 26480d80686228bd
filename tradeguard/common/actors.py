"""Caller identity handed to every dispute operation.

Authentication happens upstream; the engine only receives an already
verified actor id plus the roles the identity provider granted it.
"""

from __future__ import annotations

import uuid

from pydantic import BaseModel, Field

from tradeguard.common.enums import ActorRole
from tradeguard.common.exceptions import PermissionDeniedError

SYSTEM_ACTOR_ID = uuid.UUID(int=0)


class Actor(BaseModel):
    actor_id: uuid.UUID
    roles: frozenset[ActorRole] = Field(default_factory=frozenset)

    model_config = {"frozen": True}

    def has_role(self, *roles: ActorRole) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_admin(self) -> bool:
        return ActorRole.ADMIN in self.roles

    @property
    def is_system(self) -> bool:
        return ActorRole.SYSTEM in self.roles

    @property
    def audit_id(self) -> uuid.UUID | None:
        """Actor id as recorded on events; ``None`` for scheduler-driven work."""
        return None if self.is_system else self.actor_id


SYSTEM_ACTOR = Actor(actor_id=SYSTEM_ACTOR_ID, roles=frozenset({ActorRole.SYSTEM}))


def require_role(actor: Actor, *roles: ActorRole) -> None:
    if not actor.has_role(*roles):
        raise PermissionDeniedError(
            f"This action requires one of the following roles: {', '.join(r.value for r in roles)}"
        )
