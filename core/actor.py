"""
core/actor.py -- The identity performing the current operation.

Actor is derived per request from validated token claims. Only its user_id
(or the "System" sentinel) is ever persisted, into audit columns.

ActorResolver is the narrow read-only contract the persistence layer depends
on. The resolver is built per request and handed to the unit of work
explicitly -- there is no module-level "current user" to reach for, so two
concurrent requests can never see each other's identity.

Layer rule: core/ is the kernel. No imports from api/, auth/ or persistence/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

SYSTEM_ACTOR = "System"


@dataclass(frozen=True)
class Actor:
    user_id: str | None = None
    user_name: str | None = None
    is_authenticated: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles


ANONYMOUS = Actor()


@runtime_checkable
class ActorResolver(Protocol):
    def current_user_id(self) -> str | None: ...

    def current_user_name(self) -> str | None: ...

    def is_authenticated(self) -> bool: ...


class RequestActorResolver:
    """Resolver backed by the actor decoded for a single request."""

    def __init__(self, actor: Actor = ANONYMOUS) -> None:
        self._actor = actor

    @property
    def actor(self) -> Actor:
        return self._actor

    def current_user_id(self) -> str | None:
        return self._actor.user_id if self._actor.is_authenticated else None

    def current_user_name(self) -> str | None:
        return self._actor.user_name if self._actor.is_authenticated else None

    def is_authenticated(self) -> bool:
        return self._actor.is_authenticated


class SystemActorResolver:
    """Resolver for work that runs outside any request (startup seeding, scripts).

    Always reports no actor, so audit columns fall back to SYSTEM_ACTOR.
    """

    def current_user_id(self) -> str | None:
        return None

    def current_user_name(self) -> str | None:
        return None

    def is_authenticated(self) -> bool:
        return False


def audit_actor_id(resolver: ActorResolver | None) -> str:
    """Return the id to write into created_by/updated_by/deleted_by."""
    if resolver is None:
        return SYSTEM_ACTOR
    return resolver.current_user_id() or SYSTEM_ACTOR
