"""
Payroll authorization (``studio_modules.payroll.authorizer``).

Responsibility:
    Decide whether an actor holds elevated (senior HR) privilege and
    whether an actor may act on a given employee's slip.

Invariants:
    - Elevated privilege = role in ``privileged_roles`` OR position in
      ``privileged_positions``; both sets come from configuration.
    - The authorizer does not resolve actor identity; the caller supplies
      the ``Actor`` (id, name, role, position).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from studio_config.schema import AuthorizationDef
from studio_kernel.exceptions import ForbiddenError
from studio_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.authorizer")


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an operation runs."""
    id: UUID
    name: str
    role: str
    position: str | None = None


class _HasRole(Protocol):
    role: str
    position: str | None


class Authorizer:
    """
    Role/position-based privilege checks.

    Contract:
        ``require_privileged`` and ``require_owner`` raise ``ForbiddenError``
        naming the actor and the action; they never return False.
    """

    def __init__(
        self,
        privileged_roles: frozenset[str] | set[str] = frozenset({"ADMIN"}),
        privileged_positions: frozenset[str] | set[str] = frozenset(),
    ):
        self._privileged_roles = frozenset(privileged_roles)
        self._privileged_positions = frozenset(privileged_positions)

    @classmethod
    def from_definition(cls, definition: AuthorizationDef) -> Authorizer:
        return cls(
            privileged_roles=definition.privileged_roles,
            privileged_positions=definition.privileged_positions,
        )

    def is_privileged(self, subject: _HasRole) -> bool:
        if subject.role in self._privileged_roles:
            return True
        return bool(subject.position) and subject.position in self._privileged_positions

    def require_privileged(self, actor: Actor, action: str) -> None:
        if not self.is_privileged(actor):
            logger.warning(
                "authorization_denied",
                extra={
                    "actor_id": str(actor.id),
                    "role": actor.role,
                    "position": actor.position,
                    "action": action,
                },
            )
            raise ForbiddenError(
                str(actor.id),
                actor.name,
                action,
                "requires senior HR privilege",
            )

    def require_owner(self, actor: Actor, owner_id: UUID, action: str) -> None:
        if actor.id != owner_id:
            logger.warning(
                "authorization_denied",
                extra={
                    "actor_id": str(actor.id),
                    "owner_id": str(owner_id),
                    "action": action,
                },
            )
            raise ForbiddenError(
                str(actor.id),
                actor.name,
                action,
                "employees may only act on their own slip",
            )
