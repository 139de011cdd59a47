"""The authenticated caller and the roles it holds on a mediation."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import PartyRole, UserRole

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True)
class Actor:
    """Identity resolved by the auth layer; trusted as already verified."""

    user_id: uuid.UUID
    role: UserRole = UserRole.USER
    full_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.full_name or f"User ({str(self.user_id)[-4:]})"


def resolve_roles(
    actor: Actor,
    seller_id: uuid.UUID,
    buyer_id: uuid.UUID,
    mediator_id: uuid.UUID | None,
    overseer_ids: Iterable[uuid.UUID] = (),
) -> set[PartyRole]:
    """Return the roles `actor` holds on one specific mediation."""
    roles: set[PartyRole] = set()
    if actor.user_id == seller_id:
        roles.add(PartyRole.SELLER)
    if actor.user_id == buyer_id:
        roles.add(PartyRole.BUYER)
    if mediator_id is not None and actor.user_id == mediator_id:
        roles.add(PartyRole.MEDIATOR)
    if actor.is_admin:
        roles.add(PartyRole.ADMIN)
        if actor.user_id in set(overseer_ids):
            roles.add(PartyRole.OVERSEER)
    return roles
