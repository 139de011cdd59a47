"""Read side of the caller's account: balances, ledger history, notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_mediation.config import Settings, get_settings
from escrow_mediation.domain.exceptions import UserNotFoundError
from escrow_mediation.infrastructure.database.repositories import (
    LedgerRepository,
    UserRepository,
)
from escrow_mediation.schemas.account import BalancesResponse, MarkNotificationsReadResponse
from escrow_mediation.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.infrastructure.database.orm_models import LedgerEntry, Notification


class AccountService:
    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._user_repo = UserRepository(session)
        self._ledger_repo = LedgerRepository(session)
        self._notifications = NotificationService(session)

    async def balances(self, actor: Actor) -> BalancesResponse:
        balances = await self._user_repo.get_balances(actor.user_id)
        if balances is None:
            raise UserNotFoundError(str(actor.user_id))
        return BalancesResponse(
            user_id=actor.user_id,
            balance=balances.balance,
            escrow_balance=balances.escrow_balance,
            currency=self._settings.platform_currency,
        )

    async def ledger(self, actor: Actor, limit: int = 100) -> list[LedgerEntry]:
        return await self._ledger_repo.get_for_user(actor.user_id, limit=limit)

    async def notifications(
        self, actor: Actor, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        return await self._notifications.list_for_user(
            actor.user_id, unread_only=unread_only, limit=limit
        )

    async def mark_notifications_read(
        self, actor: Actor, notification_ids: Iterable[uuid.UUID]
    ) -> MarkNotificationsReadResponse:
        updated, unread = await self._notifications.mark_read(actor.user_id, notification_ids)
        await self._session.commit()
        return MarkNotificationsReadResponse(updated=updated, unread_count=unread)
