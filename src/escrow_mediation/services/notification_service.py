"""Notification fan-out.

Notifications are written in the caller's transaction and pushed live as
`new_notification` after it commits. Offline recipients simply find them
in their list later.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from escrow_mediation.domain.enums import NotificationType, RealtimeEvent
from escrow_mediation.infrastructure.database.orm_models import Notification
from escrow_mediation.infrastructure.database.repositories import NotificationRepository
from escrow_mediation.logging_config import get_logger
from escrow_mediation.schemas.account import NotificationResponse

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.realtime.outbox import Outbox

logger = get_logger(__name__)

# Default English copy; clients localise from `type` and `params`.
_TITLES: dict[NotificationType, str] = {
    NotificationType.MEDIATOR_ASSIGNED: "Mediator assigned",
    NotificationType.MEDIATION_ACCEPTED_BY_MEDIATOR: "Mediator accepted",
    NotificationType.MEDIATOR_REJECTED_ASSIGNMENT: "Mediator declined",
    NotificationType.PARTY_CONFIRMED_READINESS: "Party ready",
    NotificationType.ESCROW_FUNDED: "Escrow funded",
    NotificationType.MEDIATION_STARTED: "Mediation started",
    NotificationType.MEDIATION_COMPLETED: "Mediation completed",
    NotificationType.MEDIATION_CANCELLED: "Mediation cancelled",
    NotificationType.MEDIATION_DISPUTED: "Dispute opened",
    NotificationType.DISPUTE_RESOLVED: "Dispute resolved",
    NotificationType.ADMIN_SUB_CHAT_CREATED: "New private chat",
    NotificationType.BALANCE_UPDATED: "Balance updated",
}

_MESSAGES: dict[NotificationType, str] = {
    NotificationType.MEDIATOR_ASSIGNED: "A mediator was assigned to '{title}'.",
    NotificationType.MEDIATION_ACCEPTED_BY_MEDIATOR: "The mediator accepted '{title}'.",
    NotificationType.MEDIATOR_REJECTED_ASSIGNMENT: "The mediator declined '{title}'.",
    NotificationType.PARTY_CONFIRMED_READINESS: "A party confirmed readiness for '{title}'.",
    NotificationType.ESCROW_FUNDED: "The buyer funded the escrow for '{title}'.",
    NotificationType.MEDIATION_STARTED: "Mediation for '{title}' is in progress.",
    NotificationType.MEDIATION_COMPLETED: "Mediation for '{title}' is completed.",
    NotificationType.MEDIATION_CANCELLED: "Mediation for '{title}' was cancelled.",
    NotificationType.MEDIATION_DISPUTED: "A dispute was opened on '{title}'.",
    NotificationType.DISPUTE_RESOLVED: "The dispute on '{title}' was resolved.",
    NotificationType.ADMIN_SUB_CHAT_CREATED: "An admin opened a private chat on '{title}'.",
    NotificationType.BALANCE_UPDATED: "Your balance changed.",
}


class NotificationService:
    def __init__(self, session: AsyncSession, outbox: Outbox | None = None) -> None:
        self._repo = NotificationRepository(session)
        self._outbox = outbox

    async def create_notification(
        self,
        user_id: uuid.UUID,
        type: NotificationType,
        payload: dict[str, Any] | None = None,
        mediation_id: uuid.UUID | None = None,
    ) -> Notification:
        params = dict(payload or {})
        try:
            message = _MESSAGES[type].format(**params)
        except KeyError:
            message = _MESSAGES[type]
        notification = await self._repo.create(
            Notification(
                user_id=user_id,
                type=type.value,
                title=_TITLES[type],
                message=message,
                params=params,
                mediation_id=mediation_id,
            )
        )
        if self._outbox is not None:
            self._outbox.to_user(
                user_id,
                RealtimeEvent.NEW_NOTIFICATION,
                NotificationResponse.model_validate(notification).model_dump(mode="json"),
            )
        logger.debug("notification.created", user_id=str(user_id), type=type.value)
        return notification

    async def notify_many(
        self,
        user_ids: Iterable[uuid.UUID],
        type: NotificationType,
        payload: dict[str, Any] | None = None,
        mediation_id: uuid.UUID | None = None,
    ) -> list[Notification]:
        return [
            await self.create_notification(user_id, type, payload, mediation_id)
            for user_id in dict.fromkeys(user_ids)
        ]

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def list_for_user(
        self, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        return await self._repo.get_for_user(user_id, unread_only=unread_only, limit=limit)

    async def mark_read(
        self, user_id: uuid.UUID, notification_ids: Iterable[uuid.UUID]
    ) -> tuple[int, int]:
        """Mark the caller's own notifications read. Returns (updated, still_unread)."""
        updated = await self._repo.mark_read(user_id, notification_ids)
        return updated, await self._repo.unread_count(user_id)
