"""Shared plumbing for services that change mediation state.

Every mutating operation runs inside `unit_of_work()`:

    load-for-update -> guard -> ledger + aggregate writes -> system message
    -> notifications -> commit -> dispatch realtime outbox

The commit is the only point where anything becomes visible. A failure
anywhere before it rolls the whole operation back, and a concurrent writer
that changed the mediation first turns our flush into a stale-state
conflict rather than a lost update.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm.exc import StaleDataError
from statemachine.exceptions import TransitionNotAllowed

from escrow_mediation.config import Settings, get_settings
from escrow_mediation.domain.actors import resolve_roles
from escrow_mediation.domain.enums import (
    EventType,
    MediationStatus,
    MessageType,
    PartyRole,
    RealtimeEvent,
)
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationNotFoundError,
    UserNotFoundError,
)
from escrow_mediation.domain.state_machine import validate_transition
from escrow_mediation.domain.transitions import can_act, rule_for
from escrow_mediation.infrastructure.database.orm_models import ChatMessage
from escrow_mediation.infrastructure.database.repositories import (
    ChatRepository,
    EventRepository,
    MediationRepository,
    UserRepository,
)
from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.outbox import Outbox
from escrow_mediation.realtime.presence import mediation_room
from escrow_mediation.schemas.chat import ChatMessageResponse, UnreadCountResponse
from escrow_mediation.schemas.mediation import MediationResponse
from escrow_mediation.services.ledger_service import LedgerService
from escrow_mediation.services.notification_service import NotificationService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.domain.enums import MediationAction
    from escrow_mediation.infrastructure.database.orm_models import MediationRequest
    from escrow_mediation.realtime.hub import RealtimeHub

logger = get_logger(__name__)


def mediation_payload(mediation: MediationRequest) -> dict[str, Any]:
    return MediationResponse.model_validate(mediation).model_dump(mode="json")


def message_payload(message: ChatMessage) -> dict[str, Any]:
    return ChatMessageResponse.model_validate(message).model_dump(mode="json")


class TransactionalService:
    """Base class: owns the session, the post-commit outbox and the unit of work."""

    def __init__(
        self,
        session: AsyncSession,
        hub: RealtimeHub | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._hub = hub
        self._settings = settings or get_settings()
        self._outbox = Outbox()
        self._mediation_repo = MediationRepository(session)
        self._event_repo = EventRepository(session)
        self._chat_repo = ChatRepository(session)
        self._user_repo = UserRepository(session)
        self._ledger = LedgerService(session, self._outbox, self._settings.platform_currency)
        self._notifications = NotificationService(session, self._outbox)

    @asynccontextmanager
    async def unit_of_work(
        self, mediation_id: uuid.UUID | None = None, action: str = ""
    ) -> AsyncIterator[None]:
        """Commit everything done in the block, then push its events.

        StaleDataError means another request committed a newer version of
        the mediation between our read and our write; it surfaces as the
        same conflict a failed status guard produces.
        """
        try:
            yield
            await self._session.flush()
            await self._session.commit()
        except StaleDataError as exc:
            await self._session.rollback()
            self._outbox.clear()
            self._ledger.discard()
            current = (
                await self._mediation_repo.get_status(mediation_id) if mediation_id else None
            )
            logger.warning(
                "mediation.stale_write",
                mediation_id=str(mediation_id) if mediation_id else None,
                action=action,
                current_status=current,
            )
            raise InvalidStateTransitionError(
                current_state=current or "unknown",
                attempted=action,
                reason="the mediation was updated by another request",
            ) from exc
        except Exception:
            await self._session.rollback()
            self._outbox.clear()
            self._ledger.discard()
            raise
        await self._outbox.dispatch(self._hub)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _get_mediation_or_raise(self, mediation_id: uuid.UUID) -> MediationRequest:
        mediation = await self._mediation_repo.get_by_id(mediation_id)
        if mediation is None:
            raise MediationNotFoundError(str(mediation_id))
        return mediation

    async def _lock_mediation_or_raise(self, mediation_id: uuid.UUID) -> MediationRequest:
        """Re-read the mediation inside the transaction so the guard sees persisted state."""
        mediation = await self._mediation_repo.get_for_update(mediation_id)
        if mediation is None:
            raise MediationNotFoundError(str(mediation_id))
        return mediation

    @staticmethod
    def _roles(actor: Actor, mediation: MediationRequest) -> set[PartyRole]:
        return resolve_roles(
            actor,
            seller_id=mediation.seller_id,
            buyer_id=mediation.buyer_id,
            mediator_id=mediation.mediator_id,
            overseer_ids=mediation.overseer_ids,
        )

    def _require_visibility(self, actor: Actor, mediation: MediationRequest) -> set[PartyRole]:
        """Parties see their mediation; admins see every mediation."""
        roles = self._roles(actor, mediation)
        if not roles:
            # Strangers get the same answer as for a missing id
            raise MediationNotFoundError(str(mediation.id))
        return roles

    # ------------------------------------------------------------------
    # Transition guard
    # ------------------------------------------------------------------

    def _authorize(
        self, actor: Actor, mediation: MediationRequest, action: MediationAction
    ) -> set[PartyRole]:
        """Check the actor holds a role on *this* mediation that may fire `action`."""
        roles = self._roles(actor, mediation)
        if not can_act(roles, action):
            raise ForbiddenError(action=str(action), actor_id=str(actor.user_id))
        return roles

    @staticmethod
    def _guard(mediation: MediationRequest, action: MediationAction) -> MediationStatus:
        """Return the status `action` leads to, or raise a conflict for the persisted status."""
        try:
            return MediationStatus(validate_transition(mediation.status, action))
        except TransitionNotAllowed as exc:
            raise InvalidStateTransitionError(
                current_state=mediation.status, attempted=str(action)
            ) from exc

    async def _record_transition(
        self,
        mediation: MediationRequest,
        action: MediationAction,
        new_status: MediationStatus,
        actor_id: uuid.UUID | None,
        notify: Iterable[uuid.UUID] = (),
        params: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Apply a guarded status change with the side effects its rule declares.

        Writes the audit event and the system chat message, and creates the
        rule's notification for `notify`, all in the current transaction.
        """
        rule = rule_for(action)
        old_status = mediation.status
        mediation.status = new_status.value
        message_params = {"status": new_status.value, **(params or {})}

        await self._event_repo.record(
            mediation_id=mediation.id,
            event_type=action,
            old_status=old_status,
            new_status=new_status.value,
            actor_id=actor_id,
            details=details,
        )
        await self._append_system_message(mediation, rule.system_message, message_params)
        if rule.notification is not None:
            recipients = [uid for uid in notify if uid != actor_id]
            await self._notifications.notify_many(
                recipients,
                rule.notification,
                {"title": mediation.title, **message_params},
                mediation_id=mediation.id,
            )
        logger.info(
            "mediation.transition",
            mediation_id=str(mediation.id),
            action=str(action),
            old_status=old_status,
            new_status=new_status.value,
            actor_id=str(actor_id) if actor_id else "SYSTEM",
        )

    # ------------------------------------------------------------------
    # Side effects shared by transitions
    # ------------------------------------------------------------------

    async def _append_system_message(
        self,
        mediation: MediationRequest,
        message_key: str,
        params: dict[str, Any] | None = None,
        sub_chat_id: uuid.UUID | None = None,
        room: str | None = None,
        event: str = RealtimeEvent.NEW_MEDIATION_MESSAGE,
    ) -> ChatMessage:
        """Write a system message in the current transaction and queue its broadcast."""
        message = await self._chat_repo.add(
            ChatMessage(
                mediation_id=mediation.id,
                sub_chat_id=sub_chat_id,
                sender_id=None,
                type=MessageType.SYSTEM.value,
                body=None,
                message_key=message_key,
                message_params=params or {},
                reads=[],
            )
        )
        self._outbox.to_room(room or mediation_room(mediation.id), event, message_payload(message))
        return message

    async def _attach_overseer(self, mediation: MediationRequest, actor: Actor) -> bool:
        """Make an admin an overseer of a disputed mediation. Returns False if already one."""
        if actor.user_id in mediation.overseer_ids:
            return False
        admin = await self._user_repo.get_by_id(actor.user_id)
        if admin is None:
            raise UserNotFoundError(str(actor.user_id))
        if not await self._mediation_repo.add_overseer(mediation.id, admin.id):
            # A concurrent join committed first.
            await self._session.refresh(mediation, attribute_names=["overseers"])
            return False
        await self._session.refresh(mediation, attribute_names=["overseers"])
        await self._event_repo.record(
            mediation_id=mediation.id,
            event_type=EventType.OVERSEER_JOINED,
            old_status=mediation.status,
            new_status=mediation.status,
            actor_id=actor.user_id,
        )
        if not mediation.admin_join_message_sent:
            mediation.admin_join_message_sent = True
            await self._append_system_message(
                mediation,
                "system.admin_joined",
                {"admin_name": admin.full_name},
            )
        logger.info(
            "dispute.overseer_joined",
            mediation_id=str(mediation.id),
            admin_id=str(actor.user_id),
        )
        return True

    async def _queue_details_update(self, mediation: MediationRequest) -> None:
        """Push the updated aggregate to every party and overseer.

        Flushes first so the payload carries the new version and timestamps.
        """
        await self._session.flush()
        recipients = [*mediation.party_ids, *mediation.overseer_ids]
        self._outbox.to_users(
            recipients,
            RealtimeEvent.MEDIATION_DETAILS_UPDATED,
            {"mediation": mediation_payload(mediation)},
        )

    async def _queue_unread_counts(
        self,
        mediation_id: uuid.UUID,
        sub_chat_id: uuid.UUID | None,
        user_ids: Iterable[uuid.UUID],
    ) -> None:
        """Recount the room for each user from persisted state and queue the result."""
        for user_id in dict.fromkeys(user_ids):
            count = await self._chat_repo.unread_count(mediation_id, sub_chat_id, user_id)
            self._outbox.to_user(
                user_id,
                RealtimeEvent.UNREAD_COUNT_UPDATED,
                UnreadCountResponse(
                    mediation_id=mediation_id, sub_chat_id=sub_chat_id, unread_count=count
                ).model_dump(mode="json"),
            )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)
