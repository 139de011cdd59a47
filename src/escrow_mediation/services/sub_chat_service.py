"""Admin sub-chats: private side-channels opened during a dispute.

A sub-chat belongs to the dispute episode that created it. Messages can
only be posted while the parent mediation is Disputed; afterwards the
sub-chat stays readable by its participants but accepts nothing new.
Only listed participants can read or post, whatever role they hold on
the parent mediation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import (
    EventType,
    MediationStatus,
    NotificationType,
    RealtimeEvent,
)
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationValidationError,
    SubChatNotFoundError,
)
from escrow_mediation.infrastructure.database.orm_models import SubChat, SubChatParticipant
from escrow_mediation.infrastructure.database.repositories import SubChatRepository
from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.presence import sub_chat_room
from escrow_mediation.schemas.chat import (
    ChatMessageResponse,
    ChatRoomResponse,
    MarkReadResponse,
    ReadUpdateResponse,
    SubChatResponse,
)
from escrow_mediation.services.base import TransactionalService, message_payload
from escrow_mediation.services.chat_service import build_user_message

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.config import Settings
    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.infrastructure.database.orm_models import (
        ChatMessage,
        MediationRequest,
    )
    from escrow_mediation.realtime.hub import RealtimeHub

logger = get_logger(__name__)


class SubChatService(TransactionalService):
    def __init__(
        self,
        session: AsyncSession,
        hub: RealtimeHub | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session, hub, settings)
        self._sub_chat_repo = SubChatRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        actor: Actor,
        mediation_id: uuid.UUID,
        participant_user_ids: Iterable[uuid.UUID],
        title: str | None = None,
    ) -> tuple[SubChat, bool]:
        """Open a sub-chat between the calling admin and some of the mediation's parties.

        Returns the sub-chat and whether it was created. Asking again for the
        same participants (and the same title, when one is given) returns
        the existing sub-chat.
        """
        if not actor.is_admin:
            raise ForbiddenError(action="create_sub_chat", actor_id=str(actor.user_id))
        selected = list(dict.fromkeys(participant_user_ids))
        title = (title or "").strip() or None

        async with self.unit_of_work(mediation_id, "create_sub_chat"):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            if mediation.status != MediationStatus.DISPUTED:
                raise InvalidStateTransitionError(
                    current_state=mediation.status,
                    attempted="create_sub_chat",
                    reason="sub-chats can only be opened on a disputed mediation",
                )
            if not selected:
                raise MediationValidationError(
                    "Select at least one participant", field="participant_user_ids"
                )
            outsiders = [uid for uid in selected if uid not in mediation.party_ids]
            if outsiders:
                raise MediationValidationError(
                    "Participants must be the seller, the buyer or the mediator",
                    field="participant_user_ids",
                )

            members = {actor.user_id, *selected}
            for existing in await self._sub_chat_repo.get_by_mediation(mediation.id):
                if existing.participant_ids == members and (title is None or existing.title == title):
                    logger.info(
                        "sub_chat.reused", sub_chat_id=str(existing.id), mediation_id=str(mediation.id)
                    )
                    return existing, False

            if await self._attach_overseer(mediation, actor):
                await self._queue_details_update(mediation)

            sub_chat = await self._sub_chat_repo.create(
                SubChat(
                    mediation_id=mediation.id,
                    created_by=actor.user_id,
                    title=title,
                    last_message_at=self._now(),
                    participants=[SubChatParticipant(user_id=uid) for uid in members],
                )
            )
            await self._event_repo.record(
                mediation_id=mediation.id,
                event_type=EventType.SUB_CHAT_CREATED,
                old_status=mediation.status,
                new_status=mediation.status,
                actor_id=actor.user_id,
                details={
                    "sub_chat_id": str(sub_chat.id),
                    "participants": sorted(str(uid) for uid in members),
                },
            )
            await self._append_system_message(
                mediation,
                "system.sub_chat_started",
                {"admin_name": actor.display_name, "title": title},
                sub_chat_id=sub_chat.id,
                room=sub_chat_room(sub_chat.id),
                event=RealtimeEvent.NEW_ADMIN_SUB_CHAT_MESSAGE,
            )
            await self._notifications.notify_many(
                selected,
                NotificationType.ADMIN_SUB_CHAT_CREATED,
                {"title": mediation.title, "sub_chat_id": str(sub_chat.id)},
                mediation_id=mediation.id,
            )
            self._outbox.to_users(
                members,
                RealtimeEvent.ADMIN_SUB_CHAT_CREATED,
                SubChatResponse.model_validate(sub_chat).model_dump(mode="json"),
            )

        logger.info(
            "sub_chat.created",
            sub_chat_id=str(sub_chat.id),
            mediation_id=str(mediation_id),
            participants=len(members),
        )
        return sub_chat, True

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def list_for_mediation(self, actor: Actor, mediation_id: uuid.UUID) -> list[SubChat]:
        """Admins see every sub-chat of the mediation, others only their own."""
        mediation = await self._get_mediation_or_raise(mediation_id)
        self._require_visibility(actor, mediation)
        sub_chats = await self._sub_chat_repo.get_by_mediation(mediation.id)
        if actor.is_admin:
            return sub_chats
        return [sc for sc in sub_chats if actor.user_id in sc.participant_ids]

    async def _get_for_participant(
        self, actor: Actor, sub_chat_id: uuid.UUID
    ) -> tuple[SubChat, MediationRequest]:
        sub_chat = await self._sub_chat_repo.get_by_id(sub_chat_id)
        if sub_chat is None:
            raise SubChatNotFoundError(str(sub_chat_id))
        if actor.user_id not in sub_chat.participant_ids:
            raise ForbiddenError(action="admin_sub_chat", actor_id=str(actor.user_id))
        mediation = await self._get_mediation_or_raise(sub_chat.mediation_id)
        return sub_chat, mediation

    async def messages(self, actor: Actor, sub_chat_id: uuid.UUID) -> ChatRoomResponse:
        sub_chat, mediation = await self._get_for_participant(actor, sub_chat_id)
        messages = await self._chat_repo.get_room(mediation.id, sub_chat.id)
        unread = await self._chat_repo.unread_count(mediation.id, sub_chat.id, actor.user_id)
        return ChatRoomResponse(
            mediation_id=mediation.id,
            sub_chat_id=sub_chat.id,
            messages=[ChatMessageResponse.model_validate(m) for m in messages],
            unread_count=unread,
        )

    async def join(self, actor: Actor, sub_chat_id: uuid.UUID) -> ChatRoomResponse:
        """Socket join: same access rule and payload as reading the messages."""
        return await self.messages(actor, sub_chat_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def post(
        self,
        actor: Actor,
        sub_chat_id: uuid.UUID,
        body: str | None = None,
        image_url: str | None = None,
    ) -> ChatMessage:
        async with self.unit_of_work(action="send_sub_chat_message"):
            sub_chat, mediation = await self._get_for_participant(actor, sub_chat_id)
            if mediation.status != MediationStatus.DISPUTED:
                raise InvalidStateTransitionError(
                    current_state=mediation.status,
                    attempted="send_sub_chat_message",
                    reason="the dispute this sub-chat belongs to is closed",
                )
            message = await self._chat_repo.add(
                build_user_message(
                    mediation.id, actor.user_id, body, image_url, sub_chat_id=sub_chat.id
                )
            )
            sub_chat.last_message_at = message.created_at

            self._outbox.to_room(
                sub_chat_room(sub_chat.id),
                RealtimeEvent.NEW_ADMIN_SUB_CHAT_MESSAGE,
                message_payload(message),
            )
            others = [uid for uid in sub_chat.participant_ids if uid != actor.user_id]
            await self._queue_unread_counts(mediation.id, sub_chat.id, others)

        logger.info(
            "sub_chat.message_posted",
            sub_chat_id=str(sub_chat_id),
            message_id=str(message.id),
            sender_id=str(actor.user_id),
        )
        return message

    async def mark_read(
        self,
        actor: Actor,
        sub_chat_id: uuid.UUID,
        message_ids: Iterable[uuid.UUID],
    ) -> MarkReadResponse:
        """Mark messages read for the caller and advance only the caller's read pointer."""
        async with self.unit_of_work(action="mark_sub_chat_read"):
            sub_chat, mediation = await self._get_for_participant(actor, sub_chat_id)
            valid = await self._chat_repo.get_room_ids(
                mediation.id, sub_chat.id, message_ids, exclude_sender=actor.user_id
            )
            newly_read = await self._chat_repo.mark_read(actor.user_id, valid)

            participant = sub_chat.participant(actor.user_id)
            if valid and participant is not None:
                # The pointer only moves forward: keep the newest of old and new.
                ordered = await self._chat_repo.get_room_ids(
                    mediation.id,
                    sub_chat.id,
                    [*valid, participant.last_read_message_id],
                )
                participant.last_read_message_id = ordered[-1]
                participant.last_read_at = self._now()

            if newly_read:
                self._outbox.to_room(
                    sub_chat_room(sub_chat.id),
                    RealtimeEvent.MESSAGES_READ_UPDATE,
                    ReadUpdateResponse(
                        mediation_id=mediation.id,
                        sub_chat_id=sub_chat.id,
                        reader_id=actor.user_id,
                        message_ids=newly_read,
                        read_at=self._now(),
                    ).model_dump(mode="json"),
                )
            unread = await self._chat_repo.unread_count(mediation.id, sub_chat.id, actor.user_id)
            await self._queue_unread_counts(mediation.id, sub_chat.id, [actor.user_id])
        return MarkReadResponse(
            mediation_id=mediation.id,
            sub_chat_id=sub_chat.id,
            message_ids=newly_read,
            unread_count=unread,
        )
