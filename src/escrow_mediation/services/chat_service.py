"""Main mediation chat: room access, posting and read receipts.

Both the REST routes and the socket adapter call this service. Unread
counts pushed to clients are always recomputed from the persisted messages
and receipts, never derived from what a client reports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import (
    CHAT_OPEN_STATUSES,
    MediationStatus,
    MessageType,
    PartyRole,
    RealtimeEvent,
)
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationValidationError,
)
from escrow_mediation.infrastructure.database.orm_models import ChatMessage
from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.presence import mediation_room
from escrow_mediation.schemas.chat import (
    ChatMessageResponse,
    ChatRoomResponse,
    MarkReadResponse,
    ReadUpdateResponse,
)
from escrow_mediation.services.base import TransactionalService, message_payload
from escrow_mediation.services.dispute_service import DisputeService

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.infrastructure.database.orm_models import MediationRequest

logger = get_logger(__name__)

CHAT_ROLES = frozenset({PartyRole.SELLER, PartyRole.BUYER, PartyRole.MEDIATOR, PartyRole.OVERSEER})


def build_user_message(
    mediation_id: uuid.UUID,
    sender_id: uuid.UUID,
    body: str | None,
    image_url: str | None,
    sub_chat_id: uuid.UUID | None = None,
) -> ChatMessage:
    """Validate user content and build the message row. Needs a body, an image or both."""
    body = (body or "").strip() or None
    image_url = (image_url or "").strip() or None
    if body is None and image_url is None:
        raise MediationValidationError("A message needs a body or an image", field="body")
    return ChatMessage(
        mediation_id=mediation_id,
        sub_chat_id=sub_chat_id,
        sender_id=sender_id,
        type=(MessageType.IMAGE if image_url else MessageType.TEXT).value,
        body=body,
        image_url=image_url,
        reads=[],
    )


class ChatService(TransactionalService):
    """The three- or four-party chat attached to every mediation."""

    def _require_member(self, actor: Actor, mediation: MediationRequest) -> set[PartyRole]:
        roles = self._require_visibility(actor, mediation)
        if not roles & CHAT_ROLES:
            raise ForbiddenError(action="mediation_chat", actor_id=str(actor.user_id))
        return roles

    @staticmethod
    def _require_open(mediation: MediationRequest, attempted: str) -> None:
        if MediationStatus(mediation.status) not in CHAT_OPEN_STATUSES:
            raise InvalidStateTransitionError(
                current_state=mediation.status,
                attempted=attempted,
                reason="the mediation chat is closed in this status",
            )

    async def _room(self, mediation: MediationRequest, user_id: uuid.UUID) -> ChatRoomResponse:
        messages = await self._chat_repo.get_room(mediation.id)
        unread = await self._chat_repo.unread_count(mediation.id, None, user_id)
        return ChatRoomResponse(
            mediation_id=mediation.id,
            messages=[ChatMessageResponse.model_validate(m) for m in messages],
            unread_count=unread,
        )

    async def join_room(self, actor: Actor, mediation_id: uuid.UUID) -> ChatRoomResponse:
        """Open the main chat for the caller and return its history.

        An admin joining a disputed mediation becomes one of its overseers.
        Joining again is harmless.
        """
        mediation = await self._get_mediation_or_raise(mediation_id)
        self._require_visibility(actor, mediation)
        self._require_open(mediation, "join_chat")
        if (
            actor.is_admin
            and mediation.status == MediationStatus.DISPUTED
            and actor.user_id not in mediation.overseer_ids
        ):
            mediation = await DisputeService(self._session, self._hub, self._settings).join_dispute(
                actor, mediation_id
            )
        self._require_member(actor, mediation)
        return await self._room(mediation, actor.user_id)

    async def history(self, actor: Actor, mediation_id: uuid.UUID) -> ChatRoomResponse:
        """Main chat history; stays readable after the mediation ends."""
        mediation = await self._get_mediation_or_raise(mediation_id)
        self._require_member(actor, mediation)
        return await self._room(mediation, actor.user_id)

    async def unread_count(self, actor: Actor, mediation_id: uuid.UUID) -> int:
        mediation = await self._get_mediation_or_raise(mediation_id)
        self._require_member(actor, mediation)
        return await self._chat_repo.unread_count(mediation.id, None, actor.user_id)

    async def post_message(
        self,
        actor: Actor,
        mediation_id: uuid.UUID,
        body: str | None = None,
        image_url: str | None = None,
    ) -> ChatMessage:
        async with self.unit_of_work(mediation_id, "send_message"):
            mediation = await self._get_mediation_or_raise(mediation_id)
            self._require_member(actor, mediation)
            self._require_open(mediation, "send_message")
            message = await self._chat_repo.add(
                build_user_message(mediation.id, actor.user_id, body, image_url)
            )

            self._outbox.to_room(
                mediation_room(mediation.id),
                RealtimeEvent.NEW_MEDIATION_MESSAGE,
                message_payload(message),
            )
            others = [
                uid
                for uid in (*mediation.party_ids, *mediation.overseer_ids)
                if uid != actor.user_id
            ]
            await self._queue_unread_counts(mediation.id, None, others)

        logger.info(
            "chat.message_posted",
            mediation_id=str(mediation_id),
            message_id=str(message.id),
            sender_id=str(actor.user_id),
        )
        return message

    async def mark_read(
        self,
        actor: Actor,
        mediation_id: uuid.UUID,
        message_ids: Iterable[uuid.UUID],
    ) -> MarkReadResponse:
        """Record read receipts for the caller.

        Ids outside this room and the caller's own messages are ignored.
        """
        async with self.unit_of_work(mediation_id, "mark_read"):
            mediation = await self._get_mediation_or_raise(mediation_id)
            self._require_member(actor, mediation)
            valid = await self._chat_repo.get_room_ids(
                mediation.id, None, message_ids, exclude_sender=actor.user_id
            )
            newly_read = await self._chat_repo.mark_read(actor.user_id, valid)
            if newly_read:
                self._outbox.to_room(
                    mediation_room(mediation.id),
                    RealtimeEvent.MESSAGES_READ_UPDATE,
                    ReadUpdateResponse(
                        mediation_id=mediation.id,
                        reader_id=actor.user_id,
                        message_ids=newly_read,
                        read_at=self._now(),
                    ).model_dump(mode="json"),
                )
            unread = await self._chat_repo.unread_count(mediation.id, None, actor.user_id)
            await self._queue_unread_counts(mediation.id, None, [actor.user_id])
        return MarkReadResponse(
            mediation_id=mediation_id, message_ids=newly_read, unread_count=unread
        )
