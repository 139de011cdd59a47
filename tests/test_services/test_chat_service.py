"""Tests for the main mediation chat: access, posting, unread counts and receipts."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from escrow_mediation.domain.enums import MediationStatus, MessageType
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationNotFoundError,
    MediationValidationError,
)
from escrow_mediation.infrastructure.database.orm_models import MessageRead
from escrow_mediation.realtime import mediation_room
from escrow_mediation.services.chat_service import ChatService


@pytest.fixture
def chat(flow):  # noqa: ANN001, ANN201
    """Run one ChatService call in its own session, like one request."""

    async def _call(method: str, *args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        async with flow.session_factory() as session:
            service = ChatService(session, flow.hub, flow.settings)
            return await getattr(service, method)(*args, **kwargs)

    return _call


# ============================================================
# Access
# ============================================================


class TestJoinRoom:
    @pytest.mark.asyncio
    async def test_chat_is_closed_before_the_offer_is_accepted(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.MEDIATOR_ASSIGNED)
        with pytest.raises(InvalidStateTransitionError):
            await chat("join_room", flow.users.seller, mediation_id)

    @pytest.mark.asyncio
    async def test_parties_join_and_see_system_history(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.MEDIATION_OFFER_ACCEPTED)
        room = await chat("join_room", flow.users.buyer, mediation_id)
        assert room.mediation_id == mediation_id
        assert room.unread_count == 0
        assert room.messages
        assert all(m.type == MessageType.SYSTEM for m in room.messages)

    @pytest.mark.asyncio
    async def test_stranger_gets_not_found(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        with pytest.raises(MediationNotFoundError):
            await chat("join_room", flow.users.outsider, mediation_id)

    @pytest.mark.asyncio
    async def test_admin_needs_a_dispute_to_join(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        with pytest.raises(ForbiddenError):
            await chat("join_room", flow.users.admin, mediation_id)

    @pytest.mark.asyncio
    async def test_admin_joining_a_dispute_becomes_overseer(
        self, flow, chat, load_mediation
    ) -> None:
        mediation_id = await flow.new(MediationStatus.DISPUTED)
        room = await chat("join_room", flow.users.admin, mediation_id)

        assert flow.users.admin.user_id in (await load_mediation(mediation_id)).overseer_ids
        assert "system.admin_joined" in [m.message_key for m in room.messages]

    @pytest.mark.asyncio
    async def test_history_stays_readable_after_completion(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        await chat("post_message", u.seller, mediation_id, body="Shipped today")
        async with flow.session_factory() as session:
            await flow.mediations(session).confirm_receipt(u.buyer, mediation_id)

        with pytest.raises(InvalidStateTransitionError):
            await chat("join_room", u.seller, mediation_id)
        room = await chat("history", u.seller, mediation_id)
        assert "Shipped today" in [m.body for m in room.messages]


# ============================================================
# Posting
# ============================================================


class TestPostMessage:
    @pytest.mark.asyncio
    async def test_text_and_image_messages(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.ESCROW_FUNDED)
        text = await chat("post_message", u.buyer, mediation_id, body="  Hello  ")
        image = await chat(
            "post_message", u.seller, mediation_id, image_url="https://cdn.example/bike.jpg"
        )

        assert text.type == MessageType.TEXT
        assert text.body == "Hello"
        assert text.sender_id == u.buyer.user_id
        assert image.type == MessageType.IMAGE
        assert image.body is None

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        with pytest.raises(MediationValidationError):
            await chat("post_message", flow.users.buyer, mediation_id, body="   ")

    @pytest.mark.asyncio
    async def test_stranger_cannot_post(self, flow, chat) -> None:
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        with pytest.raises(MediationNotFoundError):
            await chat("post_message", flow.users.outsider, mediation_id, body="hi")

    @pytest.mark.asyncio
    async def test_admin_that_has_not_joined_cannot_post(self, flow, chat) -> None:
        mediation_id = await flow.disputed_with_overseer()
        with pytest.raises(ForbiddenError):
            await chat("post_message", flow.users.other_admin, mediation_id, body="hi")

    @pytest.mark.asyncio
    async def test_overseer_can_post(self, flow, chat) -> None:
        mediation_id = await flow.disputed_with_overseer()
        message = await chat(
            "post_message", flow.users.admin, mediation_id, body="Please upload photos"
        )
        assert message.sender_id == flow.users.admin.user_id

    @pytest.mark.asyncio
    async def test_posting_after_cancellation_is_refused(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.MEDIATION_OFFER_ACCEPTED)
        async with flow.session_factory() as session:
            await flow.mediations(session).cancel(u.seller, mediation_id, "Sold elsewhere")
        with pytest.raises(InvalidStateTransitionError):
            await chat("post_message", u.seller, mediation_id, body="hi")

    @pytest.mark.asyncio
    async def test_message_reaches_the_room_and_unread_counts(
        self, flow, chat, hub, connect
    ) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        seller_socket = await connect(u.seller)
        mediator_socket = await connect(u.mediator)
        await hub.join(seller_socket.connection, mediation_room(mediation_id))

        message = await chat("post_message", u.buyer, mediation_id, body="Where is it?")

        assert [m["id"] for m in seller_socket.events("new_mediation_message")] == [
            str(message.id)
        ]
        # Not in the room, but still told about the unread message.
        assert mediator_socket.events("new_mediation_message") == []
        assert mediator_socket.events("unread_count_updated")[-1]["unread_count"] == 1


# ============================================================
# Unread counts and read receipts
# ============================================================


class TestReadReceipts:
    @pytest.mark.asyncio
    async def test_unread_counts_ignore_own_and_system_messages(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        await chat("post_message", u.buyer, mediation_id, body="one")
        await chat("post_message", u.buyer, mediation_id, body="two")

        assert await chat("unread_count", u.seller, mediation_id) == 2
        assert await chat("unread_count", u.mediator, mediation_id) == 2
        assert await chat("unread_count", u.buyer, mediation_id) == 0

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        first = await chat("post_message", u.buyer, mediation_id, body="one")
        second = await chat("post_message", u.buyer, mediation_id, body="two")

        result = await chat("mark_read", u.seller, mediation_id, [first.id, second.id])
        assert result.message_ids == [first.id, second.id]
        assert result.unread_count == 0

        again = await chat("mark_read", u.seller, mediation_id, [first.id, second.id])
        assert again.message_ids == []
        assert again.unread_count == 0

    @pytest.mark.asyncio
    async def test_own_and_foreign_ids_are_ignored(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        other_id = await flow.new(MediationStatus.IN_PROGRESS)
        own = await chat("post_message", u.seller, mediation_id, body="mine")
        foreign = await chat("post_message", u.buyer, other_id, body="elsewhere")

        result = await chat(
            "mark_read", u.seller, mediation_id, [own.id, foreign.id, uuid.uuid4()]
        )
        assert result.message_ids == []
        assert await chat("unread_count", u.seller, other_id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_marks_store_one_receipt(
        self, flow, chat, session_factory
    ) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        message = await chat("post_message", u.buyer, mediation_id, body="one")

        results = await asyncio.gather(
            chat("mark_read", u.seller, mediation_id, [message.id]),
            chat("mark_read", u.seller, mediation_id, [message.id]),
        )

        assert sorted(len(r.message_ids) for r in results) == [0, 1]
        async with session_factory() as session:
            receipts = await session.scalar(
                select(func.count()).select_from(MessageRead).where(
                    MessageRead.message_id == message.id
                )
            )
        assert receipts == 1

    @pytest.mark.asyncio
    async def test_receipts_are_broadcast_once(self, flow, chat, hub, connect) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        buyer_socket = await connect(u.buyer)
        await hub.join(buyer_socket.connection, mediation_room(mediation_id))
        message = await chat("post_message", u.buyer, mediation_id, body="one")

        await chat("mark_read", u.seller, mediation_id, [message.id])
        await chat("mark_read", u.seller, mediation_id, [message.id])

        updates = buyer_socket.events("messages_read_update")
        assert len(updates) == 1
        assert updates[0]["reader_id"] == str(u.seller.user_id)
        assert updates[0]["message_ids"] == [str(message.id)]

    @pytest.mark.asyncio
    async def test_history_carries_read_receipts(self, flow, chat) -> None:
        u = flow.users
        mediation_id = await flow.new(MediationStatus.IN_PROGRESS)
        message = await chat("post_message", u.buyer, mediation_id, body="one")
        await chat("mark_read", u.mediator, mediation_id, [message.id])

        room = await chat("history", u.buyer, mediation_id)
        posted = next(m for m in room.messages if m.id == message.id)
        assert [r.reader_id for r in posted.read_by] == [u.mediator.user_id]
