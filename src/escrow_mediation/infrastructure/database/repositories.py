"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, NamedTuple

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from escrow_mediation.domain.enums import MessageType, UserRole
from escrow_mediation.infrastructure.database.orm_models import (
    ChatMessage,
    LedgerEntry,
    MediationEvent,
    MediationRequest,
    MessageRead,
    Notification,
    SubChat,
    UserAccount,
    mediation_overseers,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.domain.enums import MediationStatus


class Balances(NamedTuple):
    balance: Decimal
    escrow_balance: Decimal


class UserRepository:
    """Data access for user accounts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user: UserAccount) -> UserAccount:
        self._session.add(user)
        await self._session.flush()
        return user

    async def get_by_id(self, user_id: uuid.UUID) -> UserAccount | None:
        return await self._session.get(UserAccount, user_id)

    async def get_by_token(self, api_token: str) -> UserAccount | None:
        result = await self._session.execute(
            select(UserAccount).where(UserAccount.api_token == api_token)
        )
        return result.scalar_one_or_none()

    async def list_admins(self) -> list[UserAccount]:
        result = await self._session.execute(
            select(UserAccount).where(UserAccount.role == UserRole.ADMIN.value)
        )
        return list(result.scalars().all())

    async def get_balances(self, user_id: uuid.UUID) -> Balances | None:
        """Read the ledger fields straight from the database, bypassing the identity map."""
        result = await self._session.execute(
            select(UserAccount.balance, UserAccount.escrow_balance).where(
                UserAccount.id == user_id
            )
        )
        row = result.one_or_none()
        return Balances(*row) if row is not None else None


class MediationRepository:
    """Data access for mediation requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, mediation: MediationRequest) -> MediationRequest:
        """Insert a new mediation request."""
        self._session.add(mediation)
        await self._session.flush()
        return mediation

    async def get_by_id(self, mediation_id: uuid.UUID) -> MediationRequest | None:
        """Fetch a mediation by its UUID."""
        result = await self._session.execute(
            select(MediationRequest).where(MediationRequest.id == mediation_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, mediation_id: uuid.UUID) -> MediationRequest | None:
        """Re-read a mediation inside the current transaction, row-locked where supported.

        populate_existing discards any state cached in the session so the
        guard always runs against the persisted status and version.
        """
        result = await self._session.execute(
            select(MediationRequest)
            .where(MediationRequest.id == mediation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add_overseer(self, mediation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Attach an overseer row. False when the admin is already attached,
        including by a concurrent request that committed first."""
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(mediation_overseers)
            .values(mediation_id=mediation_id, user_id=user_id, joined_at=datetime.now(UTC))
            .on_conflict_do_nothing(index_elements=["mediation_id", "user_id"])
            .returning(mediation_overseers.c.user_id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_status(self, mediation_id: uuid.UUID) -> str | None:
        """Read only the persisted status column."""
        result = await self._session.execute(
            select(MediationRequest.status).where(MediationRequest.id == mediation_id)
        )
        return result.scalar_one_or_none()

    async def get_by_status(self, status: MediationStatus) -> list[MediationRequest]:
        result = await self._session.execute(
            select(MediationRequest)
            .where(MediationRequest.status == status.value)
            .order_by(MediationRequest.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_for_user(self, user_id: uuid.UUID) -> list[MediationRequest]:
        """Fetch every mediation where the user is seller, buyer or mediator."""
        result = await self._session.execute(
            select(MediationRequest)
            .where(
                or_(
                    MediationRequest.seller_id == user_id,
                    MediationRequest.buyer_id == user_id,
                    MediationRequest.mediator_id == user_id,
                )
            )
            .order_by(MediationRequest.updated_at.desc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        mediation_id: uuid.UUID,
        event_type: str,
        old_status: str | None,
        new_status: str,
        actor_id: uuid.UUID | None = None,
        details: dict | None = None,
    ) -> MediationEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = MediationEvent(
            mediation_id=mediation_id,
            event_type=str(event_type),
            old_status=str(old_status) if old_status else None,
            new_status=str(new_status),
            actor_id=actor_id,
            details=details,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_mediation(self, mediation_id: uuid.UUID) -> list[MediationEvent]:
        """Fetch all events for a mediation in chronological order."""
        result = await self._session.execute(
            select(MediationEvent)
            .where(MediationEvent.mediation_id == mediation_id)
            .order_by(MediationEvent.created_at.asc())
        )
        return list(result.scalars().all())


class ChatRepository:
    """Data access for chat messages and read receipts.

    A room is the main chat of a mediation (sub_chat_id None) or one sub-chat.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _in_room(mediation_id: uuid.UUID, sub_chat_id: uuid.UUID | None):  # noqa: ANN205
        if sub_chat_id is None:
            return and_(ChatMessage.mediation_id == mediation_id, ChatMessage.sub_chat_id.is_(None))
        return and_(ChatMessage.mediation_id == mediation_id, ChatMessage.sub_chat_id == sub_chat_id)

    async def add(self, message: ChatMessage) -> ChatMessage:
        self._session.add(message)
        await self._session.flush()
        return message

    async def get_room(
        self,
        mediation_id: uuid.UUID,
        sub_chat_id: uuid.UUID | None = None,
    ) -> list[ChatMessage]:
        """Fetch a room's messages in commit order."""
        result = await self._session.execute(
            select(ChatMessage)
            .where(self._in_room(mediation_id, sub_chat_id))
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        return list(result.scalars().all())

    async def get_room_ids(
        self,
        mediation_id: uuid.UUID,
        sub_chat_id: uuid.UUID | None,
        message_ids: Iterable[uuid.UUID | None],
        exclude_sender: uuid.UUID | None = None,
    ) -> list[uuid.UUID]:
        """Keep only the ids that belong to the given room, oldest first."""
        ids = [mid for mid in message_ids if mid is not None]
        if not ids:
            return []
        stmt = select(ChatMessage.id).where(
            self._in_room(mediation_id, sub_chat_id), ChatMessage.id.in_(ids)
        )
        if exclude_sender is not None:
            stmt = stmt.where(
                or_(ChatMessage.sender_id.is_(None), ChatMessage.sender_id != exclude_sender)
            )
        result = await self._session.execute(
            stmt.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        return list(result.scalars().all())

    async def mark_read(
        self,
        reader_id: uuid.UUID,
        message_ids: Iterable[uuid.UUID],
    ) -> list[uuid.UUID]:
        """Insert read receipts, skipping the ones that already exist.

        Returns the ids that were newly marked. Concurrent calls for the same
        (message, reader) never produce a second receipt.
        """
        ids = list(message_ids)
        if not ids:
            return []
        now = datetime.now(UTC)
        rows = [{"message_id": mid, "reader_id": reader_id, "read_at": now} for mid in ids]
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(MessageRead)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["message_id", "reader_id"])
            .returning(MessageRead.message_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def unread_count(
        self,
        mediation_id: uuid.UUID,
        sub_chat_id: uuid.UUID | None,
        user_id: uuid.UUID,
    ) -> int:
        """Count the room's messages from other users that `user_id` has not read."""
        already_read = exists().where(
            MessageRead.message_id == ChatMessage.id,
            MessageRead.reader_id == user_id,
        )
        result = await self._session.execute(
            select(func.count(ChatMessage.id)).where(
                self._in_room(mediation_id, sub_chat_id),
                ChatMessage.type != MessageType.SYSTEM.value,
                ChatMessage.sender_id != user_id,
                ~already_read,
            )
        )
        return int(result.scalar_one())


class SubChatRepository:
    """Data access for admin sub-chats."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, sub_chat: SubChat) -> SubChat:
        self._session.add(sub_chat)
        await self._session.flush()
        return sub_chat

    async def get_by_id(self, sub_chat_id: uuid.UUID) -> SubChat | None:
        result = await self._session.execute(select(SubChat).where(SubChat.id == sub_chat_id))
        return result.scalar_one_or_none()

    async def get_by_mediation(self, mediation_id: uuid.UUID) -> list[SubChat]:
        result = await self._session.execute(
            select(SubChat)
            .where(SubChat.mediation_id == mediation_id)
            .order_by(SubChat.created_at.asc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    """Data access for durable notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def get_for_user(
        self, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._session.execute(
            stmt.order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def mark_read(self, user_id: uuid.UUID, notification_ids: Iterable[uuid.UUID]) -> int:
        ids = list(notification_ids)
        if not ids:
            return 0
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.id.in_(ids))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        )
        return int(result.scalar_one())


class LedgerRepository:
    """Atomic balance mutations plus the append-only ledger_entries log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def apply(
        self,
        user_id: uuid.UUID,
        balance_delta: Decimal,
        escrow_delta: Decimal,
    ) -> Balances | None:
        """Apply both deltas in one conditional UPDATE.

        The WHERE clause refuses any change that would take either field
        below zero, so the check and the write cannot be interleaved by a
        concurrent request. Returns the new balances, or None when the
        guard refused the change (or the user does not exist).
        """
        result = await self._session.execute(
            update(UserAccount)
            .where(
                UserAccount.id == user_id,
                UserAccount.balance + balance_delta >= 0,
                UserAccount.escrow_balance + escrow_delta >= 0,
            )
            .values(
                balance=UserAccount.balance + balance_delta,
                escrow_balance=UserAccount.escrow_balance + escrow_delta,
                updated_at=datetime.now(UTC),
            )
            .returning(UserAccount.balance, UserAccount.escrow_balance)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        return Balances(*row) if row is not None else None

    async def record(self, entry: LedgerEntry) -> LedgerEntry:
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_for_user(self, user_id: uuid.UUID, limit: int = 100) -> list[LedgerEntry]:
        result = await self._session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_for_mediation(self, mediation_id: uuid.UUID) -> list[LedgerEntry]:
        result = await self._session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.mediation_id == mediation_id)
            .order_by(LedgerEntry.created_at.asc())
        )
        return list(result.scalars().all())
