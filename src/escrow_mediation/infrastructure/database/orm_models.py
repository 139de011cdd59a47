"""SQLAlchemy 2.0 ORM models for the mediation service.

Tables:
    1. users                  - Accounts with their ledger fields (balance, escrow_balance).
    2. mediation_requests     - The mediation aggregate: parties, terms, status, dispute outcome.
    3. mediation_overseers    - Admins attached to a disputed mediation.
    4. mediation_events       - Append-only audit log of every state transition.
    5. chat_messages          - Main chat and sub-chat messages, system messages included.
    6. message_reads          - Read receipts, one row per (message, reader).
    7. sub_chats              - Admin side-channels under a disputed mediation.
    8. sub_chat_participants  - Members of a sub-chat with their last-read pointer.
    9. notifications          - Durable notification records.
   10. ledger_entries         - Append-only record of every balance movement.

Design decisions:
    - UUIDs as primary keys, stored natively on PostgreSQL and as CHAR(32) elsewhere.
    - Decimal amounts with cent precision (no floating point in the domain).
    - JSON columns (JSONB on PostgreSQL) for message params and audit details.
    - CHECK constraints keep balances non-negative and status values closed.
    - mediation_requests carries a version counter: a concurrent writer that
      loaded an older version fails its UPDATE instead of overwriting.
    - Financial terms are frozen once the escrow is funded.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from escrow_mediation.domain.enums import (
    ESCROW_HELD_STATUSES,
    MediationStatus,
    MessageType,
    UserRole,
)
from escrow_mediation.domain.exceptions import MediationValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 2, asdecimal=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _sql_in(values: Iterable[object]) -> str:
    return ", ".join(f"'{v}'" for v in sorted(str(v) for v in values))


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. users
# ---------------------------------------------------------------------------
class UserAccount(Base):
    """A platform user. Ledger fields are only written by transition handlers."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default=UserRole.USER.value)
    api_token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        comment="Bearer token resolved by the auth dependency",
    )
    is_mediator_qualified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Ledger ---
    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        comment="Spendable balance in the platform currency",
    )
    escrow_balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        comment="Buyer funds currently held in open mediations",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_balance_non_negative"),
        CheckConstraint("escrow_balance >= 0", name="ck_user_escrow_non_negative"),
        CheckConstraint(f"role IN ({_sql_in(UserRole)})", name="ck_user_valid_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<UserAccount id={self.id} role={self.role} balance={self.balance}>"


# ---------------------------------------------------------------------------
# 2/3. mediation_requests + mediation_overseers
# ---------------------------------------------------------------------------
mediation_overseers = Table(
    "mediation_overseers",
    Base.metadata,
    Column(
        "mediation_id",
        Uuid,
        ForeignKey("mediation_requests.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

# Fields that may not change once funded_at is set. escrowed_amount is not
# one of them: it drops to zero when the escrow is released or refunded.
FROZEN_TERMS = (
    "bid_amount",
    "bid_currency",
    "escrowed_currency",
    "escrow_platform_amount",
    "fee_platform_amount",
    "calculated_mediator_fee",
    "mediation_fee_currency",
)


class MediationRequest(Base):
    """The mediation aggregate root.

    `status` is only ever written by the mediation services after the
    state machine has accepted the transition.
    """

    __tablename__ = "mediation_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # --- Parties ---
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    mediator_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, default=None
    )

    # --- Financial terms ---
    bid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    bid_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    calculated_mediator_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    mediation_fee_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    escrowed_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00")
    )
    escrowed_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    escrow_platform_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        comment="Exact amount debited from the buyer in the platform currency",
    )
    fee_platform_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.00"),
        comment="Mediator fee in the platform currency, fixed at funding time",
    )
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escrow_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set exactly once when the escrow leaves the aggregate",
    )

    # --- Status ---
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=MediationStatus.PENDING_MEDIATOR_SELECTION.value,
    )
    seller_confirmed_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    buyer_confirmed_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Mediator selection ---
    mediator_rejection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previously_suggested_mediators: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    # --- Dispute ---
    dispute_opened_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    dispute_opened_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    winner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    loser_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    admin_join_message_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Cancellation ---
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Optimistic lock ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Relationships ---
    overseers: Mapped[list[UserAccount]] = relationship(
        "UserAccount",
        secondary=mediation_overseers,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_sql_in(MediationStatus)})",
            name="ck_mediation_valid_status",
        ),
        CheckConstraint("bid_amount > 0", name="ck_mediation_positive_bid"),
        CheckConstraint(
            "calculated_mediator_fee >= 0 AND calculated_mediator_fee <= bid_amount",
            name="ck_mediation_fee_bounds",
        ),
        CheckConstraint(
            "escrowed_amount = 0 OR status IN "
            f"({_sql_in([*ESCROW_HELD_STATUSES, MediationStatus.COMPLETED, MediationStatus.CANCELLED])})",
            name="ck_mediation_escrow_status",
        ),
        CheckConstraint("seller_id <> buyer_id", name="ck_mediation_distinct_parties"),
        Index("idx_mediation_status", "status"),
        Index("idx_mediation_seller", "seller_id"),
        Index("idx_mediation_buyer", "buyer_id"),
        Index("idx_mediation_mediator", "mediator_id"),
    )

    @validates(*FROZEN_TERMS)
    def _freeze_terms_after_funding(self, key: str, value):  # noqa: ANN001, ANN202
        if self.funded_at is not None and getattr(self, key) != value:
            raise MediationValidationError(
                f"'{key}' cannot change once the escrow is funded", field=key
            )
        return value

    @property
    def party_ids(self) -> set[uuid.UUID]:
        ids = {self.seller_id, self.buyer_id}
        if self.mediator_id is not None:
            ids.add(self.mediator_id)
        return ids

    @property
    def overseer_ids(self) -> set[uuid.UUID]:
        return {admin.id for admin in self.overseers}

    @property
    def holds_escrow(self) -> bool:
        return self.funded_at is not None and self.escrow_released_at is None

    def release_escrow(self, at: datetime) -> None:
        """Empty the escrow. escrow_platform_amount keeps the funded value."""
        if not self.holds_escrow:
            raise MediationValidationError(
                "The escrow was already released", field="escrowed_amount"
            )
        self.escrowed_amount = Decimal("0.00")
        self.escrow_released_at = at

    def __repr__(self) -> str:
        return (
            f"<MediationRequest id={self.id} status={self.status} "
            f"bid={self.bid_amount} {self.bid_currency}>"
        )


# ---------------------------------------------------------------------------
# 4. mediation_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class MediationEvent(Base):
    """Immutable audit record of every transition in a mediation's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "mediation_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mediation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("mediation_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        comment="User who triggered the event; null for automatic transitions",
    )
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_mediation", "mediation_id"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MediationEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 5/6. chat_messages + message_reads
# ---------------------------------------------------------------------------
class ChatMessage(Base):
    """A message in the main mediation chat (sub_chat_id is null) or in a sub-chat.

    System messages document transitions: they carry a message_key plus
    params for client-side rendering and are never edited.
    """

    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mediation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("mediation_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sub_chat_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("sub_chats.id", ondelete="CASCADE"),
        nullable=True,
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False, default=MessageType.TEXT.value)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    message_key: Mapped[str | None] = mapped_column(String(80), nullable=True)
    message_params: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    reads: Mapped[list[MessageRead]] = relationship(
        "MessageRead",
        cascade="all, delete-orphan",
        order_by="MessageRead.read_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(f"type IN ({_sql_in(MessageType)})", name="ck_message_valid_type"),
        CheckConstraint(
            "type = 'system' OR sender_id IS NOT NULL",
            name="ck_message_user_has_sender",
        ),
        Index("idx_message_room", "mediation_id", "sub_chat_id", "created_at"),
    )

    @property
    def is_system(self) -> bool:
        return self.type == MessageType.SYSTEM.value

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} type={self.type} sub_chat={self.sub_chat_id}>"


def _forbid_system_message_edit(mapper, connection, target):  # noqa: ANN001
    if target.type == MessageType.SYSTEM.value:
        raise MediationValidationError("System messages cannot be edited", field="message")


class MessageRead(Base):
    """Read receipt. The composite key makes marking a message read idempotent."""

    __tablename__ = "message_reads"

    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    reader_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


# ---------------------------------------------------------------------------
# 7/8. sub_chats + sub_chat_participants
# ---------------------------------------------------------------------------
class SubChat(Base):
    """An admin-created side-channel tied to the dispute episode that created it."""

    __tablename__ = "sub_chats"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mediation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("mediation_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    participants: Mapped[list[SubChatParticipant]] = relationship(
        "SubChatParticipant",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (Index("idx_sub_chat_mediation", "mediation_id"),)

    @property
    def participant_ids(self) -> set[uuid.UUID]:
        return {p.user_id for p in self.participants}

    def participant(self, user_id: uuid.UUID) -> SubChatParticipant | None:
        return next((p for p in self.participants if p.user_id == user_id), None)

    def __repr__(self) -> str:
        return f"<SubChat id={self.id} mediation={self.mediation_id}>"


class SubChatParticipant(Base):
    __tablename__ = "sub_chat_participants"

    sub_chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sub_chats.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    last_read_message_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# 9. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    params: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    mediation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("mediation_requests.id", ondelete="CASCADE"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_notification_user", "user_id", "is_read"),)


# ---------------------------------------------------------------------------
# 10. ledger_entries (Append-Only)
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One balance movement. balance_after is the authoritative value after it."""

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    mediation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("mediation_requests.id"), nullable=True
    )
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    escrow_balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_positive_amount"),
        Index("idx_ledger_user", "user_id", "created_at"),
        Index("idx_ledger_mediation", "mediation_id"),
    )


# ---------------------------------------------------------------------------
# Listeners
# ---------------------------------------------------------------------------
event.listen(UserAccount, "before_update", _set_updated_at)
event.listen(MediationRequest, "before_update", _set_updated_at)
event.listen(ChatMessage, "before_update", _forbid_system_message_edit)
