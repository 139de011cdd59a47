"""Initial mediation schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(18, 2, asdecimal=True)
JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

STATUSES = (
    "'Cancelled', 'Completed', 'Disputed', 'EscrowFunded', 'InProgress', "
    "'MediationOfferAccepted', 'MediatorAssigned', 'PartiesConfirmed', "
    "'PendingMediatorSelection'"
)
ESCROW_STATUSES = (
    "'Cancelled', 'Completed', 'Disputed', 'EscrowFunded', 'InProgress', 'PartiesConfirmed'"
)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("role", sa.String(10), nullable=False),
        sa.Column("api_token", sa.String(128), nullable=False, unique=True),
        sa.Column("is_mediator_qualified", sa.Boolean(), nullable=False),
        sa.Column("blocked", sa.Boolean(), nullable=False),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("escrow_balance", MONEY, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("balance >= 0", name="ck_user_balance_non_negative"),
        sa.CheckConstraint("escrow_balance >= 0", name="ck_user_escrow_non_negative"),
        sa.CheckConstraint("role IN ('Admin', 'User')", name="ck_user_valid_role"),
    )

    op.create_table(
        "mediation_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("seller_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("buyer_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("mediator_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("bid_amount", MONEY, nullable=False),
        sa.Column("bid_currency", sa.String(3), nullable=False),
        sa.Column("calculated_mediator_fee", MONEY, nullable=False),
        sa.Column("mediation_fee_currency", sa.String(3), nullable=False),
        sa.Column("escrowed_amount", MONEY, nullable=False),
        sa.Column("escrowed_currency", sa.String(3), nullable=True),
        sa.Column("escrow_platform_amount", MONEY, nullable=False),
        sa.Column("fee_platform_amount", MONEY, nullable=False),
        _timestamp("funded_at", nullable=True),
        _timestamp("escrow_released_at", nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("seller_confirmed_start", sa.Boolean(), nullable=False),
        sa.Column("buyer_confirmed_start", sa.Boolean(), nullable=False),
        sa.Column("mediator_rejection_count", sa.Integer(), nullable=False),
        sa.Column("previously_suggested_mediators", JSON, nullable=False),
        sa.Column("dispute_opened_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _timestamp("dispute_opened_at", nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("winner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("loser_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("admin_join_message_sent", sa.Boolean(), nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _timestamp("cancelled_at", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(f"status IN ({STATUSES})", name="ck_mediation_valid_status"),
        sa.CheckConstraint("bid_amount > 0", name="ck_mediation_positive_bid"),
        sa.CheckConstraint(
            "calculated_mediator_fee >= 0 AND calculated_mediator_fee <= bid_amount",
            name="ck_mediation_fee_bounds",
        ),
        sa.CheckConstraint(
            f"escrowed_amount = 0 OR status IN ({ESCROW_STATUSES})",
            name="ck_mediation_escrow_status",
        ),
        sa.CheckConstraint("seller_id <> buyer_id", name="ck_mediation_distinct_parties"),
    )
    op.create_index("idx_mediation_status", "mediation_requests", ["status"])
    op.create_index("idx_mediation_seller", "mediation_requests", ["seller_id"])
    op.create_index("idx_mediation_buyer", "mediation_requests", ["buyer_id"])
    op.create_index("idx_mediation_mediator", "mediation_requests", ["mediator_id"])

    op.create_table(
        "mediation_overseers",
        sa.Column(
            "mediation_id",
            sa.Uuid(),
            sa.ForeignKey("mediation_requests.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        _timestamp("joined_at"),
    )

    op.create_table(
        "mediation_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "mediation_id",
            sa.Uuid(),
            sa.ForeignKey("mediation_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(30), nullable=True),
        sa.Column("new_status", sa.String(30), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("details", JSON, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_event_mediation", "mediation_events", ["mediation_id"])
    op.create_index("idx_event_created_at", "mediation_events", ["created_at"])

    op.create_table(
        "sub_chats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "mediation_id",
            sa.Uuid(),
            sa.ForeignKey("mediation_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        _timestamp("created_at"),
        _timestamp("last_message_at", nullable=True),
    )
    op.create_index("idx_sub_chat_mediation", "sub_chats", ["mediation_id"])

    op.create_table(
        "sub_chat_participants",
        sa.Column(
            "sub_chat_id",
            sa.Uuid(),
            sa.ForeignKey("sub_chats.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("last_read_message_id", sa.Uuid(), nullable=True),
        _timestamp("last_read_at", nullable=True),
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "mediation_id",
            sa.Uuid(),
            sa.ForeignKey("mediation_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sub_chat_id",
            sa.Uuid(),
            sa.ForeignKey("sub_chats.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("sender_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("message_key", sa.String(80), nullable=True),
        sa.Column("message_params", JSON, nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("type IN ('image', 'system', 'text')", name="ck_message_valid_type"),
        sa.CheckConstraint(
            "type = 'system' OR sender_id IS NOT NULL", name="ck_message_user_has_sender"
        ),
    )
    op.create_index(
        "idx_message_room", "chat_messages", ["mediation_id", "sub_chat_id", "created_at"]
    )

    op.create_table(
        "message_reads",
        sa.Column(
            "message_id",
            sa.Uuid(),
            sa.ForeignKey("chat_messages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "reader_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        _timestamp("read_at"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("params", JSON, nullable=True),
        sa.Column(
            "mediation_id",
            sa.Uuid(),
            sa.ForeignKey("mediation_requests.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_notification_user", "notifications", ["user_id", "is_read"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "mediation_id", sa.Uuid(), sa.ForeignKey("mediation_requests.id"), nullable=True
        ),
        sa.Column("entry_type", sa.String(30), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("escrow_balance_after", MONEY, nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_ledger_positive_amount"),
    )
    op.create_index("idx_ledger_user", "ledger_entries", ["user_id", "created_at"])
    op.create_index("idx_ledger_mediation", "ledger_entries", ["mediation_id"])


def downgrade() -> None:
    for table in (
        "ledger_entries",
        "notifications",
        "message_reads",
        "chat_messages",
        "sub_chat_participants",
        "sub_chats",
        "mediation_events",
        "mediation_overseers",
        "mediation_requests",
        "users",
    ):
        op.drop_table(table)
