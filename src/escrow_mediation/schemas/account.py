"""Pydantic schemas for balances, ledger entries and notifications."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field


class BalancesResponse(BaseModel):
    """Authoritative balance fields, as pushed in user_balances_updated."""

    user_id: uuid.UUID
    balance: Decimal
    escrow_balance: Decimal
    currency: str


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    mediation_id: uuid.UUID | None
    entry_type: str
    amount: Decimal
    currency: str
    balance_after: Decimal
    escrow_balance_after: Decimal
    created_at: datetime


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    title: str
    message: str
    params: dict | None
    mediation_id: uuid.UUID | None
    is_read: bool
    created_at: datetime


class MarkNotificationsReadRequest(BaseModel):
    notification_ids: list[uuid.UUID] = Field(default_factory=list)


class MarkNotificationsReadResponse(BaseModel):
    updated: int
    unread_count: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
