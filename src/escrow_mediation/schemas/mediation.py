"""Pydantic schemas for the mediation API.

These schemas define the request/response shapes for the REST API, the
socket adapter and the realtime event payloads. They are separate from the
ORM models to maintain clean boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from escrow_mediation.domain.enums import Currency

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateMediationRequest(BaseModel):
    """Request body for opening a mediation request on a sale."""

    seller_id: uuid.UUID | None = Field(
        default=None,
        description="Seller of the item; defaults to the caller",
    )
    buyer_id: uuid.UUID = Field(..., description="Buyer whose bid was accepted")
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Short description of the item being sold",
        examples=["Used road bike, 54cm frame"],
    )
    bid_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Accepted bid amount",
        examples=[Decimal("100.00")],
    )
    bid_currency: Currency = Field(default=Currency.TND)
    mediator_fee: Decimal | None = Field(
        default=None,
        ge=0,
        decimal_places=2,
        description="Agreed mediator fee; computed from the fee tiers when omitted",
    )


class AssignMediatorRequest(BaseModel):
    mediator_id: uuid.UUID


class ReasonRequest(BaseModel):
    """Body shared by reject-assignment, open-dispute and cancel actions."""

    reason: str | None = Field(default=None, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    """Request body for an overseer closing a dispute.

    With cancel_mediation the escrow is refunded to the buyer and winner /
    loser are ignored; otherwise both must name the buyer and the seller.
    """

    winner_id: uuid.UUID | None = None
    loser_id: uuid.UUID | None = None
    resolution_notes: str = Field(default="", max_length=5000)
    cancel_mediation: bool = False


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MediationResponse(BaseModel):
    """The full mediation aggregate, as pushed in mediation_details_updated."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    status: str
    seller_id: uuid.UUID
    buyer_id: uuid.UUID
    mediator_id: uuid.UUID | None
    overseer_ids: list[uuid.UUID]

    bid_amount: Decimal
    bid_currency: str
    calculated_mediator_fee: Decimal
    mediation_fee_currency: str
    escrowed_amount: Decimal
    escrowed_currency: str | None
    escrow_platform_amount: Decimal
    funded_at: datetime | None
    escrow_released_at: datetime | None

    seller_confirmed_start: bool
    buyer_confirmed_start: bool
    mediator_rejection_count: int
    previously_suggested_mediators: list[str]

    dispute_opened_by: uuid.UUID | None
    dispute_opened_at: datetime | None
    dispute_reason: str | None
    resolution_notes: str | None
    winner_id: uuid.UUID | None
    loser_id: uuid.UUID | None

    cancellation_reason: str | None
    cancelled_by: uuid.UUID | None
    cancelled_at: datetime | None

    version: int
    created_at: datetime
    updated_at: datetime


class SubChatSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str | None
    participant_ids: list[uuid.UUID]
    created_at: datetime
    last_message_at: datetime | None


class MediationDetailsResponse(BaseModel):
    """Mediation as seen by one caller: the aggregate plus what the caller may do."""

    mediation: MediationResponse
    roles: list[str] = Field(description="Roles the caller holds on this mediation")
    allowed_actions: list[str] = Field(
        description="Transitions the caller could trigger from the current status"
    )
    sub_chats: list[SubChatSummary] = Field(
        default_factory=list,
        description="Sub-chats visible to the caller (all of them for admins)",
    )


class MediationEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    mediation_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor_id: uuid.UUID | None
    details: dict | None
    created_at: datetime
