"""Mediation lifecycle REST API routes.

Every mutating route is a thin adapter over MediationService: the service
re-reads the mediation, checks the caller's role on it and the persisted
status, and commits before any realtime event is pushed.

Routes:
    POST   /api/v1/mediations                              - Open a mediation request
    GET    /api/v1/mediations                              - Caller's mediations
    GET    /api/v1/mediations/{id}                         - Details for the caller
    GET    /api/v1/mediations/{id}/history                 - Audit trail
    POST   /api/v1/mediations/{id}/assign-mediator         - Admin or seller picks a mediator
    POST   /api/v1/mediations/{id}/mediator-accept         - Mediator accepts
    POST   /api/v1/mediations/{id}/mediator-reject         - Mediator declines with a reason
    POST   /api/v1/mediations/{id}/seller-confirm          - Seller confirms readiness
    POST   /api/v1/mediations/{id}/buyer-confirm-and-fund  - Buyer confirms and funds escrow
    POST   /api/v1/mediations/{id}/confirm-receipt         - Buyer confirms delivery
    POST   /api/v1/mediations/{id}/dispute                 - Buyer or seller opens a dispute
    POST   /api/v1/mediations/{id}/cancel                  - Seller or buyer cancels early
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from escrow_mediation.api.deps import get_current_actor, get_db_session, get_hub
from escrow_mediation.domain.actors import Actor  # noqa: TC001
from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.hub import RealtimeHub  # noqa: TC001
from escrow_mediation.schemas.mediation import (
    AssignMediatorRequest,
    CreateMediationRequest,
    MediationDetailsResponse,
    MediationEventResponse,
    MediationResponse,
    ReasonRequest,
    SubChatSummary,
)
from escrow_mediation.services.mediation_service import MediationService

router = APIRouter(prefix="/api/v1/mediations", tags=["Mediations"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=MediationResponse,
    status_code=201,
    summary="Open a mediation request for an accepted bid",
)
async def create_mediation(
    request: CreateMediationRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    svc = MediationService(session, hub)
    mediation = await svc.create_mediation(
        actor,
        buyer_id=request.buyer_id,
        title=request.title,
        bid_amount=request.bid_amount,
        bid_currency=request.bid_currency,
        seller_id=request.seller_id,
        mediator_fee=request.mediator_fee,
    )
    return MediationResponse.model_validate(mediation)


@router.get(
    "",
    response_model=list[MediationResponse],
    summary="List the caller's mediations",
)
async def list_mediations(
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[MediationResponse]:
    mediations = await MediationService(session).list_for_actor(actor)
    return [MediationResponse.model_validate(m) for m in mediations]


@router.get(
    "/{mediation_id}",
    response_model=MediationDetailsResponse,
    summary="Get a mediation with the caller's roles and allowed actions",
)
async def get_mediation(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> MediationDetailsResponse:
    mediation, roles, allowed, sub_chats = await MediationService(session).get_details(
        actor, mediation_id
    )
    return MediationDetailsResponse(
        mediation=MediationResponse.model_validate(mediation),
        roles=sorted(roles),
        allowed_actions=allowed,
        sub_chats=[SubChatSummary.model_validate(sc) for sc in sub_chats],
    )


@router.get(
    "/{mediation_id}/history",
    response_model=list[MediationEventResponse],
    summary="Get the mediation's audit trail",
)
async def get_history(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[MediationEventResponse]:
    events = await MediationService(session).get_history(actor, mediation_id)
    return [MediationEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Mediator selection
# ---------------------------------------------------------------------------


@router.post(
    "/{mediation_id}/assign-mediator",
    response_model=MediationResponse,
    summary="Assign a mediator (admin or seller)",
)
async def assign_mediator(
    mediation_id: uuid.UUID,
    request: AssignMediatorRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).assign_mediator(
        actor, mediation_id, request.mediator_id
    )
    return MediationResponse.model_validate(mediation)


@router.post(
    "/{mediation_id}/mediator-accept",
    response_model=MediationResponse,
    summary="Mediator accepts the assignment",
)
async def mediator_accept(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).mediator_accept(actor, mediation_id)
    return MediationResponse.model_validate(mediation)


@router.post(
    "/{mediation_id}/mediator-reject",
    response_model=MediationResponse,
    summary="Mediator declines the assignment",
)
async def mediator_reject(
    mediation_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).mediator_reject(
        actor, mediation_id, request.reason
    )
    return MediationResponse.model_validate(mediation)


# ---------------------------------------------------------------------------
# Readiness and escrow
# ---------------------------------------------------------------------------


@router.post(
    "/{mediation_id}/seller-confirm",
    response_model=MediationResponse,
    summary="Seller confirms readiness",
)
async def seller_confirm(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).seller_confirm_readiness(
        actor, mediation_id
    )
    return MediationResponse.model_validate(mediation)


@router.post(
    "/{mediation_id}/buyer-confirm-and-fund",
    response_model=MediationResponse,
    summary="Buyer confirms readiness and funds the escrow",
)
async def buyer_confirm_and_fund(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).buyer_confirm_and_fund(actor, mediation_id)
    return MediationResponse.model_validate(mediation)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@router.post(
    "/{mediation_id}/confirm-receipt",
    response_model=MediationResponse,
    summary="Buyer confirms receipt and releases the escrow",
)
async def confirm_receipt(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).confirm_receipt(actor, mediation_id)
    return MediationResponse.model_validate(mediation)


@router.post(
    "/{mediation_id}/dispute",
    response_model=MediationResponse,
    summary="Open a dispute",
)
async def open_dispute(
    mediation_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).open_dispute(
        actor, mediation_id, request.reason
    )
    return MediationResponse.model_validate(mediation)


@router.post(
    "/{mediation_id}/cancel",
    response_model=MediationResponse,
    summary="Cancel before the exchange starts",
)
async def cancel_mediation(
    mediation_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await MediationService(session, hub).cancel(actor, mediation_id, request.reason)
    return MediationResponse.model_validate(mediation)
