"""Dispute resolution and admin sub-chat REST API routes.

Routes:
    GET    /api/v1/disputes                            - Admin list of disputed mediations
    POST   /api/v1/mediations/{id}/dispute/join        - Admin becomes an overseer
    POST   /api/v1/mediations/{id}/dispute/resolve     - Overseer rules or cancels
    POST   /api/v1/mediations/{id}/sub-chats           - Admin opens a sub-chat
    GET    /api/v1/mediations/{id}/sub-chats           - Sub-chats visible to the caller
    GET    /api/v1/sub-chats/{id}/messages             - Sub-chat history
    POST   /api/v1/sub-chats/{id}/messages             - Post to a sub-chat
    POST   /api/v1/sub-chats/{id}/read                 - Mark sub-chat messages read
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved by FastAPI

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from escrow_mediation.api.deps import get_current_actor, get_db_session, get_hub
from escrow_mediation.domain.actors import Actor  # noqa: TC001
from escrow_mediation.realtime.hub import RealtimeHub  # noqa: TC001
from escrow_mediation.schemas.chat import (
    ChatMessageResponse,
    ChatRoomResponse,
    CreateSubChatRequest,
    MarkReadRequest,
    MarkReadResponse,
    SendMessageRequest,
    SubChatResponse,
)
from escrow_mediation.schemas.mediation import MediationResponse, ResolveDisputeRequest
from escrow_mediation.services.dispute_service import DisputeService
from escrow_mediation.services.sub_chat_service import SubChatService

router = APIRouter(prefix="/api/v1", tags=["Disputes"])


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.get(
    "/disputes",
    response_model=list[MediationResponse],
    summary="List disputed mediations (admin)",
)
async def list_disputes(
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[MediationResponse]:
    mediations = await DisputeService(session).list_disputed(actor)
    return [MediationResponse.model_validate(m) for m in mediations]


@router.post(
    "/mediations/{mediation_id}/dispute/join",
    response_model=MediationResponse,
    summary="Join a disputed mediation as an overseer",
)
async def join_dispute(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await DisputeService(session, hub).join_dispute(actor, mediation_id)
    return MediationResponse.model_validate(mediation)


@router.post(
    "/mediations/{mediation_id}/dispute/resolve",
    response_model=MediationResponse,
    summary="Rule for a party or cancel the disputed mediation",
)
async def resolve_dispute(
    mediation_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MediationResponse:
    mediation = await DisputeService(session, hub).resolve_dispute(
        actor,
        mediation_id,
        resolution_notes=request.resolution_notes,
        winner_id=request.winner_id,
        loser_id=request.loser_id,
        cancel_mediation=request.cancel_mediation,
    )
    return MediationResponse.model_validate(mediation)


# ---------------------------------------------------------------------------
# Sub-chats
# ---------------------------------------------------------------------------


@router.post(
    "/mediations/{mediation_id}/sub-chats",
    response_model=SubChatResponse,
    status_code=201,
    summary="Open a private sub-chat on a disputed mediation (admin)",
)
async def create_sub_chat(
    mediation_id: uuid.UUID,
    request: CreateSubChatRequest,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> SubChatResponse:
    sub_chat, created = await SubChatService(session, hub).create(
        actor, mediation_id, request.participant_user_ids, request.title
    )
    if not created:
        response.status_code = 200
    return SubChatResponse.model_validate(sub_chat)


@router.get(
    "/mediations/{mediation_id}/sub-chats",
    response_model=list[SubChatResponse],
    summary="List the sub-chats visible to the caller",
)
async def list_sub_chats(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> list[SubChatResponse]:
    sub_chats = await SubChatService(session).list_for_mediation(actor, mediation_id)
    return [SubChatResponse.model_validate(sc) for sc in sub_chats]


@router.get(
    "/sub-chats/{sub_chat_id}/messages",
    response_model=ChatRoomResponse,
    summary="Get a sub-chat's messages (participants only)",
)
async def get_sub_chat_messages(
    sub_chat_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> ChatRoomResponse:
    return await SubChatService(session).messages(actor, sub_chat_id)


@router.post(
    "/sub-chats/{sub_chat_id}/messages",
    response_model=ChatMessageResponse,
    status_code=201,
    summary="Post to a sub-chat",
)
async def post_sub_chat_message(
    sub_chat_id: uuid.UUID,
    request: SendMessageRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> ChatMessageResponse:
    message = await SubChatService(session, hub).post(
        actor, sub_chat_id, body=request.body, image_url=request.image_url
    )
    return ChatMessageResponse.model_validate(message)


@router.post(
    "/sub-chats/{sub_chat_id}/read",
    response_model=MarkReadResponse,
    summary="Mark sub-chat messages as read",
)
async def mark_sub_chat_read(
    sub_chat_id: uuid.UUID,
    request: MarkReadRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MarkReadResponse:
    return await SubChatService(session, hub).mark_read(actor, sub_chat_id, request.message_ids)
