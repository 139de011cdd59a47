"""Main mediation chat REST API routes.

The socket adapter in api/routes/ws.py exposes the same operations; both
go through ChatService.

Routes:
    GET    /api/v1/mediations/{id}/chat               - History and unread count
    POST   /api/v1/mediations/{id}/chat/messages      - Post a message
    POST   /api/v1/mediations/{id}/chat/read          - Mark messages read
    GET    /api/v1/mediations/{id}/chat/unread-count  - Caller's unread count
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved by FastAPI

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from escrow_mediation.api.deps import get_current_actor, get_db_session, get_hub
from escrow_mediation.domain.actors import Actor  # noqa: TC001
from escrow_mediation.realtime.hub import RealtimeHub  # noqa: TC001
from escrow_mediation.schemas.chat import (
    ChatMessageResponse,
    ChatRoomResponse,
    MarkReadRequest,
    MarkReadResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from escrow_mediation.services.chat_service import ChatService

router = APIRouter(prefix="/api/v1/mediations/{mediation_id}/chat", tags=["Chat"])


@router.get("", response_model=ChatRoomResponse, summary="Get the mediation chat")
async def get_chat(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> ChatRoomResponse:
    return await ChatService(session).history(actor, mediation_id)


@router.post(
    "/messages",
    response_model=ChatMessageResponse,
    status_code=201,
    summary="Post to the mediation chat",
)
async def post_message(
    mediation_id: uuid.UUID,
    request: SendMessageRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> ChatMessageResponse:
    message = await ChatService(session, hub).post_message(
        actor, mediation_id, body=request.body, image_url=request.image_url
    )
    return ChatMessageResponse.model_validate(message)


@router.post("/read", response_model=MarkReadResponse, summary="Mark chat messages as read")
async def mark_read(
    mediation_id: uuid.UUID,
    request: MarkReadRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    hub: RealtimeHub | None = Depends(get_hub),
) -> MarkReadResponse:
    return await ChatService(session, hub).mark_read(actor, mediation_id, request.message_ids)


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread messages")
async def unread_count(
    mediation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> UnreadCountResponse:
    count = await ChatService(session).unread_count(actor, mediation_id)
    return UnreadCountResponse(mediation_id=mediation_id, unread_count=count)
