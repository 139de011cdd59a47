"""WebSocket adapter for the chat and realtime surface.

Each frame is `{"event": name, "data": {...}}`. A client event is
translated into the same service call the REST routes make, in its own
database session, so there is one code path per operation whatever the
transport. A failing event never closes the socket: the client receives
`<event>_error` with `{key, params, message}` instead.

Client events:
    joinMediationChat            {mediationId}              -> joinedMediationChat
    leaveMediationChat           {mediationId}
    sendMediationMessage         {mediationId, body, imageUrl}
    markMessagesAsRead           {mediationId, messageIds}
    joinAdminSubChat             {subChatId}                -> joinedAdminSubChat
    leaveAdminSubChat            {subChatId}
    sendAdminSubChatMessage      {subChatId, body, imageUrl}
    markAdminSubChatMessagesRead {subChatId, messageIds}
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from escrow_mediation.api.deps import authenticate_token
from escrow_mediation.domain.exceptions import MediationError, UnauthorizedError
from escrow_mediation.infrastructure.database.engine import get_session_factory
from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.hub import Connection
from escrow_mediation.realtime.presence import mediation_room, sub_chat_room
from escrow_mediation.schemas.realtime import (
    MediationMessagePayload,
    MediationReadPayload,
    MediationRoomPayload,
    SocketFrame,
    SubChatMessagePayload,
    SubChatReadPayload,
    SubChatRoomPayload,
)
from escrow_mediation.services.chat_service import ChatService
from escrow_mediation.services.sub_chat_service import SubChatService

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.realtime.hub import RealtimeHub

router = APIRouter(tags=["Realtime"])
logger = get_logger(__name__)


class SocketSession:
    """Dispatches the frames of one authenticated connection."""

    def __init__(
        self,
        actor: Actor,
        connection: Connection,
        hub: RealtimeHub,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.actor = actor
        self.connection = connection
        self.hub = hub
        self._session_factory = session_factory
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "joinMediationChat": self.join_mediation_chat,
            "leaveMediationChat": self.leave_mediation_chat,
            "sendMediationMessage": self.send_mediation_message,
            "markMessagesAsRead": self.mark_messages_as_read,
            "joinAdminSubChat": self.join_admin_sub_chat,
            "leaveAdminSubChat": self.leave_admin_sub_chat,
            "sendAdminSubChatMessage": self.send_admin_sub_chat_message,
            "markAdminSubChatMessagesRead": self.mark_admin_sub_chat_messages_read,
        }

    async def handle(self, raw: Any) -> None:
        """Run one client frame, answering with `<event>_error` when it fails."""
        try:
            frame = SocketFrame.model_validate(raw)
        except ValidationError:
            await self.connection.send(
                "error",
                {"key": "MALFORMED_FRAME", "params": {}, "message": "Expected {event, data}"},
            )
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            await self.connection.send(
                f"{frame.event}_error",
                {
                    "key": "UNKNOWN_EVENT",
                    "params": {"event": frame.event},
                    "message": f"Unknown event '{frame.event}'",
                },
            )
            return

        try:
            await handler(frame.data)
        except MediationError as exc:
            logger.info("socket.event_rejected", event_name=frame.event, code=exc.code)
            await self.connection.send(f"{frame.event}_error", exc.to_payload())
        except ValidationError as exc:
            await self.connection.send(
                f"{frame.event}_error",
                {
                    "key": "VALIDATION_ERROR",
                    "params": {"errors": exc.errors(include_url=False, include_context=False)},
                    "message": "Invalid event payload",
                },
            )
        except Exception as exc:
            logger.exception("socket.event_failed", event_name=frame.event, error=str(exc))
            await self.connection.send(
                f"{frame.event}_error",
                {"key": "INTERNAL_ERROR", "params": {}, "message": "An unexpected error occurred"},
            )

    # ------------------------------------------------------------------
    # Main mediation chat
    # ------------------------------------------------------------------

    async def join_mediation_chat(self, data: dict[str, Any]) -> None:
        payload = MediationRoomPayload.model_validate(data)
        async with self._session_factory() as session:
            room = await ChatService(session, self.hub).join_room(self.actor, payload.mediation_id)
        await self.hub.join(self.connection, mediation_room(payload.mediation_id))
        await self.connection.send("joinedMediationChat", room.model_dump(mode="json"))

    async def leave_mediation_chat(self, data: dict[str, Any]) -> None:
        payload = MediationRoomPayload.model_validate(data)
        await self.hub.leave(self.connection, mediation_room(payload.mediation_id))

    async def send_mediation_message(self, data: dict[str, Any]) -> None:
        payload = MediationMessagePayload.model_validate(data)
        async with self._session_factory() as session:
            await ChatService(session, self.hub).post_message(
                self.actor, payload.mediation_id, body=payload.body, image_url=payload.image_url
            )

    async def mark_messages_as_read(self, data: dict[str, Any]) -> None:
        payload = MediationReadPayload.model_validate(data)
        async with self._session_factory() as session:
            await ChatService(session, self.hub).mark_read(
                self.actor, payload.mediation_id, payload.message_ids
            )

    # ------------------------------------------------------------------
    # Admin sub-chats
    # ------------------------------------------------------------------

    async def join_admin_sub_chat(self, data: dict[str, Any]) -> None:
        payload = SubChatRoomPayload.model_validate(data)
        async with self._session_factory() as session:
            room = await SubChatService(session, self.hub).join(self.actor, payload.sub_chat_id)
        await self.hub.join(self.connection, sub_chat_room(payload.sub_chat_id))
        await self.connection.send("joinedAdminSubChat", room.model_dump(mode="json"))

    async def leave_admin_sub_chat(self, data: dict[str, Any]) -> None:
        payload = SubChatRoomPayload.model_validate(data)
        await self.hub.leave(self.connection, sub_chat_room(payload.sub_chat_id))

    async def send_admin_sub_chat_message(self, data: dict[str, Any]) -> None:
        payload = SubChatMessagePayload.model_validate(data)
        async with self._session_factory() as session:
            await SubChatService(session, self.hub).post(
                self.actor, payload.sub_chat_id, body=payload.body, image_url=payload.image_url
            )

    async def mark_admin_sub_chat_messages_read(self, data: dict[str, Any]) -> None:
        payload = SubChatReadPayload.model_validate(data)
        async with self._session_factory() as session:
            await SubChatService(session, self.hub).mark_read(
                self.actor, payload.sub_chat_id, payload.message_ids
            )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    """Authenticate with `?token=`, then serve frames until the client disconnects."""
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            actor = await authenticate_token(session, token)
    except UnauthorizedError as exc:
        logger.info("socket.rejected", reason=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    hub: RealtimeHub = websocket.app.state.hub
    await websocket.accept()
    connection = Connection(actor.user_id, websocket.send_json)
    structlog.contextvars.bind_contextvars(
        connection_id=connection.connection_id, user_id=str(actor.user_id)
    )
    await hub.attach(connection)
    socket = SocketSession(actor, connection, hub, session_factory)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except ValueError:
                raw = None
            await socket.handle(raw)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.detach(connection)
        structlog.contextvars.unbind_contextvars("connection_id", "user_id")
