"""RealtimeHub: pushes events to connected clients.

The hub owns the WebSocket connections of this process. To deliver an
event it resolves the target (a user or a room) through the presence
registry; handles owned by this node are written to directly, handles owned
by another node are relayed over that node's Redis channel.

Delivery is best effort: a missing or broken connection is logged and
skipped, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import TYPE_CHECKING, Any

from escrow_mediation.logging_config import get_logger
from escrow_mediation.realtime.presence import ConnectionHandle

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import redis.asyncio as aioredis

    from escrow_mediation.realtime.presence import PresenceRegistry

logger = get_logger(__name__)

RELAY_CHANNEL_PREFIX = "realtime:node:"


class Connection:
    """A live client connection owned by this process."""

    def __init__(
        self,
        user_id: uuid.UUID,
        send: Callable[[dict[str, Any]], Awaitable[None]],
        connection_id: str | None = None,
    ) -> None:
        self.user_id = user_id
        self.connection_id = connection_id or uuid.uuid4().hex
        self._send = send

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        await self._send({"event": event, "data": payload})


class RealtimeHub:
    """Routes events to local connections or relays them to the owning node."""

    def __init__(
        self,
        presence: PresenceRegistry,
        node_id: str,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.presence = presence
        self.node_id = node_id
        self._redis = redis
        self._connections: dict[str, Connection] = {}
        self._relay_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def handle_for(self, connection: Connection) -> ConnectionHandle:
        return ConnectionHandle(
            node_id=self.node_id,
            connection_id=connection.connection_id,
            user_id=connection.user_id,
        )

    async def attach(self, connection: Connection) -> ConnectionHandle:
        self._connections[connection.connection_id] = connection
        handle = self.handle_for(connection)
        await self.presence.register(handle)
        logger.info(
            "realtime.connected",
            connection_id=connection.connection_id,
            user_id=str(connection.user_id),
        )
        return handle

    async def detach(self, connection: Connection) -> None:
        self._connections.pop(connection.connection_id, None)
        await self.presence.unregister(self.handle_for(connection))
        logger.info(
            "realtime.disconnected",
            connection_id=connection.connection_id,
            user_id=str(connection.user_id),
        )

    async def join(self, connection: Connection, room: str) -> None:
        """Subscribe a connection to a room. Joining twice is harmless."""
        await self.presence.join_room(room, self.handle_for(connection))

    async def leave(self, connection: Connection, room: str) -> None:
        await self.presence.leave_room(room, self.handle_for(connection))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def emit_to_user(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> int:
        """Push to every connection of a user. Returns how many were reached."""
        handles = await self.presence.resolve_connections(user_id)
        if not handles:
            logger.debug("realtime.delivery_skipped", user_id=str(user_id), event_name=event)
            return 0
        return await self._deliver(handles, event, payload)

    async def emit_to_room(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude_user: uuid.UUID | None = None,
    ) -> int:
        handles = await self.presence.room_members(room)
        if exclude_user is not None:
            handles = [h for h in handles if h.user_id != exclude_user]
        return await self._deliver(handles, event, payload)

    async def _deliver(
        self,
        handles: list[ConnectionHandle],
        event: str,
        payload: dict[str, Any],
    ) -> int:
        delivered = 0
        for handle in handles:
            if handle.node_id == self.node_id:
                if await self._send_local(handle.connection_id, event, payload):
                    delivered += 1
            elif await self._relay(handle, event, payload):
                delivered += 1
        return delivered

    async def _send_local(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.send(event, payload)
        except Exception as exc:  # noqa: BLE001 - a dead socket must not break fan-out
            logger.warning(
                "realtime.send_failed",
                connection_id=connection_id,
                event_name=event,
                error=str(exc),
            )
            return False
        return True

    async def _relay(self, handle: ConnectionHandle, event: str, payload: dict[str, Any]) -> bool:
        if self._redis is None:
            logger.warning("realtime.relay_unavailable", node_id=handle.node_id, event_name=event)
            return False
        message = json.dumps(
            {"connection_id": handle.connection_id, "event": event, "data": payload}
        )
        await self._redis.publish(f"{RELAY_CHANNEL_PREFIX}{handle.node_id}", message)
        return True

    # ------------------------------------------------------------------
    # Cross-node relay
    # ------------------------------------------------------------------

    async def start_relay(self) -> None:
        """Listen on this node's channel and forward relayed events to local sockets."""
        if self._redis is None or self._relay_task is not None:
            return
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(f"{RELAY_CHANNEL_PREFIX}{self.node_id}")
        self._relay_task = asyncio.create_task(self._relay_loop(pubsub))
        logger.info("realtime.relay_started", node_id=self.node_id)

    async def _relay_loop(self, pubsub: aioredis.client.PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                    connection_id = envelope["connection_id"]
                    event, data = envelope["event"], envelope["data"]
                except (KeyError, TypeError, ValueError):
                    logger.warning("realtime.relay_malformed", data=str(message.get("data")))
                    continue
                await self._send_local(connection_id, event, data)
        finally:
            await pubsub.aclose()

    async def stop_relay(self) -> None:
        if self._relay_task is None:
            return
        self._relay_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._relay_task
        self._relay_task = None
        logger.info("realtime.relay_stopped", node_id=self.node_id)
