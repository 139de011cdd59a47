"""Presence registry: which users are connected, where, and which rooms they joined.

The hub asks `resolve_connections(user_id)` before pushing an event; an
empty answer is not an error, the client catches up through the REST
history endpoints.

Two implementations:
    - InMemoryPresenceRegistry: single process (default, and the test-suite).
    - RedisPresenceRegistry: shared between processes; each handle records the
      node that owns the socket so the hub can relay to it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from escrow_mediation.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionHandle:
    """Address of one live socket connection."""

    node_id: str
    connection_id: str
    user_id: uuid.UUID

    def encode(self) -> str:
        return f"{self.node_id}|{self.connection_id}|{self.user_id}"

    @classmethod
    def decode(cls, raw: str) -> ConnectionHandle:
        node_id, connection_id, user_id = raw.rsplit("|", 2)
        return cls(node_id=node_id, connection_id=connection_id, user_id=uuid.UUID(user_id))


def mediation_room(mediation_id: uuid.UUID | str) -> str:
    return f"mediation:{mediation_id}"


def sub_chat_room(sub_chat_id: uuid.UUID | str) -> str:
    return f"sub_chat:{sub_chat_id}"


class PresenceRegistry(Protocol):
    async def register(self, handle: ConnectionHandle) -> None: ...

    async def unregister(self, handle: ConnectionHandle) -> None: ...

    async def resolve_connections(self, user_id: uuid.UUID) -> list[ConnectionHandle]: ...

    async def resolve_connection(self, user_id: uuid.UUID) -> ConnectionHandle | None: ...

    async def join_room(self, room: str, handle: ConnectionHandle) -> None: ...

    async def leave_room(self, room: str, handle: ConnectionHandle) -> None: ...

    async def room_members(self, room: str) -> list[ConnectionHandle]: ...


class InMemoryPresenceRegistry:
    """Process-local registry backed by plain dicts.

    Safe without locks because every method runs on the event loop thread
    and none of them awaits between reading and writing.
    """

    def __init__(self) -> None:
        self._by_user: dict[uuid.UUID, list[ConnectionHandle]] = {}
        self._rooms: dict[str, set[ConnectionHandle]] = {}

    async def register(self, handle: ConnectionHandle) -> None:
        handles = self._by_user.setdefault(handle.user_id, [])
        if handle not in handles:
            handles.append(handle)

    async def unregister(self, handle: ConnectionHandle) -> None:
        handles = self._by_user.get(handle.user_id, [])
        if handle in handles:
            handles.remove(handle)
        if not handles:
            self._by_user.pop(handle.user_id, None)
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(handle)
            if not members:
                del self._rooms[room]

    async def resolve_connections(self, user_id: uuid.UUID) -> list[ConnectionHandle]:
        return list(self._by_user.get(user_id, []))

    async def resolve_connection(self, user_id: uuid.UUID) -> ConnectionHandle | None:
        handles = self._by_user.get(user_id)
        return handles[-1] if handles else None

    async def join_room(self, room: str, handle: ConnectionHandle) -> None:
        self._rooms.setdefault(room, set()).add(handle)

    async def leave_room(self, room: str, handle: ConnectionHandle) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(handle)
        if not members:
            del self._rooms[room]

    async def room_members(self, room: str) -> list[ConnectionHandle]:
        return list(self._rooms.get(room, ()))


class RedisPresenceRegistry:
    """Registry shared by every node through Redis.

    Keys:
        presence:user:<user_id>       list of encoded handles, newest last
        presence:room:<room>          set of encoded handles
        presence:conn:<connection_id> set of rooms the connection joined
    All keys carry a TTL so a crashed node's entries eventually expire.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def _user_key(user_id: uuid.UUID) -> str:
        return f"presence:user:{user_id}"

    @staticmethod
    def _room_key(room: str) -> str:
        return f"presence:room:{room}"

    @staticmethod
    def _conn_key(connection_id: str) -> str:
        return f"presence:conn:{connection_id}"

    async def register(self, handle: ConnectionHandle) -> None:
        key = self._user_key(handle.user_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(key, 0, handle.encode())
            pipe.rpush(key, handle.encode())
            pipe.expire(key, self._ttl)
            await pipe.execute()

    async def unregister(self, handle: ConnectionHandle) -> None:
        encoded = handle.encode()
        conn_key = self._conn_key(handle.connection_id)
        rooms = await self._redis.smembers(conn_key)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._user_key(handle.user_id), 0, encoded)
            for room in rooms:
                pipe.srem(self._room_key(room), encoded)
            pipe.delete(conn_key)
            await pipe.execute()

    async def resolve_connections(self, user_id: uuid.UUID) -> list[ConnectionHandle]:
        raw = await self._redis.lrange(self._user_key(user_id), 0, -1)
        return [ConnectionHandle.decode(item) for item in raw]

    async def resolve_connection(self, user_id: uuid.UUID) -> ConnectionHandle | None:
        raw = await self._redis.lindex(self._user_key(user_id), -1)
        return ConnectionHandle.decode(raw) if raw else None

    async def join_room(self, room: str, handle: ConnectionHandle) -> None:
        room_key = self._room_key(room)
        conn_key = self._conn_key(handle.connection_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.sadd(room_key, handle.encode())
            pipe.expire(room_key, self._ttl)
            pipe.sadd(conn_key, room)
            pipe.expire(conn_key, self._ttl)
            await pipe.execute()

    async def leave_room(self, room: str, handle: ConnectionHandle) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.srem(self._room_key(room), handle.encode())
            pipe.srem(self._conn_key(handle.connection_id), room)
            await pipe.execute()

    async def room_members(self, room: str) -> list[ConnectionHandle]:
        raw = await self._redis.smembers(self._room_key(room))
        return [ConnectionHandle.decode(item) for item in raw]
