"""Tests for presence, hub delivery, the cross-node relay and the post-commit outbox."""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

import fakeredis.aioredis
import pytest
import pytest_asyncio

from escrow_mediation.realtime import (
    Connection,
    ConnectionHandle,
    InMemoryPresenceRegistry,
    Outbox,
    RealtimeHub,
    RedisPresenceRegistry,
    mediation_room,
    sub_chat_room,
)
from escrow_mediation.realtime.hub import RELAY_CHANNEL_PREFIX

REDIS_URL = os.environ.get("REDIS_URL", "")


class RecordingPublisher:
    """Stands in for the Redis client on the publish side of the relay."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1


class ScriptedPubSub:
    """Replays a fixed list of pub/sub messages, then ends."""

    def __init__(self, messages: list[dict[str, Any]]) -> None:
        self._messages = messages
        self.closed = False

    async def listen(self):  # noqa: ANN201
        for message in self._messages:
            yield message

    async def aclose(self) -> None:
        self.closed = True


async def _broken_send(frame: dict[str, Any]) -> None:
    raise ConnectionResetError("socket closed")


# ============================================================
# Presence
# ============================================================


class TestInMemoryPresence:
    @pytest.mark.asyncio
    async def test_user_with_several_connections(self) -> None:
        presence = InMemoryPresenceRegistry()
        user_id = uuid.uuid4()
        first = ConnectionHandle("node-a", "c1", user_id)
        second = ConnectionHandle("node-b", "c2", user_id)
        await presence.register(first)
        await presence.register(second)
        await presence.register(first)

        assert await presence.resolve_connections(user_id) == [first, second]
        assert await presence.resolve_connection(user_id) == second

    @pytest.mark.asyncio
    async def test_unregister_leaves_every_room(self) -> None:
        presence = InMemoryPresenceRegistry()
        handle = ConnectionHandle("node-a", "c1", uuid.uuid4())
        await presence.register(handle)
        await presence.join_room("mediation:1", handle)
        await presence.join_room("sub_chat:2", handle)

        await presence.unregister(handle)

        assert await presence.resolve_connection(handle.user_id) is None
        assert await presence.room_members("mediation:1") == []
        assert await presence.room_members("sub_chat:2") == []

    def test_handle_encoding(self) -> None:
        handle = ConnectionHandle("api|1", "abc", uuid.uuid4())
        assert ConnectionHandle.decode(handle.encode()) == handle


# ============================================================
# Hub delivery
# ============================================================


class TestHubDelivery:
    @pytest.mark.asyncio
    async def test_emit_to_user_reaches_every_connection(self, hub, connect, users) -> None:
        phone = await connect(users.buyer)
        laptop = await connect(users.buyer)

        delivered = await hub.emit_to_user(users.buyer.user_id, "ping", {"n": 1})

        assert delivered == 2
        assert phone.frames == laptop.frames == [{"event": "ping", "data": {"n": 1}}]

    @pytest.mark.asyncio
    async def test_offline_user_is_skipped(self, hub) -> None:
        assert await hub.emit_to_user(uuid.uuid4(), "ping", {}) == 0

    @pytest.mark.asyncio
    async def test_room_broadcast_can_exclude_the_sender(self, hub, connect, users) -> None:
        room = mediation_room(uuid.uuid4())
        seller = await connect(users.seller)
        buyer = await connect(users.buyer)
        await hub.join(seller.connection, room)
        await hub.join(buyer.connection, room)

        await hub.emit_to_room(room, "typing", {}, exclude_user=users.buyer.user_id)

        assert seller.events("typing") == [{}]
        assert buyer.frames == []

    @pytest.mark.asyncio
    async def test_left_and_detached_connections_get_nothing(self, hub, connect, users) -> None:
        room = mediation_room(uuid.uuid4())
        seller = await connect(users.seller)
        buyer = await connect(users.buyer)
        await hub.join(seller.connection, room)
        await hub.join(buyer.connection, room)

        await hub.leave(seller.connection, room)
        await hub.detach(buyer.connection)
        await hub.emit_to_room(room, "ping", {})
        await hub.emit_to_user(users.buyer.user_id, "ping", {})

        assert seller.frames == buyer.frames == []

    @pytest.mark.asyncio
    async def test_broken_socket_does_not_stop_fan_out(self, hub, connect, users) -> None:
        await hub.attach(Connection(users.seller.user_id, _broken_send))
        healthy = await connect(users.seller)

        delivered = await hub.emit_to_user(users.seller.user_id, "ping", {})

        assert delivered == 1
        assert healthy.events("ping") == [{}]


# ============================================================
# Cross-node relay
# ============================================================


class TestRelay:
    @pytest.mark.asyncio
    async def test_remote_handle_is_published_to_its_node(self) -> None:
        publisher = RecordingPublisher()
        presence = InMemoryPresenceRegistry()
        hub = RealtimeHub(presence, node_id="node-a", redis=publisher)
        user_id = uuid.uuid4()
        await presence.register(ConnectionHandle("node-b", "remote-1", user_id))

        assert await hub.emit_to_user(user_id, "ping", {"n": 1}) == 1
        assert publisher.published == [
            (
                f"{RELAY_CHANNEL_PREFIX}node-b",
                {"connection_id": "remote-1", "event": "ping", "data": {"n": 1}},
            )
        ]

    @pytest.mark.asyncio
    async def test_remote_handle_without_redis_is_dropped(self) -> None:
        presence = InMemoryPresenceRegistry()
        hub = RealtimeHub(presence, node_id="node-a")
        user_id = uuid.uuid4()
        await presence.register(ConnectionHandle("node-b", "remote-1", user_id))

        assert await hub.emit_to_user(user_id, "ping", {}) == 0

    @pytest.mark.asyncio
    async def test_relayed_frames_reach_local_sockets(self, hub, connect, users) -> None:
        socket = await connect(users.mediator)
        pubsub = ScriptedPubSub(
            [
                {"type": "subscribe", "data": 1},
                {"type": "message", "data": "not json"},
                {
                    "type": "message",
                    "data": json.dumps(
                        {
                            "connection_id": socket.connection.connection_id,
                            "event": "new_notification",
                            "data": {"type": "MEDIATOR_ASSIGNED"},
                        }
                    ),
                },
            ]
        )

        await hub._relay_loop(pubsub)

        assert socket.events("new_notification") == [{"type": "MEDIATOR_ASSIGNED"}]
        assert pubsub.closed

    @pytest.mark.asyncio
    async def test_incomplete_envelopes_do_not_stop_the_relay(
        self, hub, connect, users
    ) -> None:  # noqa: ANN001
        socket = await connect(users.mediator)
        connection_id = socket.connection.connection_id
        pubsub = ScriptedPubSub(
            [
                {"type": "message", "data": json.dumps({"event": "lost", "data": {}})},
                {"type": "message", "data": json.dumps(["not", "an", "envelope"])},
                {"type": "message", "data": json.dumps({"connection_id": connection_id})},
                {"type": "message", "data": None},
                {
                    "type": "message",
                    "data": json.dumps(
                        {"connection_id": connection_id, "event": "still_alive", "data": {"n": 1}}
                    ),
                },
            ]
        )

        await hub._relay_loop(pubsub)

        assert socket.events("still_alive") == [{"n": 1}]
        assert socket.events("lost") == []
        assert pubsub.closed


# ============================================================
# Outbox
# ============================================================


class FailingHub:
    def __init__(self, fail_on: str) -> None:
        self.fail_on = fail_on
        self.sent: list[str] = []

    async def emit_to_user(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> int:
        if event == self.fail_on:
            raise RuntimeError("presence backend down")
        self.sent.append(event)
        return 1

    async def emit_to_room(
        self, room: str, event: str, payload: dict[str, Any], exclude_user: uuid.UUID | None = None
    ) -> int:
        self.sent.append(event)
        return 1


class TestOutbox:
    @pytest.mark.asyncio
    async def test_events_go_out_in_order(self, hub, connect, users) -> None:
        socket = await connect(users.buyer)
        room = mediation_room(uuid.uuid4())
        await hub.join(socket.connection, room)

        outbox = Outbox()
        outbox.to_room(room, "first", {})
        outbox.to_user(users.buyer.user_id, "second", {})
        outbox.to_users([users.buyer.user_id, users.buyer.user_id], "third", {})
        await outbox.dispatch(hub)

        assert [f["event"] for f in socket.frames] == ["first", "second", "third"]
        assert len(outbox) == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_does_not_stop_the_rest(self) -> None:
        failing = FailingHub(fail_on="second")
        outbox = Outbox()
        outbox.to_room("mediation:1", "first", {})
        outbox.to_user(uuid.uuid4(), "second", {})
        outbox.to_user(uuid.uuid4(), "third", {})

        await outbox.dispatch(failing)

        assert failing.sent == ["first", "third"]

    @pytest.mark.asyncio
    async def test_cleared_outbox_sends_nothing(self, hub, connect, users) -> None:
        socket = await connect(users.buyer)
        outbox = Outbox()
        outbox.to_user(users.buyer.user_id, "rolled_back", {})
        outbox.clear()
        await outbox.dispatch(hub)

        assert socket.frames == []

    @pytest.mark.asyncio
    async def test_no_hub_just_empties(self) -> None:
        outbox = Outbox()
        outbox.to_user(uuid.uuid4(), "event", {})
        await outbox.dispatch(None)
        assert len(outbox) == 0


# ============================================================
# Redis presence against an in-process fake server
# ============================================================


@pytest_asyncio.fixture
async def fake_redis():  # noqa: ANN201
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.aclose()


class TestRedisPresenceShared:
    @pytest.mark.asyncio
    async def test_register_and_resolve_newest(self, fake_redis) -> None:  # noqa: ANN001
        presence = RedisPresenceRegistry(fake_redis, ttl_seconds=60)
        user_id = uuid.uuid4()
        first = ConnectionHandle("node-a", uuid.uuid4().hex, user_id)
        second = ConnectionHandle("node-b", uuid.uuid4().hex, user_id)

        await presence.register(first)
        await presence.register(second)

        assert await presence.resolve_connections(user_id) == [first, second]
        assert await presence.resolve_connection(user_id) == second
        assert await presence.resolve_connection(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_reregister_moves_handle_to_newest(self, fake_redis) -> None:  # noqa: ANN001
        presence = RedisPresenceRegistry(fake_redis, ttl_seconds=60)
        user_id = uuid.uuid4()
        first = ConnectionHandle("node-a", uuid.uuid4().hex, user_id)
        second = ConnectionHandle("node-a", uuid.uuid4().hex, user_id)

        await presence.register(first)
        await presence.register(second)
        await presence.register(first)

        assert await presence.resolve_connections(user_id) == [second, first]

    @pytest.mark.asyncio
    async def test_keys_carry_ttl(self, fake_redis) -> None:  # noqa: ANN001
        presence = RedisPresenceRegistry(fake_redis, ttl_seconds=60)
        handle = ConnectionHandle("node-a", uuid.uuid4().hex, uuid.uuid4())
        room = mediation_room(uuid.uuid4())

        await presence.register(handle)
        await presence.join_room(room, handle)

        for key in (
            f"presence:user:{handle.user_id}",
            f"presence:room:{room}",
            f"presence:conn:{handle.connection_id}",
        ):
            assert 0 < await fake_redis.ttl(key) <= 60

    @pytest.mark.asyncio
    async def test_leave_room(self, fake_redis) -> None:  # noqa: ANN001
        presence = RedisPresenceRegistry(fake_redis, ttl_seconds=60)
        stays = ConnectionHandle("node-a", uuid.uuid4().hex, uuid.uuid4())
        leaves = ConnectionHandle("node-b", uuid.uuid4().hex, uuid.uuid4())
        room = mediation_room(uuid.uuid4())
        await presence.join_room(room, stays)
        await presence.join_room(room, leaves)

        await presence.leave_room(room, leaves)

        assert await presence.room_members(room) == [stays]
        assert await fake_redis.smembers(f"presence:conn:{leaves.connection_id}") == set()

    @pytest.mark.asyncio
    async def test_unregister_cleans_rooms(self, fake_redis) -> None:  # noqa: ANN001
        presence = RedisPresenceRegistry(fake_redis, ttl_seconds=60)
        user_id = uuid.uuid4()
        gone = ConnectionHandle("node-a", uuid.uuid4().hex, user_id)
        other = ConnectionHandle("node-b", uuid.uuid4().hex, user_id)
        room = mediation_room(uuid.uuid4())
        sub_room = sub_chat_room(uuid.uuid4())
        await presence.register(gone)
        await presence.register(other)
        await presence.join_room(room, gone)
        await presence.join_room(room, other)
        await presence.join_room(sub_room, gone)

        await presence.unregister(gone)

        assert await presence.resolve_connections(user_id) == [other]
        assert await presence.room_members(room) == [other]
        assert await presence.room_members(sub_room) == []
        assert not await fake_redis.exists(f"presence:room:{sub_room}")
        assert not await fake_redis.exists(f"presence:conn:{gone.connection_id}")


# ============================================================
# Redis presence (needs a running Redis)
# ============================================================


@pytest.mark.integration
@pytest.mark.skipif(not REDIS_URL, reason="REDIS_URL not set")
class TestRedisPresence:
    @pytest.mark.asyncio
    async def test_register_join_unregister(self) -> None:
        import redis.asyncio as aioredis

        redis = aioredis.from_url(REDIS_URL, decode_responses=True)
        presence = RedisPresenceRegistry(redis, ttl_seconds=60)
        handle = ConnectionHandle("node-a", uuid.uuid4().hex, uuid.uuid4())
        room = mediation_room(uuid.uuid4())
        try:
            await presence.register(handle)
            await presence.join_room(room, handle)
            assert await presence.resolve_connection(handle.user_id) == handle
            assert await presence.room_members(room) == [handle]

            await presence.unregister(handle)
            assert await presence.resolve_connections(handle.user_id) == []
            assert await presence.room_members(room) == []
        finally:
            await redis.aclose()
