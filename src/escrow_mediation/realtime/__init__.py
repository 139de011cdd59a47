"""Real-time delivery: presence, the connection hub and the post-commit outbox."""

from escrow_mediation.realtime.hub import Connection, RealtimeHub
from escrow_mediation.realtime.outbox import Outbox
from escrow_mediation.realtime.presence import (
    ConnectionHandle,
    InMemoryPresenceRegistry,
    PresenceRegistry,
    RedisPresenceRegistry,
    mediation_room,
    sub_chat_room,
)

__all__ = [
    "Connection",
    "ConnectionHandle",
    "InMemoryPresenceRegistry",
    "Outbox",
    "PresenceRegistry",
    "RealtimeHub",
    "RedisPresenceRegistry",
    "mediation_room",
    "sub_chat_room",
]
