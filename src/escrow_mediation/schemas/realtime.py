"""Payloads of the socket events sent by clients.

Clients speak camelCase (`mediationId`, `messageIds`); the models accept
either spelling.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SocketPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediationRoomPayload(SocketPayload):
    mediation_id: uuid.UUID


class SubChatRoomPayload(SocketPayload):
    sub_chat_id: uuid.UUID


class MediationMessagePayload(MediationRoomPayload):
    body: str | None = Field(default=None, max_length=5000)
    image_url: str | None = Field(default=None, max_length=1024)


class SubChatMessagePayload(SubChatRoomPayload):
    body: str | None = Field(default=None, max_length=5000)
    image_url: str | None = Field(default=None, max_length=1024)


class MediationReadPayload(MediationRoomPayload):
    message_ids: list[uuid.UUID] = Field(default_factory=list)


class SubChatReadPayload(SubChatRoomPayload):
    message_ids: list[uuid.UUID] = Field(default_factory=list)


class SocketFrame(BaseModel):
    """Envelope of every frame in both directions."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
