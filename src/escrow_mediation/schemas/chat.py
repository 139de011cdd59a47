"""Pydantic schemas for the main mediation chat and admin sub-chats."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    body: str | None = Field(default=None, max_length=5000)
    image_url: str | None = Field(default=None, max_length=1024)


class MarkReadRequest(BaseModel):
    message_ids: list[uuid.UUID] = Field(default_factory=list)


class CreateSubChatRequest(BaseModel):
    participant_user_ids: list[uuid.UUID] = Field(
        default_factory=list,
        description="Members besides the creating admin, drawn from seller, buyer and mediator",
    )
    title: str | None = Field(default=None, max_length=200)


class ReadReceipt(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reader_id: uuid.UUID
    read_at: datetime


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    mediation_id: uuid.UUID
    sub_chat_id: uuid.UUID | None
    sender_id: uuid.UUID | None
    type: str
    body: str | None
    image_url: str | None
    message_key: str | None
    message_params: dict | None
    created_at: datetime
    read_by: list[ReadReceipt] = Field(default_factory=list, validation_alias="reads")


class SubChatParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    last_read_message_id: uuid.UUID | None
    last_read_at: datetime | None


class SubChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    mediation_id: uuid.UUID
    created_by: uuid.UUID
    title: str | None
    participants: list[SubChatParticipantResponse]
    created_at: datetime
    last_message_at: datetime | None


class ChatRoomResponse(BaseModel):
    """What a caller receives when joining a room: its history and unread count."""

    mediation_id: uuid.UUID
    sub_chat_id: uuid.UUID | None = None
    messages: list[ChatMessageResponse]
    unread_count: int


class ReadUpdateResponse(BaseModel):
    """Payload of messages_read_update."""

    mediation_id: uuid.UUID
    sub_chat_id: uuid.UUID | None = None
    reader_id: uuid.UUID
    message_ids: list[uuid.UUID]
    read_at: datetime


class UnreadCountResponse(BaseModel):
    mediation_id: uuid.UUID
    sub_chat_id: uuid.UUID | None = None
    unread_count: int


class MarkReadResponse(BaseModel):
    """Result for the reader: ids newly marked and the reader's remaining unread count."""

    mediation_id: uuid.UUID
    sub_chat_id: uuid.UUID | None = None
    message_ids: list[uuid.UUID]
    unread_count: int
