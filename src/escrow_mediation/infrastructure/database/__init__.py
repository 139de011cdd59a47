"""Persistence for mediations, chats, balances and notifications."""

from escrow_mediation.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from escrow_mediation.infrastructure.database.orm_models import (
    Base,
    ChatMessage,
    LedgerEntry,
    MediationEvent,
    MediationRequest,
    MessageRead,
    Notification,
    SubChat,
    SubChatParticipant,
    UserAccount,
)
from escrow_mediation.infrastructure.database.repositories import (
    ChatRepository,
    EventRepository,
    LedgerRepository,
    MediationRepository,
    NotificationRepository,
    SubChatRepository,
    UserRepository,
)

__all__ = [
    "Base",
    "ChatMessage",
    "LedgerEntry",
    "MediationEvent",
    "MediationRequest",
    "MessageRead",
    "Notification",
    "SubChat",
    "SubChatParticipant",
    "UserAccount",
    "ChatRepository",
    "EventRepository",
    "LedgerRepository",
    "MediationRepository",
    "NotificationRepository",
    "SubChatRepository",
    "UserRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
