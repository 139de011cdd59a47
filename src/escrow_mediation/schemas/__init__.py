"""Request and response models for the REST API and socket frames."""

from escrow_mediation.schemas.account import (
    BalancesResponse,
    HealthResponse,
    LedgerEntryResponse,
    MarkNotificationsReadRequest,
    MarkNotificationsReadResponse,
    NotificationResponse,
)
from escrow_mediation.schemas.chat import (
    ChatMessageResponse,
    ChatRoomResponse,
    CreateSubChatRequest,
    MarkReadRequest,
    MarkReadResponse,
    ReadUpdateResponse,
    SendMessageRequest,
    SubChatResponse,
    UnreadCountResponse,
)
from escrow_mediation.schemas.mediation import (
    AssignMediatorRequest,
    CreateMediationRequest,
    MediationDetailsResponse,
    MediationEventResponse,
    MediationResponse,
    ReasonRequest,
    ResolveDisputeRequest,
    SubChatSummary,
)

__all__ = [
    "AssignMediatorRequest",
    "BalancesResponse",
    "ChatMessageResponse",
    "ChatRoomResponse",
    "CreateMediationRequest",
    "CreateSubChatRequest",
    "HealthResponse",
    "LedgerEntryResponse",
    "MarkNotificationsReadRequest",
    "MarkNotificationsReadResponse",
    "MarkReadRequest",
    "MarkReadResponse",
    "MediationDetailsResponse",
    "MediationEventResponse",
    "MediationResponse",
    "NotificationResponse",
    "ReadUpdateResponse",
    "ReasonRequest",
    "ResolveDisputeRequest",
    "SendMessageRequest",
    "SubChatResponse",
    "SubChatSummary",
    "UnreadCountResponse",
]
