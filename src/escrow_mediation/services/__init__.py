"""Use cases that load, change and persist mediations, chats and balances."""

from escrow_mediation.services.account_service import AccountService
from escrow_mediation.services.chat_service import ChatService
from escrow_mediation.services.dispute_service import DisputeService
from escrow_mediation.services.ledger_service import LedgerService
from escrow_mediation.services.mediation_service import MediationService
from escrow_mediation.services.notification_service import NotificationService
from escrow_mediation.services.sub_chat_service import SubChatService

__all__ = [
    "AccountService",
    "ChatService",
    "DisputeService",
    "LedgerService",
    "MediationService",
    "NotificationService",
    "SubChatService",
]
