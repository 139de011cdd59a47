"""Domain enumerations for the mediation engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class MediationStatus(enum.StrEnum):
    """Lifecycle states of a mediation request.

    State transitions are enforced by the MediationStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING_MEDIATOR_SELECTION = "PendingMediatorSelection"
    MEDIATOR_ASSIGNED = "MediatorAssigned"
    MEDIATION_OFFER_ACCEPTED = "MediationOfferAccepted"
    ESCROW_FUNDED = "EscrowFunded"
    PARTIES_CONFIRMED = "PartiesConfirmed"
    IN_PROGRESS = "InProgress"
    DISPUTED = "Disputed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({MediationStatus.COMPLETED, MediationStatus.CANCELLED})

# Statuses in which the buyer's money sits in escrow on the aggregate.
ESCROW_HELD_STATUSES = frozenset(
    {
        MediationStatus.ESCROW_FUNDED,
        MediationStatus.PARTIES_CONFIRMED,
        MediationStatus.IN_PROGRESS,
        MediationStatus.DISPUTED,
    }
)

# Statuses in which the main mediation chat accepts new messages.
CHAT_OPEN_STATUSES = frozenset(
    {
        MediationStatus.MEDIATION_OFFER_ACCEPTED,
        MediationStatus.ESCROW_FUNDED,
        MediationStatus.PARTIES_CONFIRMED,
        MediationStatus.IN_PROGRESS,
        MediationStatus.DISPUTED,
    }
)


class MediationAction(enum.StrEnum):
    """Transition names accepted by the state machine.

    Each value is the name of an event on MediationStateMachine, so a
    (status, action) pair is enough to look up the next status.
    """

    ASSIGN_MEDIATOR = "assign_mediator"
    MEDIATOR_ACCEPTS = "mediator_accepts"
    MEDIATOR_REJECTS = "mediator_rejects"
    MEDIATOR_REJECTS_FINAL = "mediator_rejects_final"
    SELLER_CONFIRMS = "seller_confirms"
    BUYER_FUNDS_ESCROW = "buyer_funds_escrow"
    PARTIES_CONFIRMED = "parties_confirmed"
    MEDIATION_STARTED = "mediation_started"
    BUYER_CONFIRMS_RECEIPT = "buyer_confirms_receipt"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    DISPUTE_CANCELLED = "dispute_cancelled"
    PARTY_CANCELS = "party_cancels"


class PartyRole(enum.StrEnum):
    """Role an actor plays on one specific mediation."""

    SELLER = "seller"
    BUYER = "buyer"
    MEDIATOR = "mediator"
    ADMIN = "admin"
    OVERSEER = "overseer"
    SYSTEM = "system"


class UserRole(enum.StrEnum):
    """Platform-wide role of a user account."""

    USER = "User"
    ADMIN = "Admin"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the mediation_events table.

    Every state transition produces exactly one event named after its
    MediationAction; the extra members cover audit entries that do not
    change the status.
    """

    MEDIATION_CREATED = "mediation_created"
    OVERSEER_JOINED = "overseer_joined"
    SUB_CHAT_CREATED = "sub_chat_created"


class MessageType(enum.StrEnum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


class LedgerEntryType(enum.StrEnum):
    """Kinds of balance movements written to the ledger_entries table."""

    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    MEDIATION_FEE_RECEIVED = "MEDIATION_FEE_RECEIVED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    DISPUTE_PAYOUT = "DISPUTE_PAYOUT"


class NotificationType(enum.StrEnum):
    MEDIATOR_ASSIGNED = "MEDIATOR_ASSIGNED"
    MEDIATION_ACCEPTED_BY_MEDIATOR = "MEDIATION_ACCEPTED_BY_MEDIATOR"
    MEDIATOR_REJECTED_ASSIGNMENT = "MEDIATOR_REJECTED_ASSIGNMENT"
    PARTY_CONFIRMED_READINESS = "PARTY_CONFIRMED_READINESS"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    MEDIATION_STARTED = "MEDIATION_STARTED"
    MEDIATION_COMPLETED = "MEDIATION_COMPLETED"
    MEDIATION_CANCELLED = "MEDIATION_CANCELLED"
    MEDIATION_DISPUTED = "MEDIATION_DISPUTED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    ADMIN_SUB_CHAT_CREATED = "ADMIN_SUB_CHAT_CREATED"
    BALANCE_UPDATED = "BALANCE_UPDATED"


class RealtimeEvent(enum.StrEnum):
    """Names of the events pushed to connected clients."""

    MEDIATION_DETAILS_UPDATED = "mediation_details_updated"
    NEW_MEDIATION_MESSAGE = "new_mediation_message"
    NEW_ADMIN_SUB_CHAT_MESSAGE = "new_admin_sub_chat_message"
    MESSAGES_READ_UPDATE = "messages_read_update"
    USER_BALANCES_UPDATED = "user_balances_updated"
    UNREAD_COUNT_UPDATED = "unread_count_updated"
    ADMIN_SUB_CHAT_CREATED = "admin_sub_chat_created"
    NEW_NOTIFICATION = "new_notification"


class Currency(enum.StrEnum):
    TND = "TND"
    USD = "USD"
