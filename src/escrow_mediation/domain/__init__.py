"""Mediation lifecycle rules: statuses, guards, fees and settlement arithmetic."""

from escrow_mediation.domain.actors import Actor, resolve_roles
from escrow_mediation.domain.enums import (
    MediationAction,
    MediationStatus,
    PartyRole,
    RealtimeEvent,
    UserRole,
)
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    MediationError,
    MediationNotFoundError,
    MediationValidationError,
)
from escrow_mediation.domain.state_machine import (
    MediationStateMachine,
    transition_table,
    validate_transition,
)

__all__ = [
    "Actor",
    "resolve_roles",
    "MediationAction",
    "MediationStatus",
    "PartyRole",
    "RealtimeEvent",
    "UserRole",
    "ForbiddenError",
    "InsufficientFundsError",
    "InvalidStateTransitionError",
    "MediationError",
    "MediationNotFoundError",
    "MediationValidationError",
    "MediationStateMachine",
    "transition_table",
    "validate_transition",
]
