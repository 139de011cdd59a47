"""Domain exceptions for the mediation engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware,
and to `<event>_error` frames by the socket adapter.
"""

from __future__ import annotations

from typing import Any


class MediationError(Exception):
    """Base exception for all domain errors.

    `code` is the stable error kind, `params` carries the values a client
    needs to render a localized message.
    """

    def __init__(
        self,
        message: str,
        code: str = "MEDIATION_ERROR",
        params: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.params = params or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"key": self.code, "params": self.params, "message": self.message}


# --- Access Errors ---


class UnauthorizedError(MediationError):
    """Raised when the bearer token is missing or unknown."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


class ForbiddenError(MediationError):
    """Raised when an authenticated actor is not a legal party for an action."""

    def __init__(self, action: str, actor_id: str) -> None:
        super().__init__(
            message=f"User {actor_id} is not allowed to perform '{action}'",
            code="FORBIDDEN",
            params={"action": action, "actor_id": actor_id},
        )
        self.action = action
        self.actor_id = actor_id


# --- Lookup Errors ---


class NotFoundError(MediationError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
            params={"id": entity_id},
        )
        self.entity_id = entity_id


class MediationNotFoundError(NotFoundError):
    def __init__(self, mediation_id: str) -> None:
        super().__init__("Mediation", mediation_id)


class SubChatNotFoundError(NotFoundError):
    def __init__(self, sub_chat_id: str) -> None:
        super().__init__("Sub chat", sub_chat_id)


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__("User", user_id)


# --- State Machine Errors ---


class InvalidStateTransitionError(MediationError):
    """Raised when an attempted transition does not match the persisted state.

    Covers stale clients, double submissions and lost races alike.
    Example: confirming receipt on a mediation that is already Completed.
    """

    def __init__(self, current_state: str, attempted: str, reason: str | None = None) -> None:
        message = f"Invalid state transition: '{attempted}' from {current_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message=message,
            code="INVALID_STATE_TRANSITION",
            params={"current_status": current_state, "action": attempted},
        )
        self.current_state = current_state
        self.attempted_state = attempted


# --- Input Errors ---


class MediationValidationError(MediationError):
    """Raised when required input is missing or inconsistent."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            params={"field": field} if field else {},
        )
        self.field = field


# --- Ledger Errors ---


class InsufficientFundsError(MediationError):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, required: str, available: str, currency: str) -> None:
        super().__init__(
            message=(
                f"Insufficient funds: required {required} {currency}, "
                f"available {available} {currency}"
            ),
            code="INSUFFICIENT_FUNDS",
            params={"required": required, "available": available, "currency": currency},
        )
