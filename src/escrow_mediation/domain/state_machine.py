"""Mediation Request State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter which transport (REST or socket) asks for a transition, an illegal
one (e.g., MediatorAssigned -> Completed) raises TransitionNotAllowed.

The state machine is instantiated per-mediation at its persisted status and
validates transitions before the ORM model's status field is updated.

Transition table:
    PendingMediatorSelection -> MediatorAssigned          (assign_mediator)
    PendingMediatorSelection -> Cancelled                 (party_cancels)
    MediatorAssigned         -> MediationOfferAccepted    (mediator_accepts)
    MediatorAssigned         -> PendingMediatorSelection  (mediator_rejects)
    MediatorAssigned         -> Cancelled                 (mediator_rejects_final, party_cancels)
    MediationOfferAccepted   -> MediationOfferAccepted    (seller_confirms)
    MediationOfferAccepted   -> EscrowFunded              (buyer_funds_escrow)
    MediationOfferAccepted   -> Cancelled                 (party_cancels)
    EscrowFunded             -> PartiesConfirmed          (seller_confirms, parties_confirmed)
    EscrowFunded             -> Cancelled                 (party_cancels)
    PartiesConfirmed         -> InProgress                (mediation_started)
    InProgress               -> Completed                 (buyer_confirms_receipt)
    InProgress               -> Disputed                  (dispute_opened)
    Disputed                 -> Completed                 (dispute_resolved)
    Disputed                 -> Cancelled                 (dispute_cancelled)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from escrow_mediation.domain.enums import MediationAction, MediationStatus


class MediationStateMachine(StateMachine):
    """State machine that guards mediation lifecycle transitions.

    Usage:
        sm = MediationStateMachine(current_status="InProgress")
        sm.buyer_confirms_receipt()  # transitions to Completed
        sm.status                    # "Completed"
    """

    # --- States ---
    PENDING_MEDIATOR_SELECTION = State(
        "PendingMediatorSelection", value="PendingMediatorSelection", initial=True
    )
    MEDIATOR_ASSIGNED = State("MediatorAssigned", value="MediatorAssigned")
    MEDIATION_OFFER_ACCEPTED = State("MediationOfferAccepted", value="MediationOfferAccepted")
    ESCROW_FUNDED = State("EscrowFunded", value="EscrowFunded")
    PARTIES_CONFIRMED = State("PartiesConfirmed", value="PartiesConfirmed")
    IN_PROGRESS = State("InProgress", value="InProgress")
    DISPUTED = State("Disputed", value="Disputed")
    COMPLETED = State("Completed", value="Completed", final=True)
    CANCELLED = State("Cancelled", value="Cancelled", final=True)

    # --- Events / Transitions ---

    # Mediator selection
    assign_mediator = PENDING_MEDIATOR_SELECTION.to(MEDIATOR_ASSIGNED)
    mediator_accepts = MEDIATOR_ASSIGNED.to(MEDIATION_OFFER_ACCEPTED)
    mediator_rejects = MEDIATOR_ASSIGNED.to(PENDING_MEDIATOR_SELECTION)
    mediator_rejects_final = MEDIATOR_ASSIGNED.to(CANCELLED)

    # Readiness and escrow
    seller_confirms = MEDIATION_OFFER_ACCEPTED.to.itself() | ESCROW_FUNDED.to(PARTIES_CONFIRMED)
    buyer_funds_escrow = MEDIATION_OFFER_ACCEPTED.to(ESCROW_FUNDED)
    parties_confirmed = ESCROW_FUNDED.to(PARTIES_CONFIRMED)
    mediation_started = PARTIES_CONFIRMED.to(IN_PROGRESS)

    # Exchange outcome
    buyer_confirms_receipt = IN_PROGRESS.to(COMPLETED)
    dispute_opened = IN_PROGRESS.to(DISPUTED)

    # Disputes
    dispute_resolved = DISPUTED.to(COMPLETED)
    dispute_cancelled = DISPUTED.to(CANCELLED)

    # Early cancellation by seller or buyer
    party_cancels = (
        PENDING_MEDIATOR_SELECTION.to(CANCELLED)
        | MEDIATOR_ASSIGNED.to(CANCELLED)
        | MEDIATION_OFFER_ACCEPTED.to(CANCELLED)
        | ESCROW_FUNDED.to(CANCELLED)
    )

    def __init__(self, current_status: str = "PendingMediatorSelection") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current MediationStatus value (e.g., "InProgress").
                           Must match one of the State value strings exactly.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches MediationStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_actions(self) -> list[str]:
        """Return the actions that can fire from the current state."""
        return [
            action.value
            for action in MediationAction
            if next_status(self.status, action) is not None
        ]


def next_status(current_status: str, action: str) -> str | None:
    """Return the status `action` leads to from `current_status`, or None if illegal."""
    sm = MediationStateMachine(current_status=current_status)
    event_method = getattr(sm, str(action), None)
    if event_method is None or not callable(event_method):
        raise ValueError(f"Unknown action '{action}'")
    try:
        event_method()
    except TransitionNotAllowed:
        return None
    return sm.status


def validate_transition(current_status: str, action: str) -> str:
    """Validate a state transition and return the new status.

    Args:
        current_status: Current MediationStatus value.
        action: The action to fire (e.g., "buyer_confirms_receipt").

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or action name is invalid.
    """
    sm = MediationStateMachine(current_status=current_status)

    event_method = getattr(sm, str(action), None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown action '{action}'. "
            f"Allowed actions from {current_status}: {sm.get_allowed_actions()}"
        )

    event_method()
    return sm.status


def transition_table() -> dict[tuple[MediationStatus, MediationAction], MediationStatus]:
    """Return every legal (status, action) -> next status pair as plain data."""
    table: dict[tuple[MediationStatus, MediationAction], MediationStatus] = {}
    for status in MediationStatus:
        for action in MediationAction:
            target = next_status(status.value, action.value)
            if target is not None:
                table[(status, action)] = MediationStatus(target)
    return table
