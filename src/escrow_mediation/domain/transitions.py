"""Declarative rules attached to each mediation transition.

The state machine knows which statuses an action connects; this table adds
who may trigger it and which side effects it declares: the system chat
message documenting it and the notification sent to the other parties.
"""

from __future__ import annotations

from dataclasses import dataclass

from escrow_mediation.domain.enums import MediationAction, NotificationType, PartyRole


@dataclass(frozen=True)
class TransitionRule:
    actors: frozenset[PartyRole]
    system_message: str
    notification: NotificationType | None = None
    moves_money: bool = False


TRANSITION_RULES: dict[MediationAction, TransitionRule] = {
    MediationAction.ASSIGN_MEDIATOR: TransitionRule(
        actors=frozenset({PartyRole.ADMIN, PartyRole.SELLER}),
        system_message="system.mediator_assigned",
        notification=NotificationType.MEDIATOR_ASSIGNED,
    ),
    MediationAction.MEDIATOR_ACCEPTS: TransitionRule(
        actors=frozenset({PartyRole.MEDIATOR}),
        system_message="system.mediator_accepted",
        notification=NotificationType.MEDIATION_ACCEPTED_BY_MEDIATOR,
    ),
    MediationAction.MEDIATOR_REJECTS: TransitionRule(
        actors=frozenset({PartyRole.MEDIATOR}),
        system_message="system.mediator_rejected",
        notification=NotificationType.MEDIATOR_REJECTED_ASSIGNMENT,
    ),
    MediationAction.MEDIATOR_REJECTS_FINAL: TransitionRule(
        actors=frozenset({PartyRole.MEDIATOR}),
        system_message="system.mediation_cancelled_no_mediator",
        notification=NotificationType.MEDIATION_CANCELLED,
    ),
    MediationAction.SELLER_CONFIRMS: TransitionRule(
        actors=frozenset({PartyRole.SELLER}),
        system_message="system.seller_confirmed_readiness",
        notification=NotificationType.PARTY_CONFIRMED_READINESS,
    ),
    MediationAction.BUYER_FUNDS_ESCROW: TransitionRule(
        actors=frozenset({PartyRole.BUYER}),
        system_message="system.buyer_funded_escrow",
        notification=NotificationType.ESCROW_FUNDED,
        moves_money=True,
    ),
    MediationAction.PARTIES_CONFIRMED: TransitionRule(
        actors=frozenset({PartyRole.SYSTEM}),
        system_message="system.parties_confirmed",
    ),
    MediationAction.MEDIATION_STARTED: TransitionRule(
        actors=frozenset({PartyRole.SYSTEM}),
        system_message="system.mediation_started",
        notification=NotificationType.MEDIATION_STARTED,
    ),
    MediationAction.BUYER_CONFIRMS_RECEIPT: TransitionRule(
        actors=frozenset({PartyRole.BUYER}),
        system_message="system.buyer_confirmed_receipt",
        notification=NotificationType.MEDIATION_COMPLETED,
        moves_money=True,
    ),
    MediationAction.DISPUTE_OPENED: TransitionRule(
        actors=frozenset({PartyRole.BUYER, PartyRole.SELLER}),
        system_message="system.dispute_opened",
        notification=NotificationType.MEDIATION_DISPUTED,
    ),
    MediationAction.DISPUTE_RESOLVED: TransitionRule(
        actors=frozenset({PartyRole.OVERSEER}),
        system_message="system.dispute_resolved",
        notification=NotificationType.DISPUTE_RESOLVED,
        moves_money=True,
    ),
    MediationAction.DISPUTE_CANCELLED: TransitionRule(
        actors=frozenset({PartyRole.OVERSEER}),
        system_message="system.dispute_cancelled",
        notification=NotificationType.MEDIATION_CANCELLED,
        moves_money=True,
    ),
    MediationAction.PARTY_CANCELS: TransitionRule(
        actors=frozenset({PartyRole.SELLER, PartyRole.BUYER}),
        system_message="system.mediation_cancelled",
        notification=NotificationType.MEDIATION_CANCELLED,
        moves_money=True,
    ),
}


def rule_for(action: MediationAction) -> TransitionRule:
    return TRANSITION_RULES[action]


def can_act(roles: set[PartyRole], action: MediationAction) -> bool:
    """True when any of the actor's roles on the mediation may fire `action`."""
    return bool(roles & TRANSITION_RULES[action].actors)
