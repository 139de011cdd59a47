"""Tests for who may trigger each transition and role resolution."""

from __future__ import annotations

import uuid

from escrow_mediation.domain.actors import Actor, resolve_roles
from escrow_mediation.domain.enums import MediationAction, PartyRole, UserRole
from escrow_mediation.domain.transitions import TRANSITION_RULES, can_act, rule_for

SELLER, BUYER, MEDIATOR = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()


def roles_of(actor: Actor, overseers: tuple[uuid.UUID, ...] = ()) -> set[PartyRole]:
    return resolve_roles(actor, SELLER, BUYER, MEDIATOR, overseers)


class TestRules:
    def test_every_action_has_a_rule(self) -> None:
        assert set(TRANSITION_RULES) == set(MediationAction)

    def test_every_rule_documents_itself_in_the_chat(self) -> None:
        for rule in TRANSITION_RULES.values():
            assert rule.system_message.startswith("system.")

    def test_money_moving_actions(self) -> None:
        moving = {action for action, rule in TRANSITION_RULES.items() if rule.moves_money}
        assert moving == {
            MediationAction.BUYER_FUNDS_ESCROW,
            MediationAction.BUYER_CONFIRMS_RECEIPT,
            MediationAction.DISPUTE_RESOLVED,
            MediationAction.DISPUTE_CANCELLED,
            MediationAction.PARTY_CANCELS,
        }

    def test_automatic_steps_belong_to_the_system(self) -> None:
        assert rule_for(MediationAction.PARTIES_CONFIRMED).actors == {PartyRole.SYSTEM}
        assert rule_for(MediationAction.MEDIATION_STARTED).actors == {PartyRole.SYSTEM}


class TestRoleResolution:
    def test_parties(self) -> None:
        assert roles_of(Actor(SELLER)) == {PartyRole.SELLER}
        assert roles_of(Actor(BUYER)) == {PartyRole.BUYER}
        assert roles_of(Actor(MEDIATOR)) == {PartyRole.MEDIATOR}

    def test_stranger_has_no_role(self) -> None:
        assert roles_of(Actor(uuid.uuid4())) == set()

    def test_admin_becomes_overseer_only_once_attached(self) -> None:
        admin = Actor(uuid.uuid4(), role=UserRole.ADMIN)
        assert roles_of(admin) == {PartyRole.ADMIN}
        assert roles_of(admin, (admin.user_id,)) == {PartyRole.ADMIN, PartyRole.OVERSEER}

    def test_user_listed_as_overseer_is_not_one_without_admin_role(self) -> None:
        user = Actor(uuid.uuid4())
        assert roles_of(user, (user.user_id,)) == set()


class TestCanAct:
    def test_only_buyer_confirms_receipt(self) -> None:
        action = MediationAction.BUYER_CONFIRMS_RECEIPT
        assert can_act({PartyRole.BUYER}, action)
        assert not can_act({PartyRole.SELLER}, action)
        assert not can_act({PartyRole.MEDIATOR}, action)
        assert not can_act({PartyRole.ADMIN}, action)

    def test_plain_admin_cannot_resolve(self) -> None:
        assert not can_act({PartyRole.ADMIN}, MediationAction.DISPUTE_RESOLVED)
        assert can_act({PartyRole.ADMIN, PartyRole.OVERSEER}, MediationAction.DISPUTE_RESOLVED)

    def test_either_trading_party_may_open_a_dispute(self) -> None:
        assert can_act({PartyRole.SELLER}, MediationAction.DISPUTE_OPENED)
        assert can_act({PartyRole.BUYER}, MediationAction.DISPUTE_OPENED)
        assert not can_act({PartyRole.MEDIATOR}, MediationAction.DISPUTE_OPENED)
