"""Tests for domain enumerations."""

from __future__ import annotations

from escrow_mediation.domain.enums import (
    CHAT_OPEN_STATUSES,
    ESCROW_HELD_STATUSES,
    MediationAction,
    MediationStatus,
    RealtimeEvent,
)


class TestMediationStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "PendingMediatorSelection", "MediatorAssigned", "MediationOfferAccepted",
            "EscrowFunded", "PartiesConfirmed", "InProgress", "Disputed",
            "Completed", "Cancelled",
        }
        assert {s.value for s in MediationStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(MediationStatus.DISPUTED, str)
        assert MediationStatus.DISPUTED == "Disputed"

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in MediationStatus if s.is_terminal}
        assert terminal == {MediationStatus.COMPLETED, MediationStatus.CANCELLED}

    def test_escrow_is_held_only_between_funding_and_resolution(self) -> None:
        assert MediationStatus.MEDIATION_OFFER_ACCEPTED not in ESCROW_HELD_STATUSES
        assert MediationStatus.DISPUTED in ESCROW_HELD_STATUSES
        assert not ESCROW_HELD_STATUSES & {MediationStatus.COMPLETED, MediationStatus.CANCELLED}

    def test_chat_is_closed_before_mediator_accepts_and_after_the_end(self) -> None:
        closed = set(MediationStatus) - CHAT_OPEN_STATUSES
        assert closed == {
            MediationStatus.PENDING_MEDIATOR_SELECTION,
            MediationStatus.MEDIATOR_ASSIGNED,
            MediationStatus.COMPLETED,
            MediationStatus.CANCELLED,
        }


class TestMediationAction:
    def test_every_action_is_a_machine_event(self) -> None:
        from escrow_mediation.domain.state_machine import MediationStateMachine

        sm = MediationStateMachine()
        for action in MediationAction:
            assert callable(getattr(sm, action.value))


class TestRealtimeEvent:
    def test_wire_names(self) -> None:
        assert RealtimeEvent.MEDIATION_DETAILS_UPDATED == "mediation_details_updated"
        assert RealtimeEvent.USER_BALANCES_UPDATED == "user_balances_updated"
        assert RealtimeEvent.NEW_ADMIN_SUB_CHAT_MESSAGE == "new_admin_sub_chat_message"
