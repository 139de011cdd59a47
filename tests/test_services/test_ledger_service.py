"""Tests for balance movements and their ledger entries."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from escrow_mediation.domain.enums import LedgerEntryType
from escrow_mediation.domain.exceptions import InsufficientFundsError, UserNotFoundError
from escrow_mediation.domain.settlement import refund, release
from escrow_mediation.infrastructure.database.repositories import LedgerRepository
from escrow_mediation.realtime import Outbox
from escrow_mediation.services.ledger_service import LedgerService


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def ledger(session, outbox) -> LedgerService:  # noqa: ANN001
    return LedgerService(session, outbox, "TND")


class TestFundEscrow:
    @pytest.mark.asyncio
    async def test_moves_balance_into_escrow(self, ledger, session, users) -> None:
        mediation_id = uuid.uuid4()
        balances = await ledger.fund_escrow(users.buyer.user_id, Decimal("80.00"), mediation_id)
        await session.commit()

        assert balances == (Decimal("120.00"), Decimal("80.00"))
        (entry,) = await LedgerRepository(session).get_for_user(users.buyer.user_id)
        assert entry.entry_type == LedgerEntryType.ESCROW_FUNDED
        assert entry.amount == Decimal("80.00")
        assert entry.balance_after == Decimal("120.00")
        assert entry.escrow_balance_after == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_refuses_to_overdraw(self, ledger, session, users, balance_of) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.fund_escrow(users.outsider.user_id, Decimal("50.01"), uuid.uuid4())
        await session.rollback()

        assert exc_info.value.params == {
            "required": "50.01",
            "available": "50.00",
            "currency": "TND",
        }
        assert await balance_of(users.outsider) == (Decimal("50.00"), Decimal("0.00"))

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger) -> None:
        with pytest.raises(UserNotFoundError):
            await ledger.fund_escrow(uuid.uuid4(), Decimal("1.00"), uuid.uuid4())


class TestSettle:
    @pytest.mark.asyncio
    async def test_release_pays_payee_and_mediator(self, ledger, session, users) -> None:
        mediation_id = uuid.uuid4()
        await ledger.fund_escrow(users.buyer.user_id, Decimal("100.00"), mediation_id)
        await ledger.settle(
            release(Decimal("100.00"), Decimal("7.00")),
            buyer_id=users.buyer.user_id,
            mediation_id=mediation_id,
            payee_id=users.seller.user_id,
            mediator_id=users.mediator.user_id,
        )
        await session.commit()

        entries = await LedgerRepository(session).get_for_mediation(mediation_id)
        moves = {(e.user_id, e.entry_type): e.amount for e in entries}
        assert moves == {
            (users.buyer.user_id, "ESCROW_FUNDED"): Decimal("100.00"),
            (users.buyer.user_id, "ESCROW_RELEASED"): Decimal("100.00"),
            (users.seller.user_id, "ESCROW_RELEASED"): Decimal("93.00"),
            (users.mediator.user_id, "MEDIATION_FEE_RECEIVED"): Decimal("7.00"),
        }

    @pytest.mark.asyncio
    async def test_refund_returns_escrow_to_buyer(self, ledger, session, users, balance_of) -> None:
        mediation_id = uuid.uuid4()
        await ledger.fund_escrow(users.buyer.user_id, Decimal("100.00"), mediation_id)
        await ledger.settle(
            refund(Decimal("100.00")), buyer_id=users.buyer.user_id, mediation_id=mediation_id
        )
        await session.commit()

        assert await balance_of(users.buyer) == (Decimal("200.00"), Decimal("0.00"))

    @pytest.mark.asyncio
    async def test_fee_without_mediator_is_refused(self, ledger, users) -> None:
        mediation_id = uuid.uuid4()
        await ledger.fund_escrow(users.buyer.user_id, Decimal("10.00"), mediation_id)
        with pytest.raises(ValueError, match="no mediator"):
            await ledger.settle(
                release(Decimal("10.00"), Decimal("1.00")),
                buyer_id=users.buyer.user_id,
                mediation_id=mediation_id,
                payee_id=users.seller.user_id,
            )


class TestBalancePushes:
    @pytest.mark.asyncio
    async def test_one_update_per_touched_user(self, ledger, outbox, users) -> None:
        mediation_id = uuid.uuid4()
        await ledger.fund_escrow(users.buyer.user_id, Decimal("10.00"), mediation_id)
        await ledger.fund_escrow(users.buyer.user_id, Decimal("5.00"), mediation_id)
        ledger.queue_balance_updates()

        (event,) = outbox.events
        assert event.event == "user_balances_updated"
        assert event.user_id == users.buyer.user_id
        assert Decimal(event.payload["escrow_balance"]) == Decimal("15.00")

    @pytest.mark.asyncio
    async def test_discard_forgets_rolled_back_moves(self, ledger, outbox, users) -> None:
        await ledger.fund_escrow(users.buyer.user_id, Decimal("10.00"), uuid.uuid4())
        ledger.discard()
        ledger.queue_balance_updates()

        assert len(outbox) == 0
