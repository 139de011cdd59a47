"""Ledger Service: the only code path that changes user balances.

Each movement is one conditional UPDATE on the user row plus one
append-only ledger entry carrying the balances after the movement. The
service runs inside the caller's transaction and never commits; the
mediation transition that asked for the movement commits both together.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import LedgerEntryType, RealtimeEvent
from escrow_mediation.domain.exceptions import InsufficientFundsError, UserNotFoundError
from escrow_mediation.domain.fees import quantize
from escrow_mediation.infrastructure.database.orm_models import LedgerEntry
from escrow_mediation.infrastructure.database.repositories import (
    Balances,
    LedgerRepository,
    UserRepository,
)
from escrow_mediation.logging_config import get_logger
from escrow_mediation.schemas.account import BalancesResponse

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_mediation.domain.settlement import Settlement
    from escrow_mediation.realtime.outbox import Outbox

logger = get_logger(__name__)

ZERO = Decimal("0.00")


class LedgerService:
    """Moves money between spendable balances and escrow."""

    def __init__(self, session: AsyncSession, outbox: Outbox, currency: str) -> None:
        self._ledger_repo = LedgerRepository(session)
        self._user_repo = UserRepository(session)
        self._outbox = outbox
        self._currency = currency
        self._touched: dict[uuid.UUID, Balances] = {}

    async def _move(
        self,
        user_id: uuid.UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        balance_delta: Decimal,
        escrow_delta: Decimal,
        mediation_id: uuid.UUID | None,
    ) -> Balances:
        amount = quantize(amount)
        balances = await self._ledger_repo.apply(user_id, balance_delta, escrow_delta)
        if balances is None:
            current = await self._user_repo.get_balances(user_id)
            if current is None:
                raise UserNotFoundError(str(user_id))
            available = current.balance if balance_delta < 0 else current.escrow_balance
            raise InsufficientFundsError(
                required=str(amount),
                available=str(quantize(available)),
                currency=self._currency,
            )

        await self._ledger_repo.record(
            LedgerEntry(
                user_id=user_id,
                mediation_id=mediation_id,
                entry_type=entry_type.value,
                amount=amount,
                currency=self._currency,
                balance_after=balances.balance,
                escrow_balance_after=balances.escrow_balance,
            )
        )
        self._touched[user_id] = balances
        logger.info(
            "ledger.moved",
            user_id=str(user_id),
            entry_type=entry_type.value,
            amount=str(amount),
            balance=str(balances.balance),
            escrow_balance=str(balances.escrow_balance),
        )
        return balances

    # ------------------------------------------------------------------
    # Escrow movements
    # ------------------------------------------------------------------

    async def fund_escrow(
        self, buyer_id: uuid.UUID, amount: Decimal, mediation_id: uuid.UUID
    ) -> Balances:
        """Move `amount` from the buyer's spendable balance into escrow."""
        return await self._move(
            buyer_id,
            LedgerEntryType.ESCROW_FUNDED,
            amount,
            balance_delta=-amount,
            escrow_delta=amount,
            mediation_id=mediation_id,
        )

    async def settle(
        self,
        settlement: Settlement,
        buyer_id: uuid.UUID,
        mediation_id: uuid.UUID,
        payee_id: uuid.UUID | None = None,
        mediator_id: uuid.UUID | None = None,
        payout_type: LedgerEntryType = LedgerEntryType.ESCROW_RELEASED,
    ) -> None:
        """Take the escrow off the buyer and distribute it as the settlement says.

        The buyer's escrow decrement and every credit happen in the caller's
        transaction, so either all of them are committed or none is.
        """
        if settlement.buyer_refund > 0:
            await self._move(
                buyer_id,
                LedgerEntryType.ESCROW_REFUNDED,
                settlement.buyer_refund,
                balance_delta=settlement.buyer_refund,
                escrow_delta=-settlement.escrow,
                mediation_id=mediation_id,
            )
        else:
            await self._move(
                buyer_id,
                LedgerEntryType.ESCROW_RELEASED,
                settlement.escrow,
                balance_delta=ZERO,
                escrow_delta=-settlement.escrow,
                mediation_id=mediation_id,
            )

        if settlement.payee_credit > 0:
            if payee_id is None:
                raise ValueError("Settlement pays a payee but none was given")
            await self._move(
                payee_id,
                payout_type,
                settlement.payee_credit,
                balance_delta=settlement.payee_credit,
                escrow_delta=ZERO,
                mediation_id=mediation_id,
            )

        if settlement.mediator_credit > 0:
            if mediator_id is None:
                raise ValueError("Settlement pays a mediator fee but no mediator is assigned")
            await self._move(
                mediator_id,
                LedgerEntryType.MEDIATION_FEE_RECEIVED,
                settlement.mediator_credit,
                balance_delta=settlement.mediator_credit,
                escrow_delta=ZERO,
                mediation_id=mediation_id,
            )

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def queue_balance_updates(self) -> None:
        """Queue one user_balances_updated per touched user with its final balances."""
        for user_id, balances in self._touched.items():
            payload = BalancesResponse(
                user_id=user_id,
                balance=balances.balance,
                escrow_balance=balances.escrow_balance,
                currency=self._currency,
            ).model_dump(mode="json")
            self._outbox.to_user(user_id, RealtimeEvent.USER_BALANCES_UPDATED, payload)
        self._touched.clear()

    def discard(self) -> None:
        """Forget balances touched by a transaction that was rolled back."""
        self._touched.clear()
