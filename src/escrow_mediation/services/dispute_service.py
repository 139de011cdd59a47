"""Dispute resolution: overseer attachment and the two terminal rulings.

Once a mediation is Disputed only an admin that joined it as an overseer
may close it, either by ruling for one party (the escrow goes to the winner
net of the mediator fee) or by cancelling (full refund to the buyer).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import LedgerEntryType, MediationAction, MediationStatus
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationValidationError,
)
from escrow_mediation.domain.settlement import refund, release
from escrow_mediation.logging_config import get_logger
from escrow_mediation.services.base import TransactionalService

if TYPE_CHECKING:
    import uuid

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.infrastructure.database.orm_models import MediationRequest

logger = get_logger(__name__)


class DisputeService(TransactionalService):
    """Admin-only operations available while a mediation is Disputed."""

    async def join_dispute(self, actor: Actor, mediation_id: uuid.UUID) -> MediationRequest:
        """Attach the calling admin as an overseer. Joining twice changes nothing."""
        if not actor.is_admin:
            raise ForbiddenError(action="join_dispute", actor_id=str(actor.user_id))
        async with self.unit_of_work(mediation_id, "join_dispute"):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            if mediation.status != MediationStatus.DISPUTED:
                raise InvalidStateTransitionError(
                    current_state=mediation.status,
                    attempted="join_dispute",
                    reason="only disputed mediations can be joined",
                )
            if await self._attach_overseer(mediation, actor):
                await self._queue_details_update(mediation)
        return mediation

    async def resolve_dispute(
        self,
        actor: Actor,
        mediation_id: uuid.UUID,
        resolution_notes: str | None,
        winner_id: uuid.UUID | None = None,
        loser_id: uuid.UUID | None = None,
        cancel_mediation: bool = False,
    ) -> MediationRequest:
        """Close a dispute.

        Args:
            resolution_notes: Required explanation recorded on the mediation.
            winner_id / loser_id: The buyer and the seller, in either order.
                Ignored when cancel_mediation is set.
            cancel_mediation: Refund the buyer in full and cancel instead of
                ruling for a party.

        All checks run before any money moves; a second resolution attempt
        finds the mediation already terminal and fails the status guard.
        """
        action = (
            MediationAction.DISPUTE_CANCELLED
            if cancel_mediation
            else MediationAction.DISPUTE_RESOLVED
        )
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            new_status = self._guard(mediation, action)

            notes = (resolution_notes or "").strip()
            if not notes:
                raise MediationValidationError(
                    "Resolution notes are required", field="resolution_notes"
                )
            if cancel_mediation:
                await self._cancel_disputed(actor, mediation, action, new_status, notes)
            else:
                await self._rule_for_party(
                    actor, mediation, action, new_status, notes, winner_id, loser_id
                )
            self._ledger.queue_balance_updates()
            await self._queue_details_update(mediation)

        logger.info(
            "dispute.resolved",
            mediation_id=str(mediation.id),
            outcome=mediation.status,
            winner_id=str(mediation.winner_id) if mediation.winner_id else None,
            admin_id=str(actor.user_id),
        )
        return mediation

    async def _rule_for_party(
        self,
        actor: Actor,
        mediation: MediationRequest,
        action: MediationAction,
        new_status: MediationStatus,
        notes: str,
        winner_id: uuid.UUID | None,
        loser_id: uuid.UUID | None,
    ) -> None:
        parties = {mediation.buyer_id, mediation.seller_id}
        if winner_id is None or loser_id is None or {winner_id, loser_id} != parties:
            raise MediationValidationError(
                "Winner and loser must be the buyer and the seller of this mediation",
                field="winner_id",
            )
        if mediation.mediator_id is None:
            raise MediationValidationError(
                "A disputed mediation must have a mediator to pay", field="mediator_id"
            )

        # The mediator is paid whichever party wins.
        settlement = release(mediation.escrow_platform_amount, mediation.fee_platform_amount)
        mediation.resolution_notes = notes
        mediation.winner_id = winner_id
        mediation.loser_id = loser_id
        mediation.release_escrow(self._now())
        await self._record_transition(
            mediation,
            action,
            new_status,
            actor.user_id,
            notify=[*mediation.party_ids, *mediation.overseer_ids],
            params={
                "winner_id": str(winner_id),
                "winner_amount": str(settlement.payee_credit),
                "mediator_fee": str(settlement.mediator_credit),
            },
            details={"winner_id": str(winner_id), "loser_id": str(loser_id), "notes": notes},
        )
        await self._session.flush()

        await self._ledger.settle(
            settlement,
            buyer_id=mediation.buyer_id,
            mediation_id=mediation.id,
            payee_id=winner_id,
            mediator_id=mediation.mediator_id,
            payout_type=LedgerEntryType.DISPUTE_PAYOUT,
        )

    async def _cancel_disputed(
        self,
        actor: Actor,
        mediation: MediationRequest,
        action: MediationAction,
        new_status: MediationStatus,
        notes: str,
    ) -> None:
        settlement = refund(mediation.escrow_platform_amount)
        mediation.resolution_notes = notes
        mediation.cancellation_reason = notes
        mediation.cancelled_by = actor.user_id
        mediation.cancelled_at = self._now()
        mediation.release_escrow(self._now())
        await self._record_transition(
            mediation,
            action,
            new_status,
            actor.user_id,
            notify=[*mediation.party_ids, *mediation.overseer_ids],
            params={"refund_amount": str(settlement.buyer_refund)},
            details={"notes": notes, "refunded": str(settlement.buyer_refund)},
        )
        await self._session.flush()

        await self._ledger.settle(
            settlement, buyer_id=mediation.buyer_id, mediation_id=mediation.id
        )

    async def list_disputed(self, actor: Actor) -> list[MediationRequest]:
        if not actor.is_admin:
            raise ForbiddenError(action="list_disputes", actor_id=str(actor.user_id))
        return await self._mediation_repo.get_by_status(MediationStatus.DISPUTED)
