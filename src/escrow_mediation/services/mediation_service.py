"""Mediation Service - lifecycle transitions from creation to receipt.

This is the application layer that coordinates between:
    - Domain state machine and transition rules (guard)
    - Ledger service (escrow funding and release)
    - Repositories (data access) and the audit event log
    - Realtime outbox (pushed after commit)

Both REST routes and socket handlers call into this service, so there is
exactly one code path per transition.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from escrow_mediation.domain.enums import (
    ESCROW_HELD_STATUSES,
    Currency,
    EventType,
    LedgerEntryType,
    MediationAction,
    MediationStatus,
    PartyRole,
)
from escrow_mediation.domain.exceptions import (
    ForbiddenError,
    InvalidStateTransitionError,
    MediationValidationError,
    UserNotFoundError,
)
from escrow_mediation.domain.fees import calculate_mediator_fee, convert, quantize
from escrow_mediation.domain.settlement import refund, release
from escrow_mediation.domain.state_machine import MediationStateMachine
from escrow_mediation.domain.transitions import can_act
from escrow_mediation.infrastructure.database.orm_models import MediationRequest
from escrow_mediation.infrastructure.database.repositories import SubChatRepository
from escrow_mediation.logging_config import get_logger
from escrow_mediation.services.base import TransactionalService

if TYPE_CHECKING:
    import uuid

    from escrow_mediation.domain.actors import Actor
    from escrow_mediation.infrastructure.database.orm_models import (
        MediationEvent,
        SubChat,
    )

logger = get_logger(__name__)


def _require_text(value: str | None, field: str, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise MediationValidationError(message, field=field)
    return text


class MediationService(TransactionalService):
    """Manages the mediation lifecycle outside of dispute resolution."""

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_mediation(
        self,
        actor: Actor,
        buyer_id: uuid.UUID,
        title: str,
        bid_amount: Decimal,
        bid_currency: Currency = Currency.TND,
        seller_id: uuid.UUID | None = None,
        mediator_fee: Decimal | None = None,
    ) -> MediationRequest:
        """Open a mediation in PendingMediatorSelection for an accepted bid."""
        seller_id = seller_id or actor.user_id
        if seller_id != actor.user_id and not actor.is_admin:
            raise ForbiddenError(action="create_mediation", actor_id=str(actor.user_id))
        if seller_id == buyer_id:
            raise MediationValidationError("Seller and buyer must differ", field="buyer_id")
        title = _require_text(title, "title", "A title is required")
        bid_currency = Currency(bid_currency)

        if mediator_fee is None:
            fee = calculate_mediator_fee(
                Decimal(bid_amount), bid_currency, self._settings.tnd_usd_exchange_rate
            ).fee
        else:
            if bid_amount <= 0:
                raise MediationValidationError("Bid amount must be positive", field="bid_amount")
            fee = quantize(Decimal(mediator_fee))
            if fee < 0 or fee > bid_amount:
                raise MediationValidationError(
                    "Mediator fee must be between zero and the bid amount",
                    field="mediator_fee",
                )

        async with self.unit_of_work(action="create_mediation"):
            for party_id in (seller_id, buyer_id):
                if await self._user_repo.get_by_id(party_id) is None:
                    raise UserNotFoundError(str(party_id))

            mediation = await self._mediation_repo.create(
                MediationRequest(
                    title=title,
                    seller_id=seller_id,
                    buyer_id=buyer_id,
                    bid_amount=quantize(Decimal(bid_amount)),
                    bid_currency=bid_currency.value,
                    calculated_mediator_fee=fee,
                    mediation_fee_currency=bid_currency.value,
                    status=MediationStatus.PENDING_MEDIATOR_SELECTION.value,
                    previously_suggested_mediators=[],
                    overseers=[],
                )
            )
            await self._event_repo.record(
                mediation_id=mediation.id,
                event_type=EventType.MEDIATION_CREATED,
                old_status=None,
                new_status=mediation.status,
                actor_id=actor.user_id,
                details={"bid_amount": str(mediation.bid_amount), "currency": bid_currency.value},
            )
            await self._queue_details_update(mediation)

        logger.info(
            "mediation.created",
            mediation_id=str(mediation.id),
            bid_amount=str(mediation.bid_amount),
            fee=str(fee),
        )
        return mediation

    # ------------------------------------------------------------------
    # Mediator selection
    # ------------------------------------------------------------------

    async def assign_mediator(
        self, actor: Actor, mediation_id: uuid.UUID, mediator_id: uuid.UUID
    ) -> MediationRequest:
        action = MediationAction.ASSIGN_MEDIATOR
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            new_status = self._guard(mediation, action)

            mediator = await self._user_repo.get_by_id(mediator_id)
            if mediator is None:
                raise UserNotFoundError(str(mediator_id))
            if mediator_id in (mediation.seller_id, mediation.buyer_id):
                raise MediationValidationError(
                    "A party cannot mediate its own transaction", field="mediator_id"
                )
            if not mediator.is_mediator_qualified or mediator.blocked:
                raise MediationValidationError(
                    "User is not an active qualified mediator", field="mediator_id"
                )
            if str(mediator_id) in mediation.previously_suggested_mediators:
                raise MediationValidationError(
                    "This mediator already declined the mediation", field="mediator_id"
                )

            mediation.mediator_id = mediator_id
            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=mediation.party_ids,
                params={"mediator_name": mediator.full_name},
            )
            await self._queue_details_update(mediation)
        return mediation

    async def mediator_accept(self, actor: Actor, mediation_id: uuid.UUID) -> MediationRequest:
        action = MediationAction.MEDIATOR_ACCEPTS
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            new_status = self._guard(mediation, action)
            await self._record_transition(
                mediation, action, new_status, actor.user_id, notify=mediation.party_ids
            )
            await self._queue_details_update(mediation)
        return mediation

    async def mediator_reject(
        self, actor: Actor, mediation_id: uuid.UUID, reason: str | None
    ) -> MediationRequest:
        """Decline an assignment; the mediation goes back to selection or, after
        too many rejections, is cancelled."""
        reason = _require_text(reason, "reason", "A rejection reason is required")
        async with self.unit_of_work(mediation_id, MediationAction.MEDIATOR_REJECTS):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, MediationAction.MEDIATOR_REJECTS)

            rejections = mediation.mediator_rejection_count + 1
            final = rejections >= self._settings.max_mediator_rejections
            action = (
                MediationAction.MEDIATOR_REJECTS_FINAL if final else MediationAction.MEDIATOR_REJECTS
            )
            new_status = self._guard(mediation, action)

            notify = mediation.party_ids
            mediation.mediator_rejection_count = rejections
            mediation.previously_suggested_mediators = [
                *mediation.previously_suggested_mediators,
                str(actor.user_id),
            ]
            mediation.mediator_id = None
            if final:
                mediation.cancellation_reason = reason
                mediation.cancelled_by = actor.user_id
                mediation.cancelled_at = self._now()

            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=notify,
                params={"reason": reason, "rejections": rejections},
                details={"reason": reason},
            )
            await self._queue_details_update(mediation)
        return mediation

    # ------------------------------------------------------------------
    # Readiness and escrow
    # ------------------------------------------------------------------

    async def seller_confirm_readiness(
        self, actor: Actor, mediation_id: uuid.UUID
    ) -> MediationRequest:
        action = MediationAction.SELLER_CONFIRMS
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            if mediation.seller_confirmed_start:
                raise InvalidStateTransitionError(
                    mediation.status, str(action), reason="seller already confirmed"
                )
            new_status = self._guard(mediation, action)

            mediation.seller_confirmed_start = True
            await self._record_transition(
                mediation, action, new_status, actor.user_id, notify=mediation.party_ids
            )
            await self._start_if_both_confirmed(mediation)
            await self._queue_details_update(mediation)
        return mediation

    async def buyer_confirm_and_fund(
        self, actor: Actor, mediation_id: uuid.UUID
    ) -> MediationRequest:
        """Buyer confirms readiness and the bid moves from their balance into escrow.

        The status change is flushed before the debit so a concurrent writer
        is detected by the version check before any money moves; an
        insufficient balance rolls the status change back with it.
        """
        action = MediationAction.BUYER_FUNDS_ESCROW
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            if mediation.buyer_confirmed_start:
                raise InvalidStateTransitionError(
                    mediation.status, str(action), reason="buyer already confirmed"
                )
            new_status = self._guard(mediation, action)

            platform_currency = Currency(self._settings.platform_currency)
            rate = self._settings.tnd_usd_exchange_rate
            escrow_platform = convert(
                mediation.bid_amount, Currency(mediation.bid_currency), platform_currency, rate
            )
            fee_platform = min(
                convert(
                    mediation.calculated_mediator_fee,
                    Currency(mediation.mediation_fee_currency),
                    platform_currency,
                    rate,
                ),
                escrow_platform,
            )

            # Terms first: they are frozen once funded_at is set.
            mediation.escrowed_amount = mediation.bid_amount
            mediation.escrowed_currency = mediation.bid_currency
            mediation.escrow_platform_amount = escrow_platform
            mediation.fee_platform_amount = fee_platform
            mediation.funded_at = self._now()
            mediation.buyer_confirmed_start = True
            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=mediation.party_ids,
                params={"amount": str(mediation.bid_amount), "currency": mediation.bid_currency},
            )
            await self._session.flush()

            await self._ledger.fund_escrow(mediation.buyer_id, escrow_platform, mediation.id)
            await self._start_if_both_confirmed(mediation)
            self._ledger.queue_balance_updates()
            await self._queue_details_update(mediation)

        logger.info(
            "mediation.escrow_funded",
            mediation_id=str(mediation.id),
            amount=str(mediation.escrow_platform_amount),
        )
        return mediation

    async def _start_if_both_confirmed(self, mediation: MediationRequest) -> None:
        """EscrowFunded with both flags set moves on through PartiesConfirmed to InProgress."""
        if not (mediation.seller_confirmed_start and mediation.buyer_confirmed_start):
            return
        if mediation.status == MediationStatus.ESCROW_FUNDED:
            action = MediationAction.PARTIES_CONFIRMED
            await self._record_transition(mediation, action, self._guard(mediation, action), None)
        if mediation.status == MediationStatus.PARTIES_CONFIRMED:
            action = MediationAction.MEDIATION_STARTED
            await self._record_transition(
                mediation,
                action,
                self._guard(mediation, action),
                None,
                notify=mediation.party_ids,
            )

    # ------------------------------------------------------------------
    # Exchange outcome
    # ------------------------------------------------------------------

    async def confirm_receipt(self, actor: Actor, mediation_id: uuid.UUID) -> MediationRequest:
        """Buyer confirms delivery: seller gets the escrow net of fee, mediator the fee."""
        action = MediationAction.BUYER_CONFIRMS_RECEIPT
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            new_status = self._guard(mediation, action)

            settlement = release(mediation.escrow_platform_amount, mediation.fee_platform_amount)
            mediation.release_escrow(self._now())
            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=mediation.party_ids,
                params={
                    "seller_amount": str(settlement.payee_credit),
                    "mediator_fee": str(settlement.mediator_credit),
                },
            )
            await self._session.flush()

            await self._ledger.settle(
                settlement,
                buyer_id=mediation.buyer_id,
                mediation_id=mediation.id,
                payee_id=mediation.seller_id,
                mediator_id=mediation.mediator_id,
                payout_type=LedgerEntryType.ESCROW_RELEASED,
            )
            self._ledger.queue_balance_updates()
            await self._queue_details_update(mediation)

        logger.info(
            "mediation.completed",
            mediation_id=str(mediation.id),
            seller_credit=str(settlement.payee_credit),
            mediator_credit=str(settlement.mediator_credit),
        )
        return mediation

    async def open_dispute(
        self, actor: Actor, mediation_id: uuid.UUID, reason: str | None = None
    ) -> MediationRequest:
        """Buyer or seller escalates an in-progress mediation; the escrow stays held."""
        action = MediationAction.DISPUTE_OPENED
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            new_status = self._guard(mediation, action)

            mediation.dispute_opened_by = actor.user_id
            mediation.dispute_opened_at = self._now()
            mediation.dispute_reason = (reason or "").strip() or None
            admins = await self._user_repo.list_admins()
            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=[*mediation.party_ids, *(admin.id for admin in admins)],
                params={"opened_by": str(actor.user_id)},
                details={"reason": mediation.dispute_reason},
            )
            await self._queue_details_update(mediation)

        logger.info("dispute.opened", mediation_id=str(mediation.id), opened_by=str(actor.user_id))
        return mediation

    async def cancel(
        self, actor: Actor, mediation_id: uuid.UUID, reason: str | None
    ) -> MediationRequest:
        """Seller or buyer withdraws before the exchange starts; a funded escrow is refunded."""
        reason = _require_text(reason, "reason", "A cancellation reason is required")
        action = MediationAction.PARTY_CANCELS
        async with self.unit_of_work(mediation_id, action):
            mediation = await self._lock_mediation_or_raise(mediation_id)
            self._authorize(actor, mediation, action)
            was_held = MediationStatus(mediation.status) in ESCROW_HELD_STATUSES
            new_status = self._guard(mediation, action)

            mediation.cancellation_reason = reason
            mediation.cancelled_by = actor.user_id
            mediation.cancelled_at = self._now()
            settlement = None
            if was_held and mediation.holds_escrow:
                settlement = refund(mediation.escrow_platform_amount)
                mediation.release_escrow(self._now())

            await self._record_transition(
                mediation,
                action,
                new_status,
                actor.user_id,
                notify=mediation.party_ids,
                params={"reason": reason},
                details={"reason": reason, "refunded": settlement is not None},
            )
            await self._session.flush()

            if settlement is not None:
                await self._ledger.settle(
                    settlement, buyer_id=mediation.buyer_id, mediation_id=mediation.id
                )
                self._ledger.queue_balance_updates()
            await self._queue_details_update(mediation)

        logger.info("mediation.cancelled", mediation_id=str(mediation.id), by=str(actor.user_id))
        return mediation

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_details(
        self, actor: Actor, mediation_id: uuid.UUID
    ) -> tuple[MediationRequest, set[PartyRole], list[str], list[SubChat]]:
        """Return the mediation with the caller's roles, allowed actions and visible sub-chats."""
        mediation = await self._get_mediation_or_raise(mediation_id)
        roles = self._require_visibility(actor, mediation)
        allowed = [
            action
            for action in MediationStateMachine(mediation.status).get_allowed_actions()
            if can_act(roles, MediationAction(action))
        ]
        sub_chats = await SubChatRepository(self._session).get_by_mediation(mediation.id)
        if not actor.is_admin:
            sub_chats = [sc for sc in sub_chats if actor.user_id in sc.participant_ids]
        return mediation, roles, allowed, sub_chats

    async def get_history(self, actor: Actor, mediation_id: uuid.UUID) -> list[MediationEvent]:
        mediation = await self._get_mediation_or_raise(mediation_id)
        self._require_visibility(actor, mediation)
        return await self._event_repo.get_by_mediation(mediation.id)

    async def list_for_actor(self, actor: Actor) -> list[MediationRequest]:
        return await self._mediation_repo.get_for_user(actor.user_id)
