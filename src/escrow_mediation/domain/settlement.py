"""Pure arithmetic for splitting an escrow on terminal resolution.

Every settlement distributes exactly the escrowed amount: what goes to the
payee, the mediator and back to the buyer always sums to the escrow.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from escrow_mediation.domain.fees import quantize


class SettlementError(ValueError):
    """Raised when a settlement would create or destroy money."""


@dataclass(frozen=True)
class Settlement:
    escrow: Decimal
    payee_credit: Decimal
    mediator_credit: Decimal
    buyer_refund: Decimal

    def __post_init__(self) -> None:
        parts = (self.payee_credit, self.mediator_credit, self.buyer_refund)
        if any(part < 0 for part in parts):
            raise SettlementError(f"Negative settlement share: {parts}")
        if sum(parts) != self.escrow:
            raise SettlementError(
                f"Settlement shares {parts} do not add up to escrow {self.escrow}"
            )


def release(escrow: Decimal, mediator_fee: Decimal) -> Settlement:
    """Pay the escrow to a payee net of the mediator fee; the fee goes to the mediator."""
    escrow = quantize(escrow)
    mediator_fee = quantize(mediator_fee)
    if escrow <= 0:
        raise SettlementError("Nothing held in escrow")
    if mediator_fee > escrow:
        raise SettlementError(f"Mediator fee {mediator_fee} exceeds escrow {escrow}")
    return Settlement(
        escrow=escrow,
        payee_credit=escrow - mediator_fee,
        mediator_credit=mediator_fee,
        buyer_refund=Decimal("0.00"),
    )


def refund(escrow: Decimal) -> Settlement:
    """Return the whole escrow to the buyer; no fee is collected."""
    escrow = quantize(escrow)
    if escrow <= 0:
        raise SettlementError("Nothing held in escrow")
    return Settlement(
        escrow=escrow,
        payee_credit=Decimal("0.00"),
        mediator_credit=Decimal("0.00"),
        buyer_refund=escrow,
    )
