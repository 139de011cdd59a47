"""Mediator fee calculation and currency conversion.

Fees are tiered on the price expressed in TND:

    1  <= price <= 15    -> 5%
    15 <  price <= 50    -> 6%
    50 <  price <= 100   -> 7%
    100 < price          -> 8%
    price < 1            -> no fee

A USD price is converted to TND to pick the tier, and the fee is converted
back so it is always expressed in the bid currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from escrow_mediation.domain.enums import Currency
from escrow_mediation.domain.exceptions import MediationValidationError

CENT = Decimal("0.01")

_FEE_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("15"), Decimal("0.05")),
    (Decimal("50"), Decimal("0.06")),
    (Decimal("100"), Decimal("0.07")),
)
_TOP_TIER_RATE = Decimal("0.08")


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeDetails:
    price: Decimal
    currency: Currency
    fee: Decimal
    fee_in_tnd: Decimal
    rate: Decimal

    @property
    def net_for_seller(self) -> Decimal:
        return self.price - self.fee


def _fee_rate(price_in_tnd: Decimal) -> Decimal:
    if price_in_tnd < 1:
        return Decimal("0")
    for upper_bound, rate in _FEE_TIERS:
        if price_in_tnd <= upper_bound:
            return rate
    return _TOP_TIER_RATE


def to_tnd(amount: Decimal, currency: Currency, tnd_usd_rate: Decimal) -> Decimal:
    if currency == Currency.USD:
        return amount * tnd_usd_rate
    return amount


def convert(
    amount: Decimal,
    from_currency: Currency,
    to_currency: Currency,
    tnd_usd_rate: Decimal,
) -> Decimal:
    """Convert between the supported currencies, rounded to cents."""
    if from_currency == to_currency:
        return quantize(amount)
    if from_currency == Currency.USD and to_currency == Currency.TND:
        return quantize(amount * tnd_usd_rate)
    return quantize(amount / tnd_usd_rate)


def calculate_mediator_fee(
    price: Decimal,
    currency: Currency,
    tnd_usd_rate: Decimal,
) -> FeeDetails:
    """Compute the mediator fee for a bid, expressed in the bid currency."""
    if price <= 0:
        raise MediationValidationError("Bid amount must be positive", field="bid_amount")

    price_in_tnd = to_tnd(price, currency, tnd_usd_rate)
    rate = _fee_rate(price_in_tnd)
    fee_in_tnd = price_in_tnd * rate

    fee = fee_in_tnd / tnd_usd_rate if currency == Currency.USD else fee_in_tnd
    fee = min(quantize(fee), quantize(price))

    return FeeDetails(
        price=quantize(price),
        currency=currency,
        fee=fee,
        fee_in_tnd=quantize(fee_in_tnd),
        rate=rate,
    )
