"""
Remittance netting — settle an outgoing remittance against an incoming one.

Both remittances are denominated in the same remittance currency (IRR in
practice). Each side carries the ``rate`` it was booked at, quoted as
remittance-currency units per one unit of the base currency (CAD). The
outgoing side was bought and the incoming side sold, so netting ``amount``:

    cost    = amount / outgoing.rate
    revenue = amount / incoming.rate
    profit  = cost - revenue          (in base currency; negative is a loss)

A side whose new remaining balance is within the remittance currency's
tolerance is snapped to zero and marked COMPLETED.
"""

from dataclasses import dataclass
from decimal import Decimal

from app.core.currency import is_within_tolerance
from app.core.exceptions import ValidationError
from app.models.remittance import RemittanceStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class RemittanceSide:
    """One remittance's position before netting."""
    amount: Decimal
    remaining: Decimal
    rate: Decimal


@dataclass(frozen=True)
class NettingResult:
    amount: Decimal
    currency: str
    base_currency: str
    cost: Decimal
    revenue: Decimal
    profit: Decimal
    outgoing_remaining: Decimal
    outgoing_status: RemittanceStatus
    incoming_remaining: Decimal
    incoming_status: RemittanceStatus


def _settle_side(remaining: Decimal, amount: Decimal, currency: str) -> tuple[Decimal, RemittanceStatus]:
    new_remaining = remaining - amount
    if is_within_tolerance(new_remaining, currency):
        return ZERO, RemittanceStatus.COMPLETED
    return new_remaining, RemittanceStatus.PARTIAL


def net_remittances(
    outgoing: RemittanceSide,
    incoming: RemittanceSide,
    amount: Decimal,
    currency: str = "IRR",
    base_currency: str = "CAD",
) -> NettingResult:
    """Net *amount* of *outgoing* against *incoming*; raises ValidationError on bad input."""
    amount = Decimal(amount)
    if amount <= ZERO:
        raise ValidationError("Netting amount must be greater than zero")
    if outgoing.amount <= ZERO or incoming.amount <= ZERO:
        raise ValidationError("Remittance amounts must be greater than zero")
    if outgoing.rate <= ZERO or incoming.rate <= ZERO:
        raise ValidationError("Remittance rates must be greater than zero")
    if amount > outgoing.remaining:
        raise ValidationError("Netting amount exceeds outgoing remaining balance")
    if amount > incoming.remaining:
        raise ValidationError("Netting amount exceeds incoming remaining balance")

    cost = amount / outgoing.rate
    revenue = amount / incoming.rate

    outgoing_remaining, outgoing_status = _settle_side(outgoing.remaining, amount, currency)
    incoming_remaining, incoming_status = _settle_side(incoming.remaining, amount, currency)

    return NettingResult(
        amount=amount,
        currency=currency,
        base_currency=base_currency,
        cost=cost,
        revenue=revenue,
        profit=cost - revenue,
        outgoing_remaining=outgoing_remaining,
        outgoing_status=outgoing_status,
        incoming_remaining=incoming_remaining,
        incoming_status=incoming_status,
    )
