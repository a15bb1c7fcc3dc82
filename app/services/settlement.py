"""
Settlement calculator — remaining balance and payment status of a transaction.

Pure functions over a transaction's receive amount, its settlement
currency and its payment history. Nothing here touches the database;
``payment_service`` wraps these in a locked read-modify-write.

Rules:
  - Only COMPLETED payments count toward the total paid.
  - Each payment converts with its own ``exchange_rate``.
  - The total is recomputed from the full history every time.
  - "Settled" means ``abs(remaining) <= tolerance(settlement currency)``.
  - Negative balances are kept as-is; beyond tolerance they report OVERPAID.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from app.core.currency import is_within_tolerance, normalize_code, tolerance_for
from app.core.exceptions import PolicyViolation
from app.models.payment import PaymentRecordStatus
from app.models.transaction import SETTLED_STATUSES, PaymentStatus

ZERO = Decimal("0")


class SettlementPayment(Protocol):
    """Anything with the payment fields the calculator reads (e.g. ``Payment``)."""
    amount: Decimal
    exchange_rate: Decimal
    status: PaymentRecordStatus


@dataclass(frozen=True)
class SettlementSummary:
    """Result of a settlement computation."""
    currency: str
    receive_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    payment_status: PaymentStatus

    @property
    def is_settled(self) -> bool:
        return self.payment_status in SETTLED_STATUSES


def convert_to_settlement(amount: Decimal, exchange_rate: Decimal) -> Decimal:
    """Convert a payment amount into the settlement currency using its own rate."""
    return Decimal(amount) * Decimal(exchange_rate)


def resolve_status(remaining: Decimal, total_paid: Decimal, currency: str) -> PaymentStatus:
    """Map a remaining balance and paid total onto a PaymentStatus."""
    if is_within_tolerance(remaining, currency):
        return PaymentStatus.FULLY_PAID
    if remaining < -tolerance_for(currency):
        return PaymentStatus.OVERPAID
    if total_paid > ZERO:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.OPEN


def total_completed(payments: Iterable[SettlementPayment]) -> Decimal:
    """Sum of COMPLETED payments, each converted with its own rate."""
    return sum(
        (
            convert_to_settlement(p.amount, p.exchange_rate)
            for p in payments
            if p.status == PaymentRecordStatus.COMPLETED
        ),
        ZERO,
    )


def compute_settlement(
    receive_amount: Decimal,
    currency: str,
    payments: Iterable[SettlementPayment],
) -> SettlementSummary:
    """Recompute total paid, remaining balance and status from scratch."""
    receive_amount = Decimal(receive_amount)
    code = normalize_code(currency)
    total_paid = total_completed(payments)
    remaining = receive_amount - total_paid
    return SettlementSummary(
        currency=code,
        receive_amount=receive_amount,
        total_paid=total_paid,
        remaining_balance=remaining,
        payment_status=resolve_status(remaining, total_paid, code),
    )


def preview_payment(
    current: SettlementSummary,
    amount: Decimal,
    exchange_rate: Decimal,
) -> SettlementSummary:
    """Summary the transaction would have after one more COMPLETED payment."""
    total_paid = current.total_paid + convert_to_settlement(amount, exchange_rate)
    remaining = current.receive_amount - total_paid
    return SettlementSummary(
        currency=current.currency,
        receive_amount=current.receive_amount,
        total_paid=total_paid,
        remaining_balance=remaining,
        payment_status=resolve_status(remaining, total_paid, current.currency),
    )


def check_payment_policy(
    allow_partial_payment: bool,
    current: SettlementSummary,
    would_be: SettlementSummary,
) -> None:
    """
    Reject a new payment the transaction's settlement rules do not allow.

    - A settled transaction accepts no further payments.
    - Without ``allow_partial_payment`` the payment must, on its own,
      bring the balance within tolerance of zero.

    Raises PolicyViolation carrying the would-be balance.
    """
    if current.is_settled:
        raise PolicyViolation(
            "Transaction is already fully paid",
            remaining_balance=current.remaining_balance,
            currency=current.currency,
        )

    if not allow_partial_payment and not is_within_tolerance(
        would_be.remaining_balance, would_be.currency,
    ):
        raise PolicyViolation(
            "This transaction does not accept partial payments; "
            "the payment must settle the full remaining balance",
            remaining_balance=would_be.remaining_balance,
            currency=would_be.currency,
        )


def manual_completion_threshold(
    receive_amount: Decimal, currency: str, percent: Decimal | float,
) -> Decimal:
    """
    Largest remaining balance that may be written off by manual completion:
    the greater of the currency tolerance and *percent* of the receive amount.
    """
    percent_threshold = Decimal(receive_amount) * Decimal(str(percent)) / Decimal("100")
    return max(tolerance_for(currency), percent_threshold)
