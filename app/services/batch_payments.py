"""
Batch payments — spread one payment across several open transactions.

A client who owes on several transactions hands over a single amount;
it is split across them and recorded as one ordinary payment per
transaction. All transactions must settle in the same currency, which
the batch's ``exchange_rate`` converts into.

Strategies:
  FIFO          oldest transaction first, each paid up to its balance
  PROPORTIONAL  each transaction gets a share in proportion to its
                balance, rounded down to the payment currency's minor unit

Only transactions that accept partial payments and are not yet settled
take part; the others are reported as skipped. Allocations never exceed
a transaction's remaining balance, so a batch never overpays.

Processing locks every transaction in id order (so two batches over
overlapping transactions cannot deadlock), re-plans against the locked
rows and commits all payments together or none of them.
"""

import enum
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.currency import is_within_tolerance, tolerance_for
from app.core.exceptions import PolicyViolation, ValidationError
from app.models.payment import Payment, PaymentRecordStatus
from app.models.transaction import PaymentStatus, Transaction
from app.services.locks import get_transaction_locks
from app.services.payment_service import PaymentService
from app.services.transaction_service import (
    commit_or_raise,
    current_settlement,
    load_transaction,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Scale of the payments.amount column
_AMOUNT_QUANTUM = Decimal("0.000001")


class AllocationStrategy(str, enum.Enum):
    FIFO = "FIFO"
    PROPORTIONAL = "PROPORTIONAL"


@dataclass(frozen=True)
class Allocation:
    """The part of a batch assigned to one transaction."""
    transaction: Transaction
    remaining_balance: Decimal  # settlement currency, before the batch
    amount: Decimal             # payment currency
    exchange_rate: Decimal

    @property
    def settlement_amount(self) -> Decimal:
        return self.amount * self.exchange_rate

    @property
    def is_full_payment(self) -> bool:
        return is_within_tolerance(
            self.remaining_balance - self.settlement_amount,
            self.transaction.receive_currency,
        )


@dataclass
class BatchPlan:
    strategy: AllocationStrategy
    currency: str
    exchange_rate: Decimal
    total_amount: Decimal
    allocations: list[Allocation]
    skipped: list[UUID] = field(default_factory=list)
    payments: dict[UUID, Payment] = field(default_factory=dict)

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def unallocated(self) -> Decimal:
        return self.total_amount - self.total_allocated

    @property
    def transactions_paid(self) -> int:
        return sum(1 for a in self.allocations if a.amount > ZERO)


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------


def is_batch_eligible(txn: Transaction) -> bool:
    """Open or partially paid, and accepting partial payments."""
    return bool(txn.allow_partial_payment) and not current_settlement(txn).is_settled


def _fifo(total: Decimal, capacities: list[Decimal], currency: str) -> list[Decimal]:
    left = total
    amounts = []
    for capacity in capacities:
        amount = min(left, capacity)
        amounts.append(amount)
        left -= amount
    return amounts


def _proportional(total: Decimal, capacities: list[Decimal], currency: str) -> list[Decimal]:
    owed = sum(capacities, ZERO)
    if total >= owed:
        return list(capacities)
    unit = tolerance_for(currency)
    return [
        min((total * capacity / owed).quantize(unit, rounding=ROUND_DOWN), capacity)
        for capacity in capacities
    ]


_STRATEGIES = {
    AllocationStrategy.FIFO: _fifo,
    AllocationStrategy.PROPORTIONAL: _proportional,
}


def plan_allocations(
    transactions: list[Transaction],
    total_amount: Decimal,
    currency: str,
    exchange_rate: Decimal,
    strategy: AllocationStrategy = AllocationStrategy.FIFO,
) -> BatchPlan:
    """
    Split *total_amount* (in *currency*) across *transactions*.

    Raises PolicyViolation when no transaction is eligible and
    ValidationError when the eligible ones settle in different currencies.
    """
    try:
        strategy = AllocationStrategy(strategy)
    except ValueError as exc:
        raise ValidationError(f"Unknown allocation strategy: {strategy}") from exc

    eligible = [t for t in transactions if is_batch_eligible(t)]
    skipped = [t.id for t in transactions if not is_batch_eligible(t)]
    if not eligible:
        raise PolicyViolation("No transactions eligible for batch payment")

    settlement_currencies = {t.receive_currency for t in eligible}
    if len(settlement_currencies) > 1:
        raise ValidationError(
            "Batch transactions must share one receive currency, got "
            + ", ".join(sorted(settlement_currencies))
        )

    eligible.sort(key=lambda t: (t.created_at, t.reference))
    balances = [current_settlement(t).remaining_balance for t in eligible]
    # Largest payment-currency amount each transaction can take without overpaying
    capacities = [
        (balance / exchange_rate).quantize(_AMOUNT_QUANTUM, rounding=ROUND_DOWN)
        for balance in balances
    ]
    amounts = _STRATEGIES[strategy](total_amount, capacities, currency)

    return BatchPlan(
        strategy=strategy,
        currency=currency,
        exchange_rate=exchange_rate,
        total_amount=total_amount,
        allocations=[
            Allocation(transaction=t, remaining_balance=b, amount=a, exchange_rate=exchange_rate)
            for t, b, a in zip(eligible, balances, amounts)
        ],
        skipped=skipped,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _unique_ids(transaction_ids) -> list[UUID]:
    ids = list(dict.fromkeys(transaction_ids or []))
    if not ids:
        raise ValidationError("At least one transaction is required")
    return ids


def _payment_fields(request: dict) -> dict:
    """Validated payment columns shared by every payment in the batch."""
    fields = PaymentService.validate_input({
        **request,
        "amount": request.get("total_amount"),
        "status": PaymentRecordStatus.COMPLETED,
    })
    notes = request.get("notes")
    fields["notes"] = f"Batch payment: {notes}" if notes else "Batch payment"
    return fields


async def list_batch_candidates(
    db: AsyncSession, tenant_id: int, client_id: str | None = None,
) -> list[Transaction]:
    """Transactions a batch payment can go to, oldest first."""
    stmt = (
        select(Transaction)
        .options(selectinload(Transaction.payments))
        .where(
            Transaction.tenant_id == tenant_id,
            Transaction.allow_partial_payment.is_(True),
            Transaction.payment_status.in_([PaymentStatus.OPEN, PaymentStatus.PARTIALLY_PAID]),
        )
        .order_by(Transaction.created_at.asc())
    )
    if client_id:
        stmt = stmt.where(Transaction.client_id == client_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def preview_batch_payment(db: AsyncSession, tenant_id: int, request: dict) -> BatchPlan:
    """Allocation a batch payment would make right now; nothing is written."""
    fields = _payment_fields(request)
    transactions = [
        await load_transaction(db, tenant_id, tid)
        for tid in _unique_ids(request.get("transaction_ids"))
    ]
    return plan_allocations(
        transactions, fields["amount"], fields["currency"], fields["exchange_rate"],
        request.get("strategy") or AllocationStrategy.FIFO,
    )


async def process_batch_payment(
    db: AsyncSession, tenant_id: int, request: dict, locks=None,
) -> BatchPlan:
    """
    Record a batch payment: one COMPLETED payment per allocated transaction.

    The plan is recomputed under the locks, so it can differ from an
    earlier preview if payments landed in between.
    """
    fields = _payment_fields(request)
    ids = sorted(_unique_ids(request.get("transaction_ids")))
    locks = locks or get_transaction_locks()

    async with AsyncExitStack() as stack:
        for transaction_id in ids:
            await stack.enter_async_context(locks.hold(transaction_id))

        transactions = [
            await load_transaction(db, tenant_id, tid, for_update=True) for tid in ids
        ]
        plan = plan_allocations(
            transactions, fields["amount"], fields["currency"], fields["exchange_rate"],
            request.get("strategy") or AllocationStrategy.FIFO,
        )

        try:
            for allocation in plan.allocations:
                if allocation.amount <= ZERO:
                    continue
                plan.payments[allocation.transaction.id] = PaymentService.add_payment(
                    allocation.transaction,
                    {**fields, "amount": allocation.amount},
                )
        except PolicyViolation:
            await db.rollback()
            raise

        await commit_or_raise(db, "batch payment")

    logger.info(
        "Batch payment of %s %s (%s) recorded on %d transaction(s); %s unallocated",
        plan.total_amount, plan.currency, plan.strategy.value,
        len(plan.payments), plan.unallocated,
    )
    return plan
