"""
Transaction service — persisted transaction lifecycle.

Creation, tenant-scoped lookup, listing, manual completion and the
administrative hard delete. Also home of the helpers every settlement
write shares:

  load_transaction   — tenant-scoped SELECT (optionally FOR UPDATE)
  apply_settlement   — recompute from payments and store the snapshot
  commit_or_raise    — commit, or roll back and raise PersistenceError
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.currency import normalize_code
from app.core.exceptions import NotFoundError, PersistenceError, PolicyViolation, ValidationError
from app.models.transaction import (
    SETTLED_STATUSES,
    PaymentStatus,
    Transaction,
    TransactionType,
)
from app.services.locks import get_transaction_locks
from app.services.settlement import (
    SettlementSummary,
    compute_settlement,
    manual_completion_threshold,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


async def load_transaction(
    db: AsyncSession,
    tenant_id: int,
    transaction_id: UUID,
    *,
    for_update: bool = False,
) -> Transaction:
    """
    Fetch a transaction with its payments and edit history.

    With ``for_update`` the row is locked until the surrounding database
    transaction ends, and every loaded object is refreshed from that read
    so nothing the session fetched before the lock is trusted. Raises
    NotFoundError if it does not exist for the tenant.
    """
    stmt = (
        select(Transaction)
        .options(selectinload(Transaction.payments), selectinload(Transaction.edits))
        .where(Transaction.id == transaction_id, Transaction.tenant_id == tenant_id)
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(stmt)
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def _completion_threshold(txn: Transaction) -> Decimal:
    return manual_completion_threshold(
        txn.receive_amount, txn.receive_currency, settings.MANUAL_COMPLETION_PERCENT,
    )


def current_settlement(txn: Transaction) -> SettlementSummary:
    """
    Settlement recomputed from the full payment history, leaving *txn* untouched.

    A manual completion keeps the transaction FULLY_PAID only while the
    remaining balance stays within the write-off threshold.
    """
    summary = compute_settlement(txn.receive_amount, txn.receive_currency, txn.payments)
    if (
        txn.manually_completed
        and not summary.is_settled
        and summary.remaining_balance <= _completion_threshold(txn)
    ):
        return replace(summary, payment_status=PaymentStatus.FULLY_PAID)
    return summary


def apply_settlement(txn: Transaction) -> SettlementSummary:
    """
    Recompute settlement and store the snapshot on *txn*.

    A reversal that reopens a balance beyond the write-off threshold
    clears an earlier manual completion.
    """
    summary = current_settlement(txn)
    status = summary.payment_status

    if txn.manually_completed and status not in SETTLED_STATUSES:
        txn.manually_completed = False

    previous = txn.payment_status
    txn.total_paid = summary.total_paid
    txn.remaining_balance = summary.remaining_balance
    txn.payment_status = status

    if status in SETTLED_STATUSES:
        if txn.completed_at is None:
            txn.completed_at = datetime.now(timezone.utc)
    else:
        txn.completed_at = None

    if previous != status:
        logger.info(
            "Transaction %s payment status %s -> %s (remaining %s %s)",
            txn.reference,
            previous.value if previous else None,
            status.value,
            summary.remaining_balance,
            summary.currency,
        )
    return summary


async def commit_or_raise(db: AsyncSession, action: str) -> None:
    """Commit the session; on storage failure roll back and raise PersistenceError."""
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Persistence failure during %s", action)
        raise PersistenceError(f"Could not persist {action}; no changes were applied") from exc


def _require_positive(name: str, value: Decimal | None) -> Decimal:
    if value is None:
        raise ValidationError(f"{name} is required")
    value = Decimal(value)
    if value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return value


def _require_currency(name: str, value: str | None) -> str:
    code = normalize_code(value)
    if not code:
        raise ValidationError(f"{name} is required")
    return code


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def create_transaction(db: AsyncSession, tenant_id: int, data: dict) -> Transaction:
    """
    Create a transaction in OPEN status.

    *data* carries the commercial terms (see ``TransactionCreateRequest``).
    """
    txn = Transaction(
        tenant_id=tenant_id,
        client_id=data.get("client_id"),
        transaction_type=TransactionType(data.get("transaction_type", TransactionType.CASH_EXCHANGE)),
        send_currency=_require_currency("send_currency", data.get("send_currency")),
        send_amount=_require_positive("send_amount", data.get("send_amount")),
        receive_currency=_require_currency("receive_currency", data.get("receive_currency")),
        receive_amount=_require_positive("receive_amount", data.get("receive_amount")),
        rate_applied=_require_positive("rate_applied", data.get("rate_applied")),
        fee_charged=Decimal(data.get("fee_charged") or 0),
        payment_method=data.get("payment_method"),
        beneficiary_name=data.get("beneficiary_name"),
        beneficiary_details=data.get("beneficiary_details"),
        user_notes=data.get("user_notes"),
        allow_partial_payment=bool(data.get("allow_partial_payment", False)),
        payments=[],
        edits=[],
    )
    if txn.fee_charged < 0:
        raise ValidationError("fee_charged cannot be negative")

    apply_settlement(txn)
    db.add(txn)
    await commit_or_raise(db, "transaction creation")

    logger.info(
        "Transaction %s created: %s %s -> %s %s (partial=%s)",
        txn.reference, txn.send_amount, txn.send_currency,
        txn.receive_amount, txn.receive_currency, txn.allow_partial_payment,
    )
    return txn


async def get_transaction(
    db: AsyncSession, tenant_id: int, transaction_id: UUID,
) -> tuple[Transaction, SettlementSummary]:
    """
    Fetch a transaction with its settlement recomputed from its payments.

    Reads never write: the stored snapshot is left as it is and the
    fresh figures are returned alongside.
    """
    txn = await load_transaction(db, tenant_id, transaction_id)
    return txn, current_settlement(txn)


async def list_transactions(
    db: AsyncSession,
    tenant_id: int,
    *,
    page: int = 1,
    per_page: int = 20,
    payment_status: PaymentStatus | None = None,
) -> tuple[list[Transaction], int]:
    """Page through a tenant's transactions, newest first."""
    filters = [Transaction.tenant_id == tenant_id]
    if payment_status is not None:
        filters.append(Transaction.payment_status == payment_status)

    count_stmt = select(func.count(Transaction.id)).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()

    items_stmt = (
        select(Transaction)
        .options(selectinload(Transaction.payments))
        .where(*filters)
        .order_by(Transaction.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    result = await db.execute(items_stmt)
    return list(result.scalars().all()), total


async def complete_transaction(
    db: AsyncSession,
    tenant_id: int,
    transaction_id: UUID,
    locks=None,
) -> Transaction:
    """
    Manually mark a transaction FULLY_PAID.

    Allowed when the remaining balance is no larger than the greater of
    the currency tolerance and ``MANUAL_COMPLETION_PERCENT`` of the
    receive amount; otherwise PolicyViolation.
    """
    locks = locks or get_transaction_locks()
    async with locks.hold(transaction_id):
        txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
        summary = apply_settlement(txn)

        if txn.payment_status in SETTLED_STATUSES:
            return txn

        if summary.remaining_balance > _completion_threshold(txn):
            raise PolicyViolation(
                f"Cannot complete transaction with remaining balance "
                f"{summary.remaining_balance} {summary.currency}",
                remaining_balance=summary.remaining_balance,
                currency=summary.currency,
            )

        txn.manually_completed = True
        apply_settlement(txn)
        await commit_or_raise(db, "manual completion")

    logger.info(
        "Transaction %s manually completed with %s %s written off",
        txn.reference, summary.remaining_balance, summary.currency,
    )
    return txn


async def delete_transaction(db: AsyncSession, tenant_id: int, transaction_id: UUID, locks=None) -> None:
    """Hard-delete a transaction with its payments and edit history. Not reversible."""
    locks = locks or get_transaction_locks()
    async with locks.hold(transaction_id):
        txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
        await db.delete(txn)
        await commit_or_raise(db, "transaction deletion")

    logger.warning(
        "Transaction %s deleted with %d payment(s) and %d edit(s)",
        txn.reference, len(txn.payments), len(txn.edits),
    )
