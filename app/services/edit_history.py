"""
Edit history — audit trail for changes to a transaction's commercial terms.

``record_edit`` snapshots the pre-edit values into a new
``TransactionEdit`` row without touching the transaction.
``update_transaction`` appends that row and applies the new values in
the same database transaction, then recomputes settlement (a new
receive amount moves the remaining balance).
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.currency import normalize_code
from app.core.exceptions import PolicyViolation, ValidationError
from app.models.payment import PaymentRecordStatus
from app.models.transaction import COMMERCIAL_FIELDS, Transaction
from app.models.transaction_edit import TransactionEdit
from app.services.locks import get_transaction_locks
from app.services.transaction_service import apply_settlement, commit_or_raise, load_transaction

logger = logging.getLogger(__name__)

_CURRENCY_FIELDS = ("send_currency", "receive_currency")
_POSITIVE_FIELDS = ("send_amount", "receive_amount", "rate_applied")

# Payments whose exchange_rate converts into the current receive currency
_RATED_STATUSES = frozenset({PaymentRecordStatus.PENDING, PaymentRecordStatus.COMPLETED})


def record_edit(
    transaction: Transaction,
    *,
    edited_at: datetime | None = None,
    edited_by: str | None = None,
    reason: str | None = None,
) -> TransactionEdit:
    """Build the history entry holding *transaction*'s current commercial terms."""
    return TransactionEdit(
        transaction_id=transaction.id,
        sequence=len(transaction.edits) + 1,
        edited_at=edited_at or datetime.now(timezone.utc),
        edited_by=edited_by,
        reason=reason,
        **transaction.commercial_terms(),
    )


def _normalize_changes(changes: dict) -> dict:
    unknown = set(changes) - set(COMMERCIAL_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    normalized = {}
    for name, value in changes.items():
        if name in _CURRENCY_FIELDS:
            value = normalize_code(value)
            if not value:
                raise ValidationError(f"{name} cannot be empty")
        elif name in _POSITIVE_FIELDS:
            if value is None or Decimal(value) <= 0:
                raise ValidationError(f"{name} must be greater than zero")
            value = Decimal(value)
        elif name == "fee_charged":
            value = Decimal(value or 0)
            if value < 0:
                raise ValidationError("fee_charged cannot be negative")
        elif name == "allow_partial_payment":
            if value is None:
                raise ValidationError("allow_partial_payment cannot be empty")
            value = bool(value)
        normalized[name] = value
    return normalized


async def update_transaction(
    db: AsyncSession,
    tenant_id: int,
    transaction_id: UUID,
    changes: dict,
    *,
    edited_by: str | None = None,
    reason: str | None = None,
    locks=None,
) -> Transaction:
    """
    Edit a transaction's commercial terms, keeping the previous values.

    Only fields whose value actually changes count; an edit that changes
    nothing records no history. The settlement currency cannot change
    once pending or completed payments exist, since their rates convert
    into it.
    """
    changes = _normalize_changes(changes)
    locks = locks or get_transaction_locks()

    async with locks.hold(transaction_id):
        txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
        effective = {
            name: value for name, value in changes.items()
            if getattr(txn, name) != value
        }
        if not effective:
            return txn

        if "receive_currency" in effective and any(
            p.status in _RATED_STATUSES for p in txn.payments
        ):
            raise PolicyViolation(
                "Cannot change the receive currency of a transaction with "
                "pending or completed payments",
                remaining_balance=txn.remaining_balance,
                currency=txn.receive_currency,
            )

        entry = record_edit(txn, edited_by=edited_by, reason=reason)
        txn.edits.append(entry)

        for name, value in effective.items():
            setattr(txn, name, value)
        txn.is_edited = True
        txn.last_edited_at = entry.edited_at

        apply_settlement(txn)
        await commit_or_raise(db, "transaction edit")

    logger.info(
        "Transaction %s edited (#%d): %s",
        txn.reference, entry.sequence, ", ".join(sorted(effective)),
    )
    return txn
