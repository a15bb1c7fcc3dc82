"""
Payment service — recording, confirming, failing and reversing payments.

Every write follows the same read-modify-write under the transaction's
serialization point:

  1. Hold the per-transaction lock (``app.services.locks``)
  2. Load the transaction ``FOR UPDATE`` with its full payment history
  3. Validate, and check the settlement policy against the would-be balance
  4. Apply the change and recompute settlement from scratch
  5. Commit (or roll back and raise PersistenceError)

COMPLETED payments are never modified. A correction is a reversal: a
new COMPLETED payment with the negated amount, same currency and rate.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.currency import normalize_code
from app.core.exceptions import NotFoundError, PolicyViolation, ValidationError
from app.models.payment import Payment, PaymentMethod, PaymentRecordStatus
from app.models.transaction import Transaction
from app.services.locks import get_transaction_locks
from app.services.payment_methods import validate_payment_details
from app.services.settlement import check_payment_policy, preview_payment
from app.services.transaction_service import (
    apply_settlement,
    commit_or_raise,
    load_transaction,
)

logger = logging.getLogger(__name__)


class PaymentService:
    """Settlement writes against a single transaction's payment history."""

    def __init__(self, locks=None):
        self._locks = locks

    @property
    def locks(self):
        return self._locks or get_transaction_locks()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _transaction_id_of(self, db: AsyncSession, tenant_id: int, payment_id: UUID) -> UUID:
        """
        Transaction a payment belongs to.

        Only the id is read here; the payment itself is loaded once the
        transaction's lock is held.
        """
        result = await db.execute(
            select(Payment.transaction_id).where(
                Payment.id == payment_id, Payment.tenant_id == tenant_id,
            )
        )
        transaction_id = result.scalar_one_or_none()
        if transaction_id is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return transaction_id

    @staticmethod
    def _find_in_history(txn: Transaction, payment_id: UUID) -> Payment:
        for payment in txn.payments:
            if payment.id == payment_id:
                return payment
        raise NotFoundError(f"Payment {payment_id} not found")

    async def list_payments(
        self, db: AsyncSession, tenant_id: int, transaction_id: UUID,
    ) -> list[Payment]:
        """All payments of a transaction, most recent first."""
        txn = await load_transaction(db, tenant_id, transaction_id)
        return sorted(txn.payments, key=lambda p: p.paid_at, reverse=True)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_input(data: dict) -> dict:
        """Normalize a payment request into Payment column values; ValidationError if malformed."""
        amount = data.get("amount")
        if amount is None:
            raise ValidationError("amount is required")
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("amount must be greater than zero")

        currency = normalize_code(data.get("currency"))
        if not currency:
            raise ValidationError("currency is required")

        exchange_rate = data.get("exchange_rate")
        exchange_rate = Decimal("1") if exchange_rate is None else Decimal(exchange_rate)
        if exchange_rate <= 0:
            raise ValidationError("exchange_rate must be greater than zero")

        try:
            method = PaymentMethod(data.get("payment_method") or PaymentMethod.CASH)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method: {data.get('payment_method')}") from exc

        try:
            status = PaymentRecordStatus(data.get("status") or PaymentRecordStatus.COMPLETED)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment status: {data.get('status')}") from exc
        if status == PaymentRecordStatus.FAILED:
            raise ValidationError("A payment cannot be recorded as FAILED")

        paid_at = data.get("paid_at") or datetime.now(timezone.utc)
        if paid_at.tzinfo is None:
            paid_at = paid_at.replace(tzinfo=timezone.utc)

        return {
            "amount": amount,
            "currency": currency,
            "exchange_rate": exchange_rate,
            "payment_method": method,
            "details": validate_payment_details(method, data.get("details")),
            "notes": data.get("notes"),
            "receipt_number": data.get("receipt_number"),
            "status": status,
            "paid_at": paid_at,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def add_payment(txn: Transaction, fields: dict) -> Payment:
        """
        Policy-check a validated payment against *txn* and append it.

        The caller holds the transaction's lock and row lock and commits.
        No payment is added when the policy rejects it.
        """
        current = apply_settlement(txn)
        would_be = preview_payment(current, fields["amount"], fields["exchange_rate"])

        try:
            check_payment_policy(txn.allow_partial_payment, current, would_be)
        except PolicyViolation as exc:
            logger.warning(
                "Payment of %s %s rejected for %s: %s (would-be balance %s %s)",
                fields["amount"], fields["currency"], txn.reference,
                exc.message, exc.remaining_balance, exc.currency,
            )
            raise

        payment = Payment(tenant_id=txn.tenant_id, transaction_id=txn.id, **fields)
        txn.payments.append(payment)
        apply_settlement(txn)
        return payment

    async def record_payment(
        self,
        db: AsyncSession,
        tenant_id: int,
        transaction_id: UUID,
        data: dict,
    ) -> tuple[Transaction, Payment]:
        """
        Record a payment against a transaction.

        COMPLETED payments settle immediately; PENDING ones are stored
        but do not count toward the balance until confirmed. Both are
        policy-checked as though they were completing now.
        """
        fields = self.validate_input(data)

        async with self.locks.hold(transaction_id):
            txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
            payment = self.add_payment(txn, fields)
            await commit_or_raise(db, "payment recording")

        logger.info(
            "Payment %s %s (%s, rate %s, %s) recorded on %s; remaining %s %s",
            payment.amount, payment.currency, payment.payment_method.value,
            payment.exchange_rate, payment.status.value, txn.reference,
            txn.remaining_balance, txn.receive_currency,
        )
        return txn, payment

    async def confirm_payment(
        self, db: AsyncSession, tenant_id: int, payment_id: UUID,
    ) -> tuple[Transaction, Payment]:
        """Move a PENDING payment to COMPLETED and settle it."""
        transaction_id = await self._transaction_id_of(db, tenant_id, payment_id)

        async with self.locks.hold(transaction_id):
            txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
            payment = self._find_in_history(txn, payment_id)
            if payment.status != PaymentRecordStatus.PENDING:
                raise PolicyViolation(
                    f"Only PENDING payments can be confirmed (payment is {payment.status.value})"
                )

            # Still PENDING here, so not part of the current total
            current = apply_settlement(txn)
            would_be = preview_payment(current, payment.amount, payment.exchange_rate)
            check_payment_policy(txn.allow_partial_payment, current, would_be)

            payment.transition_to(PaymentRecordStatus.COMPLETED)
            apply_settlement(txn)
            await commit_or_raise(db, "payment confirmation")

        logger.info("Payment %s confirmed on %s", payment.id, txn.reference)
        return txn, payment

    async def fail_payment(
        self, db: AsyncSession, tenant_id: int, payment_id: UUID, reason: str | None = None,
    ) -> tuple[Transaction, Payment]:
        """Mark a PENDING payment FAILED. Settlement totals do not change."""
        transaction_id = await self._transaction_id_of(db, tenant_id, payment_id)

        async with self.locks.hold(transaction_id):
            txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
            payment = self._find_in_history(txn, payment_id)
            if payment.status != PaymentRecordStatus.PENDING:
                raise PolicyViolation(
                    f"Only PENDING payments can be failed (payment is {payment.status.value})"
                )

            payment.transition_to(PaymentRecordStatus.FAILED)
            if reason:
                payment.notes = f"{payment.notes}\n{reason}" if payment.notes else reason
            apply_settlement(txn)
            await commit_or_raise(db, "payment failure")

        logger.info("Payment %s on %s marked failed: %s", payment.id, txn.reference, reason)
        return txn, payment

    async def reverse_payment(
        self, db: AsyncSession, tenant_id: int, payment_id: UUID, reason: str | None = None,
    ) -> tuple[Transaction, Payment]:
        """
        Cancel out a COMPLETED payment by adding its negation.

        Reversals are not subject to the partial-payment policy and can
        reopen a settled transaction. Each payment can be reversed once;
        reversals themselves cannot be reversed.
        """
        transaction_id = await self._transaction_id_of(db, tenant_id, payment_id)

        async with self.locks.hold(transaction_id):
            txn = await load_transaction(db, tenant_id, transaction_id, for_update=True)
            original = self._find_in_history(txn, payment_id)

            if original.status != PaymentRecordStatus.COMPLETED:
                raise PolicyViolation(
                    f"Only COMPLETED payments can be reversed (payment is {original.status.value})"
                )
            if original.is_reversal:
                raise PolicyViolation("A reversal cannot itself be reversed")
            if any(p.reverses_payment_id == original.id for p in txn.payments):
                raise PolicyViolation(f"Payment {original.id} has already been reversed")

            reversal = Payment(
                tenant_id=tenant_id,
                transaction_id=txn.id,
                amount=-original.amount,
                currency=original.currency,
                exchange_rate=original.exchange_rate,
                payment_method=original.payment_method,
                details=original.details,
                notes=reason or f"Reversal of payment {original.id}",
                receipt_number=original.receipt_number,
                status=PaymentRecordStatus.COMPLETED,
                reverses_payment_id=original.id,
            )
            txn.payments.append(reversal)
            apply_settlement(txn)
            await commit_or_raise(db, "payment reversal")

        logger.info(
            "Payment %s on %s reversed (%s %s); remaining %s %s",
            original.id, txn.reference, reversal.amount, reversal.currency,
            txn.remaining_balance, txn.receive_currency,
        )
        return txn, reversal


payment_service = PaymentService()
