"""
Payment endpoints — record, list, confirm, fail, and reverse payments.

Every write returns the transaction's settlement state recomputed from
its full payment history. Domain errors (not found, policy violations,
persistence failures) propagate to the app-level exception handlers.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_payment_service, get_tenant_id
from app.database import get_db
from app.models.payment import Payment
from app.models.transaction import Transaction
from app.schemas.payment import (
    PaymentActionRequest,
    PaymentCreateRequest,
    PaymentResponse,
    SettlementResponse,
)
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_payment_response(payment: Payment) -> PaymentResponse:
    """Build a PaymentResponse from an ORM Payment object."""
    return PaymentResponse(
        id=payment.id,
        transaction_id=payment.transaction_id,
        amount=payment.amount,
        currency=payment.currency,
        exchange_rate=payment.exchange_rate,
        settlement_amount=payment.settlement_amount,
        payment_method=payment.payment_method.value,
        details=payment.details,
        notes=payment.notes,
        receipt_number=payment.receipt_number,
        status=payment.status.value,
        reverses_payment_id=payment.reverses_payment_id,
        paid_at=payment.paid_at,
        completed_at=payment.completed_at,
        failed_at=payment.failed_at,
    )


def build_settlement_response(
    txn: Transaction, payment: Payment | None = None,
) -> SettlementResponse:
    """Settlement view of *txn*, optionally highlighting the payment just written."""
    payments = sorted(txn.payments, key=lambda p: p.paid_at, reverse=True)
    return SettlementResponse(
        transaction_id=txn.id,
        reference=txn.reference,
        currency=txn.receive_currency,
        receive_amount=txn.receive_amount,
        total_paid=txn.total_paid,
        remaining_balance=txn.remaining_balance,
        payment_status=txn.payment_status.value,
        payment=build_payment_response(payment) if payment is not None else None,
        payments=[build_payment_response(p) for p in payments],
    )


# ---------------------------------------------------------------------------
# POST /transactions/{id}/payments — Record payment
# ---------------------------------------------------------------------------


@router.post(
    "/transactions/{transaction_id}/payments",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    transaction_id: UUID,
    payload: PaymentCreateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Record a payment against a transaction.

    1. Validate amount, currency, rate, and method-specific details
    2. Lock the transaction and recompute its current balance
    3. Reject if settled, or if partial payments are not allowed and
       this payment would not settle the balance (409)
    4. Store the payment and return the recomputed settlement
    """
    txn, payment = await service.record_payment(
        db, tenant_id, transaction_id, payload.model_dump(),
    )
    return build_settlement_response(txn, payment)


# ---------------------------------------------------------------------------
# GET /transactions/{id}/payments — List payments
# ---------------------------------------------------------------------------


@router.get("/transactions/{transaction_id}/payments", response_model=list[PaymentResponse])
async def list_payments(
    transaction_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """List a transaction's payments, most recent first."""
    payments = await service.list_payments(db, tenant_id, transaction_id)
    return [build_payment_response(p) for p in payments]


# ---------------------------------------------------------------------------
# POST /payments/{id}/confirm | fail | reverse
# ---------------------------------------------------------------------------


@router.post("/payments/{payment_id}/confirm", response_model=SettlementResponse)
async def confirm_payment(
    payment_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Confirm a PENDING payment so it counts toward the balance."""
    txn, payment = await service.confirm_payment(db, tenant_id, payment_id)
    return build_settlement_response(txn, payment)


@router.post("/payments/{payment_id}/fail", response_model=SettlementResponse)
async def fail_payment(
    payment_id: UUID,
    payload: PaymentActionRequest | None = None,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Mark a PENDING payment as FAILED."""
    txn, payment = await service.fail_payment(
        db, tenant_id, payment_id, payload.reason if payload else None,
    )
    return build_settlement_response(txn, payment)


@router.post(
    "/payments/{payment_id}/reverse",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reverse_payment(
    payment_id: UUID,
    payload: PaymentActionRequest | None = None,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Add a reversal cancelling out a COMPLETED payment."""
    txn, reversal = await service.reverse_payment(
        db, tenant_id, payment_id, payload.reason if payload else None,
    )
    return build_settlement_response(txn, reversal)
