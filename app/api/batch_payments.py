"""
Batch payment endpoints — pay several of a client's transactions at once.

  GET  /pending   transactions a batch can go to (optionally one client's)
  POST /preview   allocation the batch would make, nothing written
  POST /          record one payment per allocated transaction, atomically
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_tenant_id
from app.api.payments import build_payment_response
from app.database import get_db
from app.schemas.batch_payment import (
    BatchAllocationResponse,
    BatchCandidateResponse,
    BatchPaymentRequest,
    BatchPaymentResponse,
    BatchPreviewResponse,
)
from app.services import batch_payments
from app.services.batch_payments import BatchPlan
from app.services.transaction_service import current_settlement

logger = logging.getLogger(__name__)

router = APIRouter()


def _build_preview(plan: BatchPlan) -> dict:
    allocations = []
    for a in plan.allocations:
        payment = plan.payments.get(a.transaction.id)
        allocations.append(BatchAllocationResponse(
            transaction_id=a.transaction.id,
            reference=a.transaction.reference,
            client_id=a.transaction.client_id,
            settlement_currency=a.transaction.receive_currency,
            remaining_balance=a.remaining_balance,
            allocated_amount=a.amount,
            settlement_amount=a.settlement_amount,
            is_full_payment=a.is_full_payment,
            payment=build_payment_response(payment) if payment is not None else None,
        ))
    return dict(
        strategy=plan.strategy.value,
        currency=plan.currency,
        exchange_rate=plan.exchange_rate,
        total_amount=plan.total_amount,
        total_allocated=plan.total_allocated,
        unallocated=plan.unallocated,
        transactions_paid=plan.transactions_paid,
        allocations=allocations,
        skipped_transaction_ids=plan.skipped,
    )


@router.get("/pending", response_model=list[BatchCandidateResponse])
async def list_pending(
    client_id: str | None = Query(None, max_length=64),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Open or partially paid transactions that accept partial payments, oldest first."""
    transactions = await batch_payments.list_batch_candidates(db, tenant_id, client_id)
    responses = []
    for txn in transactions:
        summary = current_settlement(txn)
        responses.append(BatchCandidateResponse(
            transaction_id=txn.id,
            reference=txn.reference,
            client_id=txn.client_id,
            receive_currency=txn.receive_currency,
            receive_amount=txn.receive_amount,
            remaining_balance=summary.remaining_balance,
            payment_status=summary.payment_status.value,
            created_at=txn.created_at,
        ))
    return responses


@router.post("/preview", response_model=BatchPreviewResponse)
async def preview_batch(
    payload: BatchPaymentRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Show how the amount would be split without recording anything."""
    plan = await batch_payments.preview_batch_payment(db, tenant_id, payload.model_dump())
    return BatchPreviewResponse(**_build_preview(plan))


@router.post("/", response_model=BatchPaymentResponse, status_code=status.HTTP_201_CREATED)
async def process_batch(
    payload: BatchPaymentRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a batch payment.

    1. Lock every listed transaction, in id order
    2. Re-plan the allocation against the locked balances
    3. Add one COMPLETED payment per allocated transaction
    4. Commit them together; any rejection leaves every transaction unchanged
    """
    plan = await batch_payments.process_batch_payment(db, tenant_id, payload.model_dump())
    return BatchPaymentResponse(
        **_build_preview(plan),
        payments_created=len(plan.payments),
        processed_at=datetime.now(timezone.utc),
    )
