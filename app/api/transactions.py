"""
Transaction endpoints — create, list, get, edit, complete, and delete.

Edit flow:
  1. Lock the transaction row
  2. Snapshot the current commercial terms into the edit history
  3. Apply the new values and recompute settlement
  4. Return the transaction with its full edit history
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_editor, get_tenant_id
from app.api.payments import build_payment_response
from app.core.currency import decimal_places_for
from app.database import get_db
from app.models.transaction import PaymentStatus, Transaction
from app.schemas.transaction import (
    TransactionCreateRequest,
    TransactionEditResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionUpdateRequest,
)
from app.services import edit_history, transaction_service
from app.services.settlement import SettlementSummary

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_response(
    txn: Transaction,
    include_history: bool = False,
    summary: SettlementSummary | None = None,
) -> TransactionResponse:
    """
    Build a TransactionResponse from an ORM Transaction object.

    Settlement figures come from *summary* when given, otherwise from
    the snapshot stored on the transaction.
    """
    payments = sorted(txn.payments, key=lambda p: p.paid_at, reverse=True)
    history = None
    if include_history:
        history = [TransactionEditResponse.model_validate(e) for e in txn.edits]

    if summary is not None:
        payment_status = summary.payment_status
        total_paid, remaining = summary.total_paid, summary.remaining_balance
    else:
        payment_status = txn.payment_status
        total_paid, remaining = txn.total_paid, txn.remaining_balance

    return TransactionResponse(
        id=txn.id,
        reference=txn.reference,
        client_id=txn.client_id,
        transaction_type=txn.transaction_type.value,
        send_currency=txn.send_currency,
        send_amount=txn.send_amount,
        receive_currency=txn.receive_currency,
        receive_amount=txn.receive_amount,
        rate_applied=txn.rate_applied,
        fee_charged=txn.fee_charged,
        payment_method=txn.payment_method,
        beneficiary_name=txn.beneficiary_name,
        beneficiary_details=txn.beneficiary_details,
        user_notes=txn.user_notes,
        allow_partial_payment=txn.allow_partial_payment,
        payment_status=payment_status.value,
        total_paid=total_paid,
        remaining_balance=remaining,
        decimal_places=decimal_places_for(txn.receive_currency),
        is_edited=txn.is_edited,
        last_edited_at=txn.last_edited_at,
        completed_at=txn.completed_at,
        created_at=txn.created_at,
        payments=[build_payment_response(p) for p in payments],
        edit_history=history,
    )


# ---------------------------------------------------------------------------
# POST / — Create transaction
# ---------------------------------------------------------------------------


@router.post("/", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a transaction. It starts OPEN with the full receive amount outstanding."""
    txn = await transaction_service.create_transaction(db, tenant_id, payload.model_dump())
    return _build_response(txn)


# ---------------------------------------------------------------------------
# GET / — List transactions
# ---------------------------------------------------------------------------


@router.get("/", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    payment_status: PaymentStatus | None = Query(None),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """List the tenant's transactions with pagination and optional status filter."""
    items, total = await transaction_service.list_transactions(
        db, tenant_id, page=page, per_page=per_page, payment_status=payment_status,
    )
    return TransactionListResponse(
        items=[_build_response(t) for t in items],
        total=total,
        page=page,
        per_page=per_page,
    )


# ---------------------------------------------------------------------------
# GET /{id} — Get transaction
# ---------------------------------------------------------------------------


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Get a transaction with its payments; settlement is recomputed on read."""
    txn, summary = await transaction_service.get_transaction(db, tenant_id, transaction_id)
    return _build_response(txn, summary=summary)


# ---------------------------------------------------------------------------
# PUT /{id} — Edit commercial terms
# ---------------------------------------------------------------------------


@router.put("/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdateRequest,
    tenant_id: int = Depends(get_tenant_id),
    editor: str | None = Depends(get_editor),
    db: AsyncSession = Depends(get_db),
):
    """
    Edit a transaction's commercial terms.

    The previous values are kept in the edit history, which is returned
    alongside the updated transaction.
    """
    changes = payload.model_dump(exclude_unset=True, exclude={"reason"})
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No editable fields supplied",
        )

    txn = await edit_history.update_transaction(
        db, tenant_id, transaction_id, changes,
        edited_by=editor, reason=payload.reason,
    )
    return _build_response(txn, include_history=True)


# ---------------------------------------------------------------------------
# GET /{id}/history — Edit history
# ---------------------------------------------------------------------------


@router.get("/{transaction_id}/history", response_model=list[TransactionEditResponse])
async def get_edit_history(
    transaction_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Previous versions of the transaction's commercial terms, oldest first."""
    txn = await transaction_service.load_transaction(db, tenant_id, transaction_id)
    return [TransactionEditResponse.model_validate(e) for e in txn.edits]


# ---------------------------------------------------------------------------
# POST /{id}/complete — Manual completion
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/complete", response_model=TransactionResponse)
async def complete_transaction(
    transaction_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Mark a nearly settled transaction FULLY_PAID, writing off a small remainder."""
    txn = await transaction_service.complete_transaction(db, tenant_id, transaction_id)
    return _build_response(txn)


# ---------------------------------------------------------------------------
# DELETE /{id} — Administrative delete
# ---------------------------------------------------------------------------


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: UUID,
    confirm: bool = Query(False, description="Must be true; deletion is permanent"),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete a transaction together with its payments and history."""
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Deletion is permanent; repeat with ?confirm=true",
        )
    await transaction_service.delete_transaction(db, tenant_id, transaction_id)
