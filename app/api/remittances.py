"""
Remittance endpoints — book remittances, net them, review the settlements.

Settlement flow:
  1. Lock both remittances (id order) and their rows
  2. Check directions, currencies and that both are still open
  3. Net the amount, store the settlement, move both running totals
  4. Return the settlement with both remittances as they now stand
"""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_editor, get_tenant_id
from app.database import get_db
from app.models.remittance import RemittanceDirection, RemittanceStatus
from app.schemas.remittance import (
    NettingPreviewRequest,
    NettingPreviewResponse,
    ProfitSummaryResponse,
    RemittanceCancelRequest,
    RemittanceCreateRequest,
    RemittanceListResponse,
    RemittanceResponse,
    RemittanceSettlementResponse,
    SettlementRequest,
    SettlementResultResponse,
)
from app.services import remittance_service
from app.services.remittance_netting import RemittanceSide, net_remittances

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /api/v1/remittances/ — book a remittance
# ---------------------------------------------------------------------------


@router.post("/", response_model=RemittanceResponse, status_code=status.HTTP_201_CREATED)
async def create_remittance(
    payload: RemittanceCreateRequest,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    remittance = await remittance_service.create_remittance(db, tenant_id, payload.model_dump())
    return RemittanceResponse.model_validate(remittance)


@router.get("/", response_model=RemittanceListResponse)
async def list_remittances(
    direction: RemittanceDirection | None = Query(None),
    remittance_status: RemittanceStatus | None = Query(None, alias="status"),
    unsettled: bool = Query(False, description="Only PENDING or PARTIAL remittances"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    items, total = await remittance_service.list_remittances(
        db, tenant_id,
        direction=direction, status=remittance_status, unsettled_only=unsettled,
        page=page, per_page=per_page,
    )
    return RemittanceListResponse(
        items=[RemittanceResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        per_page=per_page,
    )


# ---------------------------------------------------------------------------
# Settlements
# ---------------------------------------------------------------------------


@router.post(
    "/settlements",
    response_model=SettlementResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def settle_remittances(
    payload: SettlementRequest,
    tenant_id: int = Depends(get_tenant_id),
    editor: str | None = Depends(get_editor),
    db: AsyncSession = Depends(get_db),
):
    """Net part of an outgoing remittance against an incoming one."""
    settlement, outgoing, incoming = await remittance_service.settle_remittances(
        db, tenant_id, payload.outgoing_id, payload.incoming_id, payload.amount,
        notes=payload.notes, settled_by=editor,
    )
    return SettlementResultResponse(
        settlement=RemittanceSettlementResponse.model_validate(settlement),
        outgoing=RemittanceResponse.model_validate(outgoing),
        incoming=RemittanceResponse.model_validate(incoming),
    )


@router.get("/profit-summary", response_model=ProfitSummaryResponse)
async def profit_summary(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    return ProfitSummaryResponse(
        **await remittance_service.profit_summary(db, tenant_id, start, end)
    )


@router.post("/netting-preview", response_model=NettingPreviewResponse)
async def netting_preview(
    payload: NettingPreviewRequest,
    tenant_id: int = Depends(get_tenant_id),
):
    """Preview netting an outgoing remittance against an incoming one."""
    result = net_remittances(
        RemittanceSide(**payload.outgoing.model_dump()),
        RemittanceSide(**payload.incoming.model_dump()),
        payload.amount,
        currency=payload.currency,
        base_currency=payload.base_currency,
    )
    return NettingPreviewResponse(
        amount=result.amount,
        currency=result.currency,
        base_currency=result.base_currency,
        cost=result.cost,
        revenue=result.revenue,
        profit=result.profit,
        outgoing_remaining=result.outgoing_remaining,
        outgoing_status=result.outgoing_status.value,
        incoming_remaining=result.incoming_remaining,
        incoming_status=result.incoming_status.value,
    )


# ---------------------------------------------------------------------------
# /api/v1/remittances/{remittance_id}
# ---------------------------------------------------------------------------


@router.get("/{remittance_id}", response_model=RemittanceResponse)
async def get_remittance(
    remittance_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    remittance = await remittance_service.load_remittance(db, tenant_id, remittance_id)
    return RemittanceResponse.model_validate(remittance)


@router.get("/{remittance_id}/settlements", response_model=list[RemittanceSettlementResponse])
async def remittance_settlements(
    remittance_id: UUID,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Settlements this remittance took part in, newest first."""
    settlements = await remittance_service.settlement_history(db, tenant_id, remittance_id)
    return [RemittanceSettlementResponse.model_validate(s) for s in settlements]


@router.post("/{remittance_id}/cancel", response_model=RemittanceResponse)
async def cancel_remittance(
    remittance_id: UUID,
    payload: RemittanceCancelRequest | None = None,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a remittance that has not been settled against anything."""
    remittance = await remittance_service.cancel_remittance(
        db, tenant_id, remittance_id, payload.reason if payload else None,
    )
    return RemittanceResponse.model_validate(remittance)
