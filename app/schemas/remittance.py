"""
Pydantic schemas for remittances, their settlements and netting previews.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.remittance import RemittanceDirection, RemittanceStatus


class RemittanceSideRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    remaining: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., gt=0, description="Remittance-currency units per base-currency unit")


class NettingPreviewRequest(BaseModel):
    outgoing: RemittanceSideRequest
    incoming: RemittanceSideRequest
    amount: Decimal = Field(..., gt=0)
    currency: str = Field("IRR", pattern=r"^[A-Z]{3}$")
    base_currency: str = Field("CAD", pattern=r"^[A-Z]{3}$")


class NettingPreviewResponse(BaseModel):
    amount: Decimal
    currency: str
    base_currency: str
    cost: Decimal
    revenue: Decimal
    profit: Decimal
    outgoing_remaining: Decimal
    outgoing_status: str
    incoming_remaining: Decimal
    incoming_status: str


# ---------------------------------------------------------------------------
# Persisted remittances
# ---------------------------------------------------------------------------


class RemittanceCreateRequest(BaseModel):
    """Book an outgoing (debt) or incoming (funds) remittance."""
    direction: RemittanceDirection
    sender_name: str = Field(..., min_length=1, max_length=200)
    recipient_name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, examples=[200000000])
    rate: Decimal = Field(
        ..., gt=0, examples=[80000],
        description="Remittance-currency units per base-currency unit (buy rate for "
                    "outgoing, sell rate for incoming)",
    )
    currency: str = Field("IRR", pattern=r"^[A-Za-z]{3}$")
    base_currency: str = Field("CAD", pattern=r"^[A-Za-z]{3}$")
    notes: str | None = None

    @field_validator("currency", "base_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class RemittanceResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    reference: str
    direction: RemittanceDirection
    sender_name: str
    recipient_name: str
    currency: str
    base_currency: str
    amount: Decimal
    rate: Decimal
    base_equivalent: Decimal
    settled_amount: Decimal
    remaining: Decimal
    status: RemittanceStatus
    total_profit: Decimal
    notes: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class RemittanceListResponse(BaseModel):
    items: list[RemittanceResponse]
    total: int
    page: int
    per_page: int


class RemittanceCancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class SettlementRequest(BaseModel):
    outgoing_id: UUID
    incoming_id: UUID
    amount: Decimal = Field(..., gt=0)
    notes: str | None = None


class RemittanceSettlementResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    outgoing_id: UUID
    incoming_id: UUID
    amount: Decimal
    currency: str
    base_currency: str
    outgoing_rate: Decimal
    incoming_rate: Decimal
    cost: Decimal
    revenue: Decimal
    profit: Decimal
    notes: str | None = None
    settled_by: str | None = None
    created_at: datetime


class SettlementResultResponse(BaseModel):
    settlement: RemittanceSettlementResponse
    outgoing: RemittanceResponse
    incoming: RemittanceResponse


class ProfitSummaryResponse(BaseModel):
    total_profit: Decimal
    total_settlements: int
    average_profit: Decimal
