"""
Pydantic schemas for recording and viewing payments.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class PaymentCreateRequest(BaseModel):
    """A payment event against a transaction."""
    amount: Decimal = Field(..., gt=0, examples=[500])
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$", examples=["CAD"])
    exchange_rate: Decimal = Field(
        Decimal("1"), gt=0,
        description="Rate from the payment currency to the transaction's receive currency",
    )
    payment_method: str = Field(
        "CASH", pattern=r"^(CASH|BANK_TRANSFER|CARD|CHEQUE|ONLINE|OTHER)$",
    )
    details: dict | None = Field(None, examples=[{"reference_id": "TRX-99812"}])
    notes: str | None = None
    receipt_number: str | None = Field(None, max_length=100)
    status: str = Field("COMPLETED", pattern=r"^(COMPLETED|PENDING)$")
    paid_at: datetime | None = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class PaymentActionRequest(BaseModel):
    """Optional reason attached to a fail / reverse action."""
    reason: str | None = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: UUID
    transaction_id: UUID
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    settlement_amount: Decimal
    payment_method: str
    details: dict | None
    notes: str | None
    receipt_number: str | None
    status: str
    reverses_payment_id: UUID | None
    paid_at: datetime
    completed_at: datetime | None
    failed_at: datetime | None


class SettlementResponse(BaseModel):
    """Transaction settlement state returned after a payment operation."""
    transaction_id: UUID
    reference: str
    currency: str
    receive_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    payment_status: str
    payment: PaymentResponse | None = None
    payments: list[PaymentResponse] = []
