"""
Pydantic schemas for batch payments across several transactions.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.schemas.payment import PaymentResponse
from app.services.batch_payments import AllocationStrategy


class BatchPaymentRequest(BaseModel):
    """One amount to spread across a client's open transactions."""
    transaction_ids: list[UUID] = Field(..., min_length=1)
    total_amount: Decimal = Field(..., gt=0, examples=[1500])
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$", examples=["CAD"])
    exchange_rate: Decimal = Field(
        Decimal("1"), gt=0,
        description="Rate from the payment currency to the transactions' receive currency",
    )
    payment_method: str = Field(
        "CASH", pattern=r"^(CASH|BANK_TRANSFER|CARD|CHEQUE|ONLINE|OTHER)$",
    )
    details: dict | None = None
    notes: str | None = None
    receipt_number: str | None = Field(None, max_length=100)
    strategy: AllocationStrategy = AllocationStrategy.FIFO

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class BatchAllocationResponse(BaseModel):
    transaction_id: UUID
    reference: str
    client_id: str | None
    settlement_currency: str
    remaining_balance: Decimal
    allocated_amount: Decimal
    settlement_amount: Decimal
    is_full_payment: bool
    payment: PaymentResponse | None = None


class BatchPreviewResponse(BaseModel):
    strategy: str
    currency: str
    exchange_rate: Decimal
    total_amount: Decimal
    total_allocated: Decimal
    unallocated: Decimal
    transactions_paid: int
    allocations: list[BatchAllocationResponse]
    skipped_transaction_ids: list[UUID]


class BatchPaymentResponse(BatchPreviewResponse):
    payments_created: int
    processed_at: datetime


class BatchCandidateResponse(BaseModel):
    """A transaction that can take part in a batch payment."""
    transaction_id: UUID
    reference: str
    client_id: str | None
    receive_currency: str
    receive_amount: Decimal
    remaining_balance: Decimal
    payment_status: str
    created_at: datetime
