"""
Pydantic schemas for transaction creation, editing, and views.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.payment import PaymentResponse

_CURRENCY = r"^[A-Za-z]{3}$"


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


class TransactionCreateRequest(BaseModel):
    """Schema for recording a new exchange or remittance agreement."""
    client_id: str | None = Field(None, max_length=64)
    transaction_type: str = Field(
        "CASH_EXCHANGE",
        pattern=r"^(CASH_EXCHANGE|BANK_TRANSFER|MONEY_PICKUP|WALK_IN_CUSTOMER)$",
    )
    send_currency: str = Field(..., pattern=_CURRENCY, examples=["CAD"])
    send_amount: Decimal = Field(..., gt=0, examples=[1000])
    receive_currency: str = Field(..., pattern=_CURRENCY, examples=["IRR"])
    receive_amount: Decimal = Field(..., gt=0, examples=[45000000])
    rate_applied: Decimal = Field(..., gt=0, examples=[45000])
    fee_charged: Decimal = Field(Decimal("0"), ge=0)
    payment_method: str | None = Field(None, max_length=50)
    beneficiary_name: str | None = Field(None, max_length=200)
    beneficiary_details: str | None = None
    user_notes: str | None = None
    allow_partial_payment: bool = False


class TransactionUpdateRequest(BaseModel):
    """Editable commercial terms. Omitted fields keep their current value."""
    send_currency: str | None = Field(None, pattern=_CURRENCY)
    send_amount: Decimal | None = Field(None, gt=0)
    receive_currency: str | None = Field(None, pattern=_CURRENCY)
    receive_amount: Decimal | None = Field(None, gt=0)
    rate_applied: Decimal | None = Field(None, gt=0)
    fee_charged: Decimal | None = Field(None, ge=0)
    payment_method: str | None = Field(None, max_length=50)
    beneficiary_name: str | None = Field(None, max_length=200)
    beneficiary_details: str | None = None
    user_notes: str | None = None
    allow_partial_payment: bool | None = None
    reason: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TransactionEditResponse(BaseModel):
    """Values a transaction had before one edit."""
    sequence: int
    edited_at: datetime
    edited_by: str | None
    reason: str | None
    send_currency: str
    send_amount: Decimal
    receive_currency: str
    receive_amount: Decimal
    rate_applied: Decimal
    fee_charged: Decimal
    payment_method: str | None
    beneficiary_name: str | None
    beneficiary_details: str | None
    user_notes: str | None
    allow_partial_payment: bool

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    """Transaction view with settlement summary and payments."""
    id: UUID
    reference: str
    client_id: str | None
    transaction_type: str
    send_currency: str
    send_amount: Decimal
    receive_currency: str
    receive_amount: Decimal
    rate_applied: Decimal
    fee_charged: Decimal
    payment_method: str | None
    beneficiary_name: str | None
    beneficiary_details: str | None
    user_notes: str | None
    allow_partial_payment: bool
    payment_status: str
    total_paid: Decimal
    remaining_balance: Decimal
    decimal_places: int
    is_edited: bool
    last_edited_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    payments: list[PaymentResponse] = []
    edit_history: list[TransactionEditResponse] | None = None


class TransactionListResponse(BaseModel):
    """Paginated transaction list."""
    items: list[TransactionResponse]
    total: int
    page: int
    per_page: int
