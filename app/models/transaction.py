"""
Transaction model — a currency-exchange or remittance agreement.

- SRF-XXXXXXXX reference format
- Settlement is denominated in ``receive_currency``
- ``total_paid`` / ``remaining_balance`` / ``payment_status`` are a
  snapshot of the last settlement recomputation, kept for listing and
  filtering; the authoritative values always come from the payments
- Commercial-term edits are recorded in ``transaction_edits``
"""

import enum
import random
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TransactionType(str, enum.Enum):
    CASH_EXCHANGE = "CASH_EXCHANGE"
    BANK_TRANSFER = "BANK_TRANSFER"
    MONEY_PICKUP = "MONEY_PICKUP"
    WALK_IN_CUSTOMER = "WALK_IN_CUSTOMER"


class PaymentStatus(str, enum.Enum):
    """Settlement status of a transaction as a whole."""
    OPEN = "OPEN"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_PAID = "FULLY_PAID"
    OVERPAID = "OVERPAID"


SETTLED_STATUSES = frozenset({PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID})

# Fields whose values are snapshotted into the edit history.
COMMERCIAL_FIELDS: tuple[str, ...] = (
    "send_currency",
    "send_amount",
    "receive_currency",
    "receive_amount",
    "rate_applied",
    "fee_charged",
    "payment_method",
    "beneficiary_name",
    "beneficiary_details",
    "user_notes",
    "allow_partial_payment",
)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("send_amount > 0", name="ck_transactions_send_positive"),
        CheckConstraint("receive_amount > 0", name="ck_transactions_receive_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    reference: Mapped[str] = mapped_column(
        String(16), unique=True, index=True, nullable=False,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    client_id: Mapped[str | None] = mapped_column(String(64), index=True)

    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, name="transactiontype"),
        default=TransactionType.CASH_EXCHANGE,
    )

    # Commercial terms
    send_currency: Mapped[str] = mapped_column(String(10), nullable=False)
    send_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    receive_currency: Mapped[str] = mapped_column(String(10), nullable=False)
    receive_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    rate_applied: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    fee_charged: Mapped[Decimal] = mapped_column(Numeric(24, 6), default=Decimal("0"))
    payment_method: Mapped[str | None] = mapped_column(String(50))
    beneficiary_name: Mapped[str | None] = mapped_column(String(200))
    beneficiary_details: Mapped[str | None] = mapped_column(Text)
    user_notes: Mapped[str | None] = mapped_column(Text)

    # Settlement snapshot
    allow_partial_payment: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, name="paymentstatus"),
        default=PaymentStatus.OPEN,
        index=True,
    )
    total_paid: Mapped[Decimal] = mapped_column(Numeric(24, 6), default=Decimal("0"))
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(24, 6), default=Decimal("0"))
    manually_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Audit
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    last_edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    payments = relationship(
        "Payment",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="Payment.paid_at",
    )
    edits = relationship(
        "TransactionEdit",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionEdit.sequence",
    )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def generate_reference() -> str:
        """Generate a SRF-XXXXXXXX reference (8 uppercase alphanumeric chars)."""
        chars = string.ascii_uppercase + string.digits
        suffix = "".join(random.choices(chars, k=8))
        return f"SRF-{suffix}"

    @property
    def settlement_currency(self) -> str:
        return self.receive_currency

    def commercial_terms(self) -> dict:
        """Current values of every field covered by the edit history."""
        return {name: getattr(self, name) for name in COMMERCIAL_FIELDS}

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.reference} "
            f"{self.receive_amount} {self.receive_currency} "
            f"payment_status={self.payment_status.value if self.payment_status else 'N/A'}>"
        )


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(Transaction, "init")
def _set_transaction_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "reference" not in kwargs:
        target.reference = Transaction.generate_reference()
    if "transaction_type" not in kwargs:
        target.transaction_type = TransactionType.CASH_EXCHANGE
    if "fee_charged" not in kwargs:
        target.fee_charged = Decimal("0")
    if "allow_partial_payment" not in kwargs:
        target.allow_partial_payment = False
    if "payment_status" not in kwargs:
        target.payment_status = PaymentStatus.OPEN
    if "total_paid" not in kwargs:
        target.total_paid = Decimal("0")
    if "remaining_balance" not in kwargs:
        target.remaining_balance = kwargs.get("receive_amount", Decimal("0"))
    if "manually_completed" not in kwargs:
        target.manually_completed = False
    if "is_edited" not in kwargs:
        target.is_edited = False
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
    if "updated_at" not in kwargs:
        target.updated_at = datetime.now(timezone.utc)
