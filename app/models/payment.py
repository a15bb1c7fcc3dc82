"""
Payment model — one settlement event recorded against a transaction.

A payment carries its own exchange rate into the transaction's
settlement currency, so historical settlement can be recomputed even
after market rates move. Once COMPLETED a payment is never modified;
corrections are made with a reversal payment.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
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


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    CHEQUE = "CHEQUE"
    ONLINE = "ONLINE"
    OTHER = "OTHER"


class PaymentRecordStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[PaymentRecordStatus, set[PaymentRecordStatus]] = {
    PaymentRecordStatus.PENDING: {
        PaymentRecordStatus.COMPLETED,
        PaymentRecordStatus.FAILED,
    },
    PaymentRecordStatus.COMPLETED: set(),
    PaymentRecordStatus.FAILED: set(),
}


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("exchange_rate > 0", name="ck_payments_rate_positive"),
        Index("ix_payments_status_paid_at", "status", "paid_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("1"))

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, name="paymentmethod"),
        default=PaymentMethod.CASH,
    )
    details: Mapped[dict | None] = mapped_column(JSON)
    notes: Mapped[str | None] = mapped_column(Text)
    receipt_number: Mapped[str | None] = mapped_column(String(100))

    status: Mapped[PaymentRecordStatus] = mapped_column(
        SAEnum(PaymentRecordStatus, name="paymentrecordstatus"),
        default=PaymentRecordStatus.COMPLETED,
    )

    # Set on a reversal payment; points at the payment it cancels out
    reverses_payment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payments.id"), nullable=True, unique=True,
    )

    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    transaction = relationship("Transaction", back_populates="payments")

    # ------------------------------------------------------------------
    # Settlement helpers
    # ------------------------------------------------------------------

    @property
    def settlement_amount(self) -> Decimal:
        """Amount expressed in the transaction's settlement currency."""
        return Decimal(self.amount) * Decimal(self.exchange_rate)

    @property
    def is_reversal(self) -> bool:
        return self.reverses_payment_id is not None

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(
        from_status: PaymentRecordStatus, to_status: PaymentRecordStatus,
    ) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def transition_to(self, new_status: PaymentRecordStatus) -> None:
        """
        Move to *new_status*, stamping the matching timestamp.

        Raises ValueError for a disallowed move (COMPLETED and FAILED
        are terminal).
        """
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid payment transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

        now = datetime.now(timezone.utc)
        if new_status == PaymentRecordStatus.COMPLETED:
            self.completed_at = now
        elif new_status == PaymentRecordStatus.FAILED:
            self.failed_at = now

    def __repr__(self) -> str:
        return (
            f"<Payment {self.amount} {self.currency} @ {self.exchange_rate} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


@event.listens_for(Payment, "init")
def _set_payment_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "exchange_rate" not in kwargs:
        target.exchange_rate = Decimal("1")
    if "payment_method" not in kwargs:
        target.payment_method = PaymentMethod.CASH
    if "status" not in kwargs:
        target.status = PaymentRecordStatus.COMPLETED
    if "paid_at" not in kwargs:
        target.paid_at = datetime.now(timezone.utc)
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
    status = kwargs.get("status", PaymentRecordStatus.COMPLETED)
    if status == PaymentRecordStatus.COMPLETED and "completed_at" not in kwargs:
        target.completed_at = datetime.now(timezone.utc)
