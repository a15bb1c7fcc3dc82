"""
Remittance models — hawala legs and the settlements that net them.

- An OUTGOING remittance (OUT-XXXXXXXX) is money sent abroad on the
  exchange's behalf: a debt, booked at the rate it was bought at
- An INCOMING remittance (IN-XXXXXXXX) is money received from abroad
  that can be allocated against those debts, booked at its sell rate
- Each netting of one against the other is a ``RemittanceSettlement``
  row; the remittances keep running settled/remaining totals and the
  outgoing side accumulates the profit
"""

import enum
import random
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RemittanceDirection(str, enum.Enum):
    OUTGOING = "OUTGOING"
    INCOMING = "INCOMING"


class RemittanceStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_REMITTANCE_STATUSES = frozenset({RemittanceStatus.PENDING, RemittanceStatus.PARTIAL})

REFERENCE_PREFIXES = {
    RemittanceDirection.OUTGOING: "OUT",
    RemittanceDirection.INCOMING: "IN",
}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Remittance(Base):
    __tablename__ = "remittances"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_remittances_amount_positive"),
        CheckConstraint("rate > 0", name="ck_remittances_rate_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    reference: Mapped[str] = mapped_column(
        String(16), unique=True, index=True, nullable=False,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    direction: Mapped[RemittanceDirection] = mapped_column(
        SAEnum(RemittanceDirection, name="remittancedirection"), nullable=False,
    )

    sender_name: Mapped[str] = mapped_column(String(200), nullable=False)
    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Amount in the remittance currency; rate is remittance-currency
    # units per one unit of the base currency
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="IRR")
    base_currency: Mapped[str] = mapped_column(String(10), nullable=False, default="CAD")
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)

    # Running settlement totals
    settled_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), default=Decimal("0"))
    remaining: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    status: Mapped[RemittanceStatus] = mapped_column(
        SAEnum(RemittanceStatus, name="remittancestatus"),
        default=RemittanceStatus.PENDING,
        index=True,
    )
    total_profit: Mapped[Decimal] = mapped_column(Numeric(24, 6), default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @staticmethod
    def generate_reference(direction: RemittanceDirection) -> str:
        """Generate an OUT-/IN- reference with 8 uppercase alphanumeric chars."""
        chars = string.ascii_uppercase + string.digits
        suffix = "".join(random.choices(chars, k=8))
        return f"{REFERENCE_PREFIXES[direction]}-{suffix}"

    @property
    def base_equivalent(self) -> Decimal:
        """Full amount expressed in the base currency at the booked rate."""
        return Decimal(self.amount) / Decimal(self.rate)

    def __repr__(self) -> str:
        return (
            f"<Remittance {self.reference} {self.amount} {self.currency} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


class RemittanceSettlement(Base):
    """One netting of an outgoing remittance against an incoming one."""
    __tablename__ = "remittance_settlements"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_remittance_settlements_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    outgoing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("remittances.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    incoming_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("remittances.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(10), nullable=False)
    # Rates as they stood when the settlement was made
    outgoing_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    incoming_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    revenue: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    profit: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text)
    settled_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<RemittanceSettlement {self.amount} {self.currency} profit={self.profit}>"


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(Remittance, "init")
def _set_remittance_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "reference" not in kwargs and "direction" in kwargs:
        target.reference = Remittance.generate_reference(RemittanceDirection(kwargs["direction"]))
    if "currency" not in kwargs:
        target.currency = "IRR"
    if "base_currency" not in kwargs:
        target.base_currency = "CAD"
    if "settled_amount" not in kwargs:
        target.settled_amount = Decimal("0")
    if "remaining" not in kwargs:
        target.remaining = kwargs.get("amount", Decimal("0"))
    if "status" not in kwargs:
        target.status = RemittanceStatus.PENDING
    if "total_profit" not in kwargs:
        target.total_profit = Decimal("0")
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
    if "updated_at" not in kwargs:
        target.updated_at = datetime.now(timezone.utc)


@event.listens_for(RemittanceSettlement, "init")
def _set_settlement_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
