"""
TransactionEdit model — one row per edit of a transaction's commercial terms.

Each row holds the values the transaction had *before* the edit. Rows
are append-only and ordered by ``sequence`` within a transaction.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class TransactionEdit(Base):
    __tablename__ = "transaction_edits"
    __table_args__ = (
        UniqueConstraint("transaction_id", "sequence", name="uq_transaction_edits_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    edited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    edited_by: Mapped[str | None] = mapped_column(String(100))
    reason: Mapped[str | None] = mapped_column(Text)

    # Pre-edit snapshot
    send_currency: Mapped[str] = mapped_column(String(10), nullable=False)
    send_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    receive_currency: Mapped[str] = mapped_column(String(10), nullable=False)
    receive_amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    rate_applied: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    fee_charged: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50))
    beneficiary_name: Mapped[str | None] = mapped_column(String(200))
    beneficiary_details: Mapped[str | None] = mapped_column(Text)
    user_notes: Mapped[str | None] = mapped_column(Text)
    allow_partial_payment: Mapped[bool] = mapped_column(Boolean, nullable=False)

    transaction = relationship("Transaction", back_populates="edits")

    def __repr__(self) -> str:
        return f"<TransactionEdit #{self.sequence} of {self.transaction_id}>"


@event.listens_for(TransactionEdit, "init")
def _set_edit_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "edited_at" not in kwargs:
        target.edited_at = datetime.now(timezone.utc)
