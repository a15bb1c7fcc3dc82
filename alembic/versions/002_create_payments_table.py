"""create payments table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    paymentmethod = sa.Enum(
        "CASH", "BANK_TRANSFER", "CARD", "CHEQUE", "ONLINE", "OTHER",
        name="paymentmethod",
    )
    paymentmethod.create(op.get_bind(), checkfirst=True)

    paymentrecordstatus = sa.Enum(
        "PENDING", "COMPLETED", "FAILED",
        name="paymentrecordstatus",
    )
    paymentrecordstatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "payments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.Integer, index=True, nullable=False),
        sa.Column(
            "transaction_id", UUID(as_uuid=True),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            index=True, nullable=False,
        ),
        sa.Column("amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(20, 8), server_default="1", nullable=False),
        sa.Column("payment_method", paymentmethod, server_default="CASH", nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("receipt_number", sa.String(100), nullable=True),
        sa.Column(
            "status", paymentrecordstatus,
            server_default="COMPLETED", nullable=False,
        ),
        sa.Column(
            "reverses_payment_id", UUID(as_uuid=True),
            sa.ForeignKey("payments.id"), unique=True, nullable=True,
        ),
        sa.Column(
            "paid_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("exchange_rate > 0", name="ck_payments_rate_positive"),
    )
    op.create_index("ix_payments_status_paid_at", "payments", ["status", "paid_at"])


def downgrade() -> None:
    op.drop_index("ix_payments_status_paid_at", table_name="payments")
    op.drop_table("payments")
    sa.Enum(name="paymentrecordstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="paymentmethod").drop(op.get_bind(), checkfirst=True)
