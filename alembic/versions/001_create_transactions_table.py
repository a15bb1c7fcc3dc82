"""create transactions table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    transactiontype = sa.Enum(
        "CASH_EXCHANGE", "BANK_TRANSFER", "MONEY_PICKUP", "WALK_IN_CUSTOMER",
        name="transactiontype",
    )
    transactiontype.create(op.get_bind(), checkfirst=True)

    paymentstatus = sa.Enum(
        "OPEN", "PARTIALLY_PAID", "FULLY_PAID", "OVERPAID",
        name="paymentstatus",
    )
    paymentstatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "transactions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("reference", sa.String(16), unique=True, index=True, nullable=False),
        sa.Column("tenant_id", sa.Integer, index=True, nullable=False),
        sa.Column("client_id", sa.String(64), index=True, nullable=True),
        sa.Column(
            "transaction_type", transactiontype,
            server_default="CASH_EXCHANGE", nullable=False,
        ),
        sa.Column("send_currency", sa.String(10), nullable=False),
        sa.Column("send_amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("receive_currency", sa.String(10), nullable=False),
        sa.Column("receive_amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("rate_applied", sa.Numeric(20, 8), nullable=False),
        sa.Column("fee_charged", sa.Numeric(24, 6), server_default="0", nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("beneficiary_name", sa.String(200), nullable=True),
        sa.Column("beneficiary_details", sa.Text, nullable=True),
        sa.Column("user_notes", sa.Text, nullable=True),
        sa.Column(
            "allow_partial_payment", sa.Boolean,
            server_default=sa.false(), nullable=False,
        ),
        sa.Column(
            "payment_status", paymentstatus,
            server_default="OPEN", index=True, nullable=False,
        ),
        sa.Column("total_paid", sa.Numeric(24, 6), server_default="0", nullable=False),
        sa.Column("remaining_balance", sa.Numeric(24, 6), server_default="0", nullable=False),
        sa.Column(
            "manually_completed", sa.Boolean,
            server_default=sa.false(), nullable=False,
        ),
        sa.Column("is_edited", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("last_edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("send_amount > 0", name="ck_transactions_send_positive"),
        sa.CheckConstraint("receive_amount > 0", name="ck_transactions_receive_positive"),
    )


def downgrade() -> None:
    op.drop_table("transactions")
    sa.Enum(name="paymentstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
