"""create transaction_edits table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "transaction_edits",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "transaction_id", UUID(as_uuid=True),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            index=True, nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column(
            "edited_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("edited_by", sa.String(100), nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("send_currency", sa.String(10), nullable=False),
        sa.Column("send_amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("receive_currency", sa.String(10), nullable=False),
        sa.Column("receive_amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("rate_applied", sa.Numeric(20, 8), nullable=False),
        sa.Column("fee_charged", sa.Numeric(24, 6), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("beneficiary_name", sa.String(200), nullable=True),
        sa.Column("beneficiary_details", sa.Text, nullable=True),
        sa.Column("user_notes", sa.Text, nullable=True),
        sa.Column("allow_partial_payment", sa.Boolean, nullable=False),
        sa.UniqueConstraint(
            "transaction_id", "sequence", name="uq_transaction_edits_sequence",
        ),
    )


def downgrade() -> None:
    op.drop_table("transaction_edits")
