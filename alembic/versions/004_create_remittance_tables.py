"""create remittances and remittance_settlements tables

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "004"
down_revision = "003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    remittancedirection = sa.Enum("OUTGOING", "INCOMING", name="remittancedirection")
    remittancedirection.create(op.get_bind(), checkfirst=True)

    remittancestatus = sa.Enum(
        "PENDING", "PARTIAL", "COMPLETED", "CANCELLED",
        name="remittancestatus",
    )
    remittancestatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "remittances",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("reference", sa.String(16), unique=True, index=True, nullable=False),
        sa.Column("tenant_id", sa.Integer, index=True, nullable=False),
        sa.Column("direction", remittancedirection, nullable=False),
        sa.Column("sender_name", sa.String(200), nullable=False),
        sa.Column("recipient_name", sa.String(200), nullable=False),
        sa.Column("currency", sa.String(10), server_default="IRR", nullable=False),
        sa.Column("base_currency", sa.String(10), server_default="CAD", nullable=False),
        sa.Column("amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("settled_amount", sa.Numeric(24, 6), server_default="0", nullable=False),
        sa.Column("remaining", sa.Numeric(24, 6), nullable=False),
        sa.Column(
            "status", remittancestatus,
            server_default="PENDING", index=True, nullable=False,
        ),
        sa.Column("total_profit", sa.Numeric(24, 6), server_default="0", nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_remittances_amount_positive"),
        sa.CheckConstraint("rate > 0", name="ck_remittances_rate_positive"),
    )

    op.create_table(
        "remittance_settlements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", sa.Integer, index=True, nullable=False),
        sa.Column(
            "outgoing_id", UUID(as_uuid=True),
            sa.ForeignKey("remittances.id", ondelete="CASCADE"),
            index=True, nullable=False,
        ),
        sa.Column(
            "incoming_id", UUID(as_uuid=True),
            sa.ForeignKey("remittances.id", ondelete="CASCADE"),
            index=True, nullable=False,
        ),
        sa.Column("amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("base_currency", sa.String(10), nullable=False),
        sa.Column("outgoing_rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("incoming_rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("cost", sa.Numeric(24, 6), nullable=False),
        sa.Column("revenue", sa.Numeric(24, 6), nullable=False),
        sa.Column("profit", sa.Numeric(24, 6), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("settled_by", sa.String(100), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("amount > 0", name="ck_remittance_settlements_amount_positive"),
    )


def downgrade() -> None:
    op.drop_table("remittance_settlements")
    op.drop_table("remittances")
    sa.Enum(name="remittancestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="remittancedirection").drop(op.get_bind(), checkfirst=True)
