"""SQLAlchemy ORM models for Sarafi Ledger."""

from app.models.transaction import (
    COMMERCIAL_FIELDS,
    PaymentStatus,
    Transaction,
    TransactionType,
)
from app.models.payment import Payment, PaymentMethod, PaymentRecordStatus
from app.models.transaction_edit import TransactionEdit
from app.models.remittance import (
    Remittance,
    RemittanceDirection,
    RemittanceSettlement,
    RemittanceStatus,
)

__all__ = [
    "Transaction", "TransactionType", "PaymentStatus", "COMMERCIAL_FIELDS",
    "Payment", "PaymentMethod", "PaymentRecordStatus",
    "TransactionEdit",
    "Remittance", "RemittanceDirection", "RemittanceSettlement", "RemittanceStatus",
]
