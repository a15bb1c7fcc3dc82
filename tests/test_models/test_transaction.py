"""Tests for the Transaction model — defaults, reference generation, commercial terms."""

import re
from decimal import Decimal

import pytest

from app.models.transaction import (
    COMMERCIAL_FIELDS,
    PaymentStatus,
    Transaction,
    TransactionType,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def txn():
    """Create a minimal Transaction instance."""
    return Transaction(
        tenant_id=1,
        send_currency="CAD",
        send_amount=Decimal("1000"),
        receive_currency="IRR",
        receive_amount=Decimal("45000000"),
        rate_applied=Decimal("45000"),
    )


# ---------------------------------------------------------------------------
# Creation & Reference
# ---------------------------------------------------------------------------


class TestTransactionCreation:
    def test_create_with_valid_data(self, txn):
        """Transaction creation populates required fields and defaults."""
        assert txn.id is not None
        assert txn.reference is not None
        assert txn.transaction_type == TransactionType.CASH_EXCHANGE
        assert txn.payment_status == PaymentStatus.OPEN
        assert txn.fee_charged == Decimal("0")
        assert txn.total_paid == Decimal("0")
        assert txn.allow_partial_payment is False
        assert txn.manually_completed is False
        assert txn.is_edited is False
        assert txn.last_edited_at is None
        assert txn.completed_at is None
        assert txn.created_at is not None

    def test_remaining_balance_starts_at_receive_amount(self, txn):
        assert txn.remaining_balance == Decimal("45000000")

    def test_settlement_currency_is_receive_currency(self, txn):
        assert txn.settlement_currency == "IRR"

    def test_reference_format(self, txn):
        """Auto-generated reference matches SRF-XXXXXXXX pattern."""
        assert re.match(r"^SRF-[A-Z0-9]{8}$", txn.reference)

    def test_reference_uniqueness(self):
        """Generated references are (very likely) unique."""
        refs = {Transaction.generate_reference() for _ in range(200)}
        assert len(refs) == 200

    def test_repr_contains_reference(self, txn):
        r = repr(txn)
        assert txn.reference in r
        assert "IRR" in r
        assert "OPEN" in r


class TestCommercialTerms:
    def test_covers_every_commercial_field(self, txn):
        terms = txn.commercial_terms()
        assert tuple(terms) == COMMERCIAL_FIELDS
        assert terms["send_amount"] == Decimal("1000")
        assert terms["receive_currency"] == "IRR"

    def test_settlement_snapshot_not_in_terms(self, txn):
        terms = txn.commercial_terms()
        for field in ("payment_status", "total_paid", "remaining_balance", "reference"):
            assert field not in terms
