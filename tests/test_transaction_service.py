"""Tests for the transaction service — creation, lookup, listing, completion, deletion."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import NotFoundError, PolicyViolation, ValidationError
from app.models.transaction import PaymentStatus
from app.services import transaction_service

TENANT_ID = 1


def _create_data(**overrides) -> dict:
    data = {
        "send_currency": "cad",
        "send_amount": Decimal("1000"),
        "receive_currency": "irr",
        "receive_amount": Decimal("45000000"),
        "rate_applied": Decimal("45000"),
        "fee_charged": Decimal("10"),
        "transaction_type": "MONEY_PICKUP",
    }
    data.update(overrides)
    return data


class TestCreateTransaction:
    @pytest.mark.asyncio
    async def test_starts_open_with_full_balance(self, mock_db):
        txn = await transaction_service.create_transaction(mock_db, TENANT_ID, _create_data())

        assert txn.tenant_id == TENANT_ID
        assert txn.reference.startswith("SRF-")
        assert txn.send_currency == "CAD"
        assert txn.receive_currency == "IRR"
        assert txn.payment_status == PaymentStatus.OPEN
        assert txn.total_paid == Decimal("0")
        assert txn.remaining_balance == Decimal("45000000")
        assert txn.allow_partial_payment is False
        mock_db.add.assert_called_once_with(txn)
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "override, message",
        [
            ({"receive_amount": Decimal("0")}, "receive_amount"),
            ({"send_amount": None}, "send_amount is required"),
            ({"rate_applied": Decimal("-2")}, "rate_applied"),
            ({"receive_currency": " "}, "receive_currency is required"),
            ({"fee_charged": Decimal("-1")}, "fee_charged"),
        ],
    )
    async def test_invalid_terms_rejected(self, mock_db, override, message):
        with pytest.raises(ValidationError, match=message):
            await transaction_service.create_transaction(
                mock_db, TENANT_ID, _create_data(**override),
            )
        mock_db.add.assert_not_called()


class TestLoadTransaction:
    @pytest.mark.asyncio
    async def test_locked_load_refreshes_session_objects(self, make_transaction, db_returns):
        txn = make_transaction()
        db = db_returns(txn)

        await transaction_service.load_transaction(db, TENANT_ID, txn.id, for_update=True)

        stmt = db.execute.call_args.args[0]
        assert stmt.get_execution_options().get("populate_existing") is True
        assert stmt._for_update_arg is not None

    @pytest.mark.asyncio
    async def test_plain_load_takes_no_row_lock(self, make_transaction, db_returns):
        txn = make_transaction()
        db = db_returns(txn)

        await transaction_service.load_transaction(db, TENANT_ID, txn.id)

        stmt = db.execute.call_args.args[0]
        assert stmt._for_update_arg is None


class TestGetTransaction:
    @pytest.mark.asyncio
    async def test_settlement_recomputed_on_read(self, make_transaction, make_payment, db_returns):
        txn = make_transaction()
        make_payment(txn, "15000000")
        db = db_returns(txn)

        result, summary = await transaction_service.get_transaction(db, TENANT_ID, txn.id)

        assert result is txn
        assert summary.total_paid == Decimal("15000000")
        assert summary.remaining_balance == Decimal("30000000")
        assert summary.payment_status == PaymentStatus.PARTIALLY_PAID

    @pytest.mark.asyncio
    async def test_read_leaves_stored_snapshot_untouched(
        self, make_transaction, make_payment, db_returns,
    ):
        txn = make_transaction()
        make_payment(txn, "15000000")
        db = db_returns(txn)

        await transaction_service.get_transaction(db, TENANT_ID, txn.id)

        assert txn.total_paid == Decimal("0")
        assert txn.remaining_balance == Decimal("45000000")
        assert txn.payment_status == PaymentStatus.OPEN
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manual_completion_reported_on_read(
        self, make_transaction, make_payment, db_returns,
    ):
        txn = make_transaction(receive_currency="CAD", receive_amount=Decimal("1000"))
        make_payment(txn, "995")
        txn.manually_completed = True
        db = db_returns(txn)

        _, summary = await transaction_service.get_transaction(db, TENANT_ID, txn.id)

        assert summary.payment_status == PaymentStatus.FULLY_PAID
        assert summary.remaining_balance == Decimal("5")

    @pytest.mark.asyncio
    async def test_missing_transaction(self, db_returns):
        db = db_returns(None)
        with pytest.raises(NotFoundError):
            await transaction_service.get_transaction(db, TENANT_ID, uuid.uuid4())


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_returns_items_and_total(self, mock_db, make_transaction):
        txns = [make_transaction(), make_transaction()]

        count_result = MagicMock()
        count_result.scalar_one = MagicMock(return_value=7)
        items_result = MagicMock()
        items_result.scalars.return_value.all.return_value = txns
        mock_db.execute = AsyncMock(side_effect=[count_result, items_result])

        items, total = await transaction_service.list_transactions(
            mock_db, TENANT_ID, page=2, per_page=2, payment_status=PaymentStatus.OPEN,
        )

        assert items == txns
        assert total == 7
        assert mock_db.execute.await_count == 2


class TestCompleteTransaction:
    @pytest.mark.asyncio
    async def test_small_remainder_written_off(
        self, make_transaction, make_payment, db_returns, locks,
    ):
        txn = make_transaction(receive_currency="CAD", receive_amount=Decimal("1000"))
        make_payment(txn, "995")
        db = db_returns(txn)

        result = await transaction_service.complete_transaction(db, TENANT_ID, txn.id, locks=locks)

        assert result.manually_completed is True
        assert result.payment_status == PaymentStatus.FULLY_PAID
        assert result.remaining_balance == Decimal("5")
        assert result.completed_at is not None
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_large_remainder_rejected(
        self, make_transaction, make_payment, db_returns, locks,
    ):
        txn = make_transaction(receive_currency="CAD", receive_amount=Decimal("1000"))
        make_payment(txn, "500")
        db = db_returns(txn)

        with pytest.raises(PolicyViolation) as exc_info:
            await transaction_service.complete_transaction(db, TENANT_ID, txn.id, locks=locks)

        assert exc_info.value.remaining_balance == Decimal("500")
        assert txn.manually_completed is False
        assert txn.payment_status == PaymentStatus.PARTIALLY_PAID

    @pytest.mark.asyncio
    async def test_reversal_after_manual_completion_reopens(
        self, make_transaction, make_payment,
    ):
        txn = make_transaction(receive_currency="CAD", receive_amount=Decimal("1000"))
        paid = make_payment(txn, "995")
        txn.manually_completed = True
        assert transaction_service.apply_settlement(txn).payment_status == PaymentStatus.FULLY_PAID

        make_payment(txn, "-995", reverses_payment_id=paid.id)
        summary = transaction_service.apply_settlement(txn)

        assert summary.payment_status == PaymentStatus.OPEN
        assert txn.manually_completed is False
        assert txn.completed_at is None


class TestDeleteTransaction:
    @pytest.mark.asyncio
    async def test_deletes_and_commits(self, make_transaction, db_returns, locks):
        txn = make_transaction()
        db = db_returns(txn)

        await transaction_service.delete_transaction(db, TENANT_ID, txn.id, locks=locks)

        db.delete.assert_awaited_once_with(txn)
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_transaction(self, db_returns, locks):
        db = db_returns(None)
        with pytest.raises(NotFoundError):
            await transaction_service.delete_transaction(db, TENANT_ID, uuid.uuid4(), locks=locks)
