"""Tests for Celery housekeeping tasks — expiring stale pending payments."""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models.payment import PaymentRecordStatus
from app.tasks.celery_app import celery_app
from app.tasks.payment_tasks import (
    EXPIRY_NOTE,
    _expire_stale_pending_payments_async,
    expire_stale_pending_payments,
)


def _candidates(*payments):
    """Result of the stale-payment scan: (payment id, transaction id, tenant id) rows."""
    result = MagicMock()
    result.all.return_value = [(p.id, p.transaction_id, p.tenant_id) for p in payments]
    return result


def _loaded(txn):
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=txn)
    return result


def _patch_session(*results):
    """Patch session_scope so every scope shares one mock session answering *results* in order."""
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=list(results))
    scopes = []

    @asynccontextmanager
    async def fake_scope():
        scopes.append(session)
        yield session

    return patch("app.database.session_scope", fake_scope), session, scopes


@pytest.fixture
def cad_txn(make_transaction):
    return make_transaction(receive_currency="CAD", receive_amount=Decimal("1000"))


class TestExpireStalePendingPayments:
    @pytest.mark.asyncio
    async def test_stale_payments_marked_failed(self, cad_txn, make_payment, locks):
        first = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        second = make_payment(cad_txn, "300", status=PaymentRecordStatus.PENDING, notes="wire from TD")
        patcher, session, scopes = _patch_session(_candidates(first, second), _loaded(cad_txn))

        with patcher:
            result = await _expire_stale_pending_payments_async(locks=locks)

        assert result["expired_count"] == 2
        assert sorted(result["expired_payment_ids"]) == sorted([str(first.id), str(second.id)])
        assert first.status == PaymentRecordStatus.FAILED
        assert second.status == PaymentRecordStatus.FAILED
        assert first.failed_at is not None
        assert first.notes == EXPIRY_NOTE
        assert second.notes == f"wire from TD\n{EXPIRY_NOTE}"
        # One scan, then one locked load for the single transaction
        assert session.execute.await_count == 2
        assert len(scopes) == 2

    @pytest.mark.asyncio
    async def test_transaction_row_locked_before_expiring(self, cad_txn, make_payment, locks):
        pending = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        patcher, session, _ = _patch_session(_candidates(pending), _loaded(cad_txn))

        with patcher:
            await _expire_stale_pending_payments_async(locks=locks)

        load_stmt = session.execute.await_args_list[1].args[0]
        assert load_stmt._for_update_arg is not None

    @pytest.mark.asyncio
    async def test_payment_confirmed_meanwhile_is_left_completed(
        self, cad_txn, make_payment, locks,
    ):
        pending = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        scan = _candidates(pending)
        # Confirmed between the scan and the locked reload
        pending.transition_to(PaymentRecordStatus.COMPLETED)
        patcher, _, _ = _patch_session(scan, _loaded(cad_txn))

        with patcher:
            result = await _expire_stale_pending_payments_async(locks=locks)

        assert result["expired_count"] == 0
        assert pending.status == PaymentRecordStatus.COMPLETED
        assert pending.failed_at is None
        assert pending.notes is None

    @pytest.mark.asyncio
    async def test_waits_for_the_transaction_lock(self, cad_txn, make_payment, locks):
        pending = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        patcher, session, _ = _patch_session(_candidates(pending), _loaded(cad_txn))

        lock = locks.lock_for(cad_txn.id)
        await lock.acquire()
        try:
            with patcher:
                task = asyncio.create_task(_expire_stale_pending_payments_async(locks=locks))
                for _ in range(5):
                    await asyncio.sleep(0)
                # Scan done, locked reload still waiting
                assert session.execute.await_count == 1
                assert pending.status == PaymentRecordStatus.PENDING
                lock.release()
                result = await task
        finally:
            if lock.locked():
                lock.release()

        assert result["expired_count"] == 1

    @pytest.mark.asyncio
    async def test_deleted_transaction_skipped(self, cad_txn, make_payment, locks):
        pending = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        patcher, _, _ = _patch_session(_candidates(pending), _loaded(None))

        with patcher:
            result = await _expire_stale_pending_payments_async(locks=locks)

        assert result["expired_count"] == 0

    @pytest.mark.asyncio
    async def test_nothing_to_expire(self, locks):
        patcher, session, _ = _patch_session(_candidates())
        with patcher:
            result = await _expire_stale_pending_payments_async(locks=locks)
        assert result["expired_count"] == 0
        assert "cutoff" in result
        session.execute.assert_awaited_once()

    def test_sync_task_runs_event_loop(self, cad_txn, make_payment):
        pending = make_payment(cad_txn, "250", status=PaymentRecordStatus.PENDING)
        patcher, _, _ = _patch_session(_candidates(pending), _loaded(cad_txn))
        with patcher:
            result = expire_stale_pending_payments()
        assert result["expired_count"] == 1


class TestBeatSchedule:
    def test_expiry_scheduled_every_fifteen_minutes(self):
        entry = celery_app.conf.beat_schedule["expire-stale-pending-payments"]
        assert entry["task"] == "app.tasks.payment_tasks.expire_stale_pending_payments"
        assert entry["schedule"] == 900
