"""
Integration test — concurrent settlement writes against a real database.

Each caller gets its own session, as separate requests do. The callers
are held at the transaction's lock until all of them have done their
pre-lock reads, then released together, so the later writer always
works on rows the earlier one has already changed and committed.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.core.exceptions import PolicyViolation
from app.models.payment import PaymentRecordStatus
from app.models.transaction import PaymentStatus
from app.services import batch_payments, transaction_service
from app.services.locks import LocalTransactionLocks
from app.services.payment_service import PaymentService
from app.tasks.payment_tasks import _expire_stale_pending_payments_async

TENANT_ID = 1


class GatedLocks(LocalTransactionLocks):
    """Local locks that signal once *expected* callers have reached ``hold``."""

    def __init__(self, expected: int):
        super().__init__()
        self.expected = expected
        self.arrived = 0
        self.all_waiting = asyncio.Event()

    @asynccontextmanager
    async def hold(self, transaction_id):
        self.arrived += 1
        if self.arrived >= self.expected:
            self.all_waiting.set()
        async with super().hold(transaction_id):
            yield


async def _race(locks: GatedLocks, transaction_id, *calls):
    """Run *calls* together once every one of them is queued on the lock."""
    lock = locks.lock_for(transaction_id)
    await lock.acquire()
    try:
        tasks = [asyncio.create_task(call) for call in calls]
        await asyncio.wait_for(locks.all_waiting.wait(), timeout=5)
    finally:
        lock.release()
    return await asyncio.gather(*tasks, return_exceptions=True)


def _cad_transaction(**overrides) -> dict:
    data = {
        "client_id": "C-2040",
        "send_currency": "CAD",
        "send_amount": Decimal("1000"),
        "receive_currency": "CAD",
        "receive_amount": Decimal("1000"),
        "rate_applied": Decimal("1"),
        "allow_partial_payment": True,
    }
    data.update(overrides)
    return data


async def _create(session_factory, **overrides):
    async with session_factory() as session:
        return await transaction_service.create_transaction(
            session, TENANT_ID, _cad_transaction(**overrides),
        )


async def _record(session_factory, service, transaction_id, data):
    async with session_factory() as session:
        return await service.record_payment(session, TENANT_ID, transaction_id, data)


async def _stored(session_factory, transaction_id):
    async with session_factory() as session:
        return await transaction_service.load_transaction(session, TENANT_ID, transaction_id)


def _outcome(results):
    """Split gather results into (successes, failures)."""
    failures = [r for r in results if isinstance(r, BaseException)]
    return [r for r in results if not isinstance(r, BaseException)], failures


class TestConfirmFailRace:
    @pytest.mark.asyncio
    async def test_only_one_of_confirm_and_fail_wins(self, session_factory):
        txn = await _create(session_factory)
        setup = PaymentService(locks=LocalTransactionLocks())
        _, pending = await _record(
            session_factory, setup, txn.id,
            {"amount": "500", "currency": "CAD", "status": "PENDING"},
        )

        locks = GatedLocks(expected=2)
        service = PaymentService(locks=locks)

        async def confirm():
            async with session_factory() as session:
                return await service.confirm_payment(session, TENANT_ID, pending.id)

        async def fail():
            async with session_factory() as session:
                return await service.fail_payment(session, TENANT_ID, pending.id, "bounced")

        results = await _race(locks, txn.id, confirm(), fail())

        successes, failures = _outcome(results)
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], PolicyViolation)

        _, winner = successes[0]
        stored = await _stored(session_factory, txn.id)
        (payment,) = stored.payments
        assert payment.status == winner.status
        if winner.status == PaymentRecordStatus.COMPLETED:
            assert stored.payment_status == PaymentStatus.PARTIALLY_PAID
            assert stored.total_paid == Decimal("500")
        else:
            assert stored.payment_status == PaymentStatus.OPEN
            assert stored.total_paid == Decimal("0")


class TestConcurrentPayments:
    @pytest.mark.asyncio
    async def test_second_full_payment_rejected(self, session_factory):
        txn = await _create(session_factory, allow_partial_payment=False)
        locks = GatedLocks(expected=2)
        service = PaymentService(locks=locks)
        full = {"amount": "1000", "currency": "CAD"}

        results = await _race(
            locks, txn.id,
            _record(session_factory, service, txn.id, full),
            _record(session_factory, service, txn.id, full),
        )

        successes, failures = _outcome(results)
        assert len(successes) == 1
        assert isinstance(failures[0], PolicyViolation)
        assert "already fully paid" in failures[0].message

        stored = await _stored(session_factory, txn.id)
        assert len(stored.payments) == 1
        assert stored.payment_status == PaymentStatus.FULLY_PAID
        assert stored.total_paid == Decimal("1000")

    @pytest.mark.asyncio
    async def test_no_partial_payment_lost(self, session_factory):
        txn = await _create(session_factory)
        locks = GatedLocks(expected=5)
        service = PaymentService(locks=locks)

        results = await _race(
            locks, txn.id,
            *[
                _record(session_factory, service, txn.id, {"amount": "100", "currency": "CAD"})
                for _ in range(5)
            ],
        )

        successes, failures = _outcome(results)
        assert failures == []
        assert len(successes) == 5

        stored = await _stored(session_factory, txn.id)
        assert len(stored.payments) == 5
        assert stored.total_paid == Decimal("500")
        assert stored.remaining_balance == Decimal("500")
        assert stored.payment_status == PaymentStatus.PARTIALLY_PAID


class TestExpiryRace:
    @pytest.mark.asyncio
    async def test_expiry_and_confirm_agree(self, session_factory, real_session_scope):
        txn = await _create(session_factory)
        _, pending = await _record(
            session_factory, PaymentService(locks=LocalTransactionLocks()), txn.id,
            {
                "amount": "400", "currency": "CAD", "status": "PENDING",
                "paid_at": datetime.now(timezone.utc) - timedelta(days=3),
            },
        )

        locks = GatedLocks(expected=2)
        service = PaymentService(locks=locks)

        async def confirm():
            async with session_factory() as session:
                return await service.confirm_payment(session, TENANT_ID, pending.id)

        with patch("app.database.session_scope", real_session_scope):
            expired, confirmed = await _race(
                locks, txn.id,
                _expire_stale_pending_payments_async(locks=locks),
                confirm(),
            )

        stored = await _stored(session_factory, txn.id)
        (payment,) = stored.payments
        if isinstance(confirmed, BaseException):
            assert isinstance(confirmed, PolicyViolation)
            assert expired["expired_count"] == 1
            assert payment.status == PaymentRecordStatus.FAILED
            assert stored.total_paid == Decimal("0")
        else:
            assert expired["expired_count"] == 0
            assert payment.status == PaymentRecordStatus.COMPLETED
            assert payment.failed_at is None
            assert stored.total_paid == Decimal("400")


class TestConcurrentBatches:
    @pytest.mark.asyncio
    async def test_overlapping_batches_both_complete(self, session_factory, shared_locks):
        first = await _create(session_factory, receive_amount=Decimal("100"))
        second = await _create(session_factory, receive_amount=Decimal("100"))

        async def batch(ids):
            async with session_factory() as session:
                return await batch_payments.process_batch_payment(
                    session, TENANT_ID,
                    {"transaction_ids": ids, "total_amount": Decimal("60"), "currency": "CAD"},
                    locks=shared_locks,
                )

        # Opposite request order; locks are still taken in one order
        results = await asyncio.wait_for(
            asyncio.gather(batch([first.id, second.id]), batch([second.id, first.id])),
            timeout=5,
        )

        assert all(plan.total_allocated == Decimal("60") for plan in results)
        stored = [await _stored(session_factory, t.id) for t in (first, second)]
        assert sum(t.total_paid for t in stored) == Decimal("120")
        assert sum(len(t.payments) for t in stored) == 3
