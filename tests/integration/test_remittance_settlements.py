"""
Integration test — remittance settlements persisted to a real database.

Books one outgoing debt and two incoming remittances, nets them
concurrently and checks the stored settlement rows and running totals.
"""

import asyncio
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.models.remittance import RemittanceStatus
from app.services import remittance_service

TENANT_ID = 1


async def _book(session_factory, direction, amount, rate):
    async with session_factory() as session:
        return await remittance_service.create_remittance(
            session, TENANT_ID,
            {
                "direction": direction,
                "sender_name": "Maryam Ahmadi",
                "recipient_name": "Ali Rezaei",
                "amount": Decimal(amount),
                "rate": Decimal(rate),
            },
        )


class TestRemittanceSettlements:
    @pytest.mark.asyncio
    async def test_concurrent_settlements_never_oversettle(self, session_factory, shared_locks):
        debt = await _book(session_factory, "OUTGOING", "45000000", "45000")
        first_funds = await _book(session_factory, "INCOMING", "30000000", "50000")
        second_funds = await _book(session_factory, "INCOMING", "30000000", "50000")

        async def settle(incoming):
            async with session_factory() as session:
                return await remittance_service.settle_remittances(
                    session, TENANT_ID, debt.id, incoming.id, Decimal("30000000"),
                    locks=shared_locks,
                )

        results = await asyncio.gather(
            settle(first_funds), settle(second_funds), return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(failures) == 1
        assert isinstance(failures[0], ValidationError)
        assert "exceeds outgoing" in failures[0].message

        async with session_factory() as session:
            stored = await remittance_service.load_remittance(session, TENANT_ID, debt.id)
            history = await remittance_service.settlement_history(session, TENANT_ID, debt.id)
            summary = await remittance_service.profit_summary(session, TENANT_ID)

        assert stored.status == RemittanceStatus.PARTIAL
        assert stored.settled_amount == Decimal("30000000")
        assert stored.remaining == Decimal("15000000")
        assert len(history) == 1
        # 30M / 45000 - 30M / 50000
        assert abs(history[0].profit - Decimal("66.666667")) < Decimal("0.000001")
        assert abs(stored.total_profit - history[0].profit) < Decimal("0.000001")
        assert summary["total_settlements"] == 1

    @pytest.mark.asyncio
    async def test_debt_paid_down_by_two_incomings(self, session_factory, shared_locks):
        debt = await _book(session_factory, "OUTGOING", "45000000", "45000")
        first_funds = await _book(session_factory, "INCOMING", "30000000", "50000")
        second_funds = await _book(session_factory, "INCOMING", "30000000", "40000")

        for incoming, amount in ((first_funds, "30000000"), (second_funds, "15000000")):
            async with session_factory() as session:
                await remittance_service.settle_remittances(
                    session, TENANT_ID, debt.id, incoming.id, Decimal(amount),
                    locks=shared_locks,
                )

        async with session_factory() as session:
            stored = await remittance_service.load_remittance(session, TENANT_ID, debt.id)
            funds = await remittance_service.load_remittance(session, TENANT_ID, second_funds.id)
            history = await remittance_service.settlement_history(session, TENANT_ID, debt.id)

        assert stored.status == RemittanceStatus.COMPLETED
        assert stored.remaining == Decimal("0")
        assert stored.completed_at is not None
        assert funds.status == RemittanceStatus.PARTIAL
        assert funds.remaining == Decimal("15000000")
        assert len(history) == 2
        # 30M/45000 - 30M/50000 + 15M/45000 - 15M/40000 = 66.67 - 41.67
        assert abs(stored.total_profit - Decimal("25")) < Decimal("0.00001")
