"""
Shared test fixtures for Sarafi Ledger.

Provides async test client, database session mocks, Redis mocks,
and factories for transactions and payments.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.database import get_db
from app.models.payment import Payment, PaymentMethod, PaymentRecordStatus
from app.models.remittance import Remittance, RemittanceDirection
from app.models.transaction import Transaction, TransactionType
from app.services.locks import LocalTransactionLocks

TENANT_ID = 1
TENANT_HEADERS = {"X-Tenant-ID": str(TENANT_ID)}


# --- Mock Redis ---


@pytest.fixture
def mock_redis():
    """AsyncMock Redis client with common methods."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock()
    return redis


# --- Model factories ---


def _make_transaction(**overrides) -> Transaction:
    """Create a Transaction instance with test defaults via the normal constructor."""
    defaults = {
        "tenant_id": TENANT_ID,
        "client_id": "C-1001",
        "transaction_type": TransactionType.CASH_EXCHANGE,
        "send_currency": "CAD",
        "send_amount": Decimal("1000"),
        "receive_currency": "IRR",
        "receive_amount": Decimal("45000000"),
        "rate_applied": Decimal("45000"),
        "allow_partial_payment": True,
        "payments": [],
        "edits": [],
    }
    defaults.update(overrides)
    return Transaction(**defaults)


def _make_payment(txn: Transaction, amount, **overrides) -> Payment:
    """Create a Payment on *txn* and append it to its history."""
    defaults = {
        "tenant_id": txn.tenant_id,
        "transaction_id": txn.id,
        "amount": Decimal(str(amount)),
        "currency": txn.receive_currency,
        "exchange_rate": Decimal("1"),
        "payment_method": PaymentMethod.CASH,
        "status": PaymentRecordStatus.COMPLETED,
    }
    defaults.update(overrides)
    payment = Payment(**defaults)
    txn.payments.append(payment)
    return payment


@pytest.fixture
def make_transaction():
    """Factory fixture for creating Transaction instances."""
    return _make_transaction


@pytest.fixture
def make_payment():
    """Factory fixture for creating Payment instances on a transaction."""
    return _make_payment


def _make_remittance(direction, amount, rate, **overrides) -> Remittance:
    """Create an IRR/CAD Remittance with test defaults."""
    defaults = {
        "tenant_id": TENANT_ID,
        "direction": RemittanceDirection(direction),
        "sender_name": "Maryam Ahmadi",
        "recipient_name": "Ali Rezaei",
        "amount": Decimal(str(amount)),
        "rate": Decimal(str(rate)),
    }
    defaults.update(overrides)
    return Remittance(**defaults)


@pytest.fixture
def make_remittance():
    """Factory fixture for creating Remittance instances."""
    return _make_remittance


@pytest.fixture
def locks():
    """Fresh in-process lock registry, isolated per test."""
    return LocalTransactionLocks()


# --- Mock Database Session ---


def _result(obj) -> MagicMock:
    """A db.execute() result whose scalar accessors return *obj*."""
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=obj)
    result.scalar_one = MagicMock(return_value=obj)
    return result


@pytest.fixture
def mock_db():
    """AsyncMock database session."""
    db = AsyncMock()

    # Mock the result object returned by db.execute()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    db.execute = AsyncMock(return_value=mock_result)
    db.flush = AsyncMock()
    db.add = MagicMock()
    db.delete = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()

    return db


@pytest.fixture
def db_returns(mock_db):
    """
    Wire mock_db.execute to return *objs* in order, one per call.

    Services issue their SELECTs in a fixed order, e.g. payment actions
    look up the payment's transaction id first, then load the transaction.
    """
    def _wire(*objs):
        mock_db.execute = AsyncMock(side_effect=[_result(o) for o in objs])
        return mock_db
    return _wire


# --- Dependency Override Helpers ---


@pytest_asyncio.fixture
async def client(mock_db):
    """Async HTTP test client with get_db overridden to use the mock session."""
    from app.main import app

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=TENANT_HEADERS,
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Sample Data ---


@pytest.fixture
def sample_transaction():
    """Sample transaction creation payload (CAD → IRR)."""
    return {
        "client_id": "C-1001",
        "transaction_type": "CASH_EXCHANGE",
        "send_currency": "CAD",
        "send_amount": "1000",
        "receive_currency": "IRR",
        "receive_amount": "45000000",
        "rate_applied": "45000",
        "fee_charged": "10",
        "beneficiary_name": "Reza Karimi",
        "allow_partial_payment": True,
    }
