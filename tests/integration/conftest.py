"""
Integration test fixtures — real async SQLAlchemy sessions.

Runs against a throwaway SQLite file through aiosqlite, so concurrent
service calls each get their own connection and see each other's
commits, as separate requests do in production. No external services
are needed. SQLite ignores ``FOR UPDATE``; the per-transaction lock
registry is what serializes writers here.
"""

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.services.locks import LocalTransactionLocks


# ── Real async engine + sessions ───────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Engine on a fresh database file with every table created."""
    # Import all models so Base.metadata knows about them
    import app.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory configured like ``app.database.async_session``."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def real_session_scope(session_factory):
    """Drop-in for ``app.database.session_scope`` bound to the test database."""
    @asynccontextmanager
    async def _scope():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _scope


@pytest.fixture
def shared_locks():
    """One lock registry shared by every concurrent caller in a test."""
    return LocalTransactionLocks()
