"""
Database connection setup using async SQLAlchemy with PostgreSQL.

Provides the async engine, the session factory, a FastAPI dependency
that yields a request-scoped session, and ``session_scope`` for code
that runs outside the request lifecycle (Celery tasks, scripts).
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=settings.DATABASE_POOL_SIZE,
    pool_pre_ping=True,
    echo=settings.DEBUG,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db() -> AsyncSession:
    """
    FastAPI dependency that yields a database session.

    The whole request runs inside one database transaction: it commits
    when the handler returns and rolls back if anything raised, so a
    settlement recomputation is either fully persisted or not at all.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope():
    """Transactional session for background jobs (commit or roll back)."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
