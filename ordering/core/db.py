import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ordering.core.config import DB_URL

log = logging.getLogger("ordering.db")

# Set logging level for SQLAlchemy engine output
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


class Base(DeclarativeBase):
    """Declarative base shared by every table of the service."""


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP (without time zone) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db(db_url: str = DB_URL, generate_schemas: bool = True) -> AsyncEngine:
    """Creates the async engine and session factory, then generates the schema."""
    global _engine, _session_factory

    # Importing the models registers their tables on Base.metadata
    import ordering.models  # noqa: F401

    try:
        _engine = create_async_engine(db_url)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
        if generate_schemas:
            async with _engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        log.info("Database connection established and schemas generated.")
    except Exception as e:
        log.error(f"FATAL ERROR: Could not connect to database at {db_url}. Error: {e}")
        # Re-raise to prevent the application from starting without a database
        raise
    return _engine


async def close_db():
    """Closes all database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
    log.info("Database connections closed.")


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database is not initialised; call init_db() first.")
    return _session_factory


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[AsyncSession]:
    """
    One atomic transaction spanning the orders and outbox tables.

    Everything written through the yielded session commits together on exit,
    or rolls back together if the block raises.
    """
    async with get_session_factory()() as session:
        async with session.begin():
            yield session


@asynccontextmanager
async def read_session() -> AsyncIterator[AsyncSession]:
    """Short-lived session for reads that must not hold a write transaction."""
    async with get_session_factory()() as session:
        yield session
