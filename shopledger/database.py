"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql.dml import Insert

from shopledger.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Test hook to override session maker
_test_session_maker = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Set test session maker and return the previous value."""
    global _test_session_maker
    previous = _test_session_maker
    _test_session_maker = maker
    return previous


def get_test_session_maker() -> async_sessionmaker[AsyncSession] | None:
    return _test_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session."""
    maker = _test_session_maker or async_session_maker
    async with maker() as session:
        try:
            yield session
        finally:
            await session.close()


def insert_ignoring_conflicts(
    db: AsyncSession,
    model: type[Base],
    rows: list[dict[str, Any]],
    conflict_columns: list[str],
) -> Insert:
    """Build an INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Only PostgreSQL and SQLite expose the conflict clause through SQLAlchemy;
    any other backend cannot honour insert-or-ignore and is rejected.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise RuntimeError(f"insert-or-ignore is not supported on dialect {dialect!r}")
    return stmt.values(rows).on_conflict_do_nothing(index_elements=conflict_columns)


async def init_db() -> None:
    """
    Schema is managed by Alembic migrations (see migrations/). This only
    records that the application started against the configured database.
    """
    from shopledger.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Database initialized (schema managed by migrations)")


__all__ = [
    "Base",
    "async_session_maker",
    "engine",
    "get_db",
    "get_test_session_maker",
    "init_db",
    "insert_ignoring_conflicts",
    "set_test_session_maker",
]
