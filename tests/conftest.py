"""Test fixtures and configuration."""

import logging
import os
import sys
from uuid import uuid4

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set ENVIRONMENT for pydantic settings before the app is imported
os.environ["ENVIRONMENT"] = "testing"

from shopledger import database  # noqa: E402
from shopledger.database import Base  # noqa: E402
from shopledger.logger import get_logger  # noqa: E402
from shopledger.security import create_access_token  # noqa: E402
from shopledger.services import reconciliation as reconciliation_service  # noqa: E402

logger = get_logger(__name__)


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def reset_scoring_config_cache():
    """Scoring weights are cached per process; each test starts from disk."""
    reconciliation_service._config_cache = None
    yield
    reconciliation_service._config_cache = None


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Engine with a freshly created schema.

    Uses TEST_DATABASE_URL (e.g. a PostgreSQL database) when set; otherwise an
    isolated SQLite file per test. Commits are real, so every test gets its own
    schema instead of a rolled-back outer transaction.
    """
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'shopledger_test.db'}"
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    import shopledger.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine):
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    previous = database.set_test_session_maker(maker)
    yield maker
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture
async def db(session_maker):
    """Database session bound to the per-test schema."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def client(session_maker, auth_headers):
    """HTTP client against the app, authenticated as ``user_id``."""
    from shopledger.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=auth_headers) as ac:
        yield ac


@pytest_asyncio.fixture
async def anonymous_client(session_maker):
    from shopledger.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
