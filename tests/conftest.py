"""Pytest fixtures for testing."""
import os
from collections.abc import AsyncGenerator

# Service modules read settings at import time, so this must be set before any
# app import happens during collection.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from models.base import Base  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """
    Create a fresh in-memory SQLite database for each test.

    StaticPool keeps the single connection, and with it the database, alive
    for the whole test. Foreign keys are enforced, and BEGIN is emitted by
    SQLAlchemy instead of the driver so savepoints behave like on PostgreSQL.
    """
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_conn, connection_record) -> None:  # noqa: ANN001, ARG001
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create an async session on the test database."""
    session_factory = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


class StatementLog:
    """SQL statements executed on the test database."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def count(self, prefix: str) -> int:
        """Count statements starting with a prefix, e.g. 'DELETE FROM card_benefit'."""
        return sum(1 for s in self.statements if s.lstrip().upper().startswith(prefix.upper()))

    def clear(self) -> None:
        self.statements.clear()


@pytest.fixture
def sql_log(async_engine: AsyncEngine) -> StatementLog:
    """Record every SQL statement executed on the test database."""
    log = StatementLog()

    @event.listens_for(async_engine.sync_engine, "before_cursor_execute")
    def record(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001, ARG001, PLR0913
        log.statements.append(statement)

    return log


@pytest.fixture
async def client(
    db_session: AsyncSession,
) -> AsyncGenerator[AsyncClient]:
    """Create a test client with database session override."""
    from api.main import app
    from db.session import get_async_session

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_async_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
