from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.resources import build_default_registry
from app.db import get_session
from app.main import app
from app.models import SQLModel
from app.services.employee import InMemoryEntityDirectory, get_entity_directory, set_entity_directory

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from app.core.resources import ResourceRegistry

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """A fresh in-memory database per test, with every table created.

    pysqlite's implicit transaction handling is switched off so SAVEPOINTs
    (used by every ledger batch) behave as they do on PostgreSQL.
    """
    _engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)

    @event.listens_for(_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(_engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Yield a database session on the per-test engine."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def registry() -> ResourceRegistry:
    return build_default_registry()


@pytest.fixture
def directory() -> Iterator[InMemoryEntityDirectory]:
    """A clean entity directory, restored after the test."""
    previous = get_entity_directory()
    fresh = InMemoryEntityDirectory()
    set_entity_directory(fresh)
    yield fresh
    set_entity_directory(previous)


@pytest.fixture
async def async_client(db_session: AsyncSession, directory: InMemoryEntityDirectory) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        try:
            yield db_session
        finally:
            # A request that failed part-way must not leak its writes into the next commit.
            if db_session.in_transaction():
                await db_session.rollback()

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
