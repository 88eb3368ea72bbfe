"""Integration test fixtures with a real database and the HTTP app."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from payroll_core.api.app import create_app
from payroll_core.database import create_all
from payroll_core.payroll import PayrollService
from payroll_core.repositories import SqlPayrollRepository


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with every payroll table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}", echo=False)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> SqlPayrollRepository:
    """SQL repository; every service fixture in these tests runs over it."""
    return SqlPayrollRepository(session_factory)


@pytest.fixture
async def client(service: PayrollService) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app serving ``service``."""
    app = create_app(service)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
