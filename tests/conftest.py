"""
Shared fixtures: a throwaway SQLite database (aiosqlite) per test with the
real ORM schema, and a fixed clock origin for time-dependent tests.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import ridematch.models  # noqa: F401  registers tables on Base.metadata
from ridematch.database import Base

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
TEL_AVIV = (32.08, 34.78)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ridematch.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis
