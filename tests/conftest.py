"""Integration test configuration."""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from tidewatch.models import Base


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a throwaway SQLite database with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tidewatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
