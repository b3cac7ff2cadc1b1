"""
Shared fixtures: a throwaway SQLite database per test and services bound to it.
"""
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from learntrack.config.settings import Settings
from learntrack.database import build_session_factory
from learntrack.orm import Base
from learntrack.services.proctoring_service import ProctoringService
from learntrack.services.progress_service import ProgressService


class FakeClock:
    """Deterministic clock; every call moves time forward by one second."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed so that several sessions see the same data."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'learntrack_test.db'}",
        poolclass=NullPool,
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        progress_max_retries=3,
        store_timeout_seconds=5.0,
        recent_activity_limit=5,
        video_pass_score=70.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def progress_service(session_factory, test_settings, clock):
    return ProgressService(session_factory, settings=test_settings, clock=clock)


@pytest.fixture
def proctoring_service(session_factory, test_settings):
    return ProctoringService(session_factory, settings=test_settings)
