# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Settings are read lazily from the environment; give the app a complete config.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SERVICE_API_KEY"] = "test-service-key"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.app.config import get_settings
from models import Base
from models.job import STATUS_PENDING, Job


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A temp-file SQLite database with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_job(session_factory, owner_id, now):
    """Insert a job directly and return its id."""

    async def _make(**kwargs) -> uuid.UUID:
        values = dict(
            owner_id=owner_id,
            target="https://forms.example.edu/housing-lottery",
            not_before=now - timedelta(seconds=1),
            status=STATUS_PENDING,
            attempt_count=0,
            max_attempts=3,
        )
        values.update(kwargs)
        job = Job(**values)
        async with session_factory() as session:
            session.add(job)
            await session.commit()
        return job.id

    return _make


@pytest.fixture
def load_job(session_factory):
    """Read a job back through a fresh session."""

    async def _load(job_id: uuid.UUID) -> Job | None:
        async with session_factory() as session:
            return await session.get(Job, job_id)

    return _load
