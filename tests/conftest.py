"""Shared test fixtures.

Tests run against in-memory SQLite (aiosqlite) with the ORM metadata
created directly; Redis is an AsyncMock.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gamify.config import Settings
from gamify.db import models  # noqa: F401
from gamify.db.base import Base
from gamify.db.models import Circle, User
from gamify.engine import Engine, build_engine
from gamify.levels.definitions import seed_levels
from gamify.period_service import PeriodService
from gamify.tasks.definitions import seed_task_definitions

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Wednesday 2026-03-04 12:00 in Istanbul, ISO week 2026-W10
DEFAULT_NOW = datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock for PeriodService that tests move by hand."""

    def __init__(self, start: datetime = DEFAULT_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def periods(clock: FrozenClock) -> PeriodService:
    return PeriodService("Europe/Istanbul", clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def engine(
    db_session: AsyncSession,
    mock_redis: AsyncMock,
    settings: Settings,
    periods: PeriodService,
) -> Engine:
    """Fully wired engine with leagues and static quests seeded."""
    await seed_levels(db_session)
    await seed_task_definitions(db_session)
    return build_engine(db_session, mock_redis, settings, periods)


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory: await make_user(id=..., role=..., circle_id=...) -> user id."""

    async def _make(
        user_id: int | None = None,
        *,
        role: str = "member",
        circle_id: int | None = None,
        display_name: str | None = None,
    ) -> int:
        user = User(id=user_id, role=role, circle_id=circle_id, display_name=display_name)
        db_session.add(user)
        await db_session.commit()
        return user.id

    return _make


@pytest.fixture
def make_circle(db_session: AsyncSession):
    async def _make(name: str = "Morning Runners") -> int:
        circle = Circle(name=name)
        db_session.add(circle)
        await db_session.commit()
        return circle.id

    return _make
