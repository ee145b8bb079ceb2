"""Shared pytest fixtures for docstats tests."""

import os

# Settings are read at import time by the Celery app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("INTERNAL_SERVICE_TOKEN", "test-service-token")

from datetime import datetime
from typing import Dict, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from docstats.config import Settings
from docstats.models import Base, Project, ProjectStatus
from docstats.repositories import StatisticsRepository
from docstats.services import StatisticsCache, StatisticsService
from docstats.utils import CacheService

SERVICE_TOKEN = "test-service-token"


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client used by CacheService"""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self) -> bool:
        return True


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite+aiosqlite://",
        "INTERNAL_SERVICE_TOKEN": SERVICE_TOKEN,
        "CACHE_KEY_PREFIX": "test",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def statistics_cache(fake_redis, settings) -> StatisticsCache:
    return StatisticsCache(CacheService(settings.CACHE_KEY_PREFIX, client=fake_redis), settings)


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def repository(db, settings) -> StatisticsRepository:
    return StatisticsRepository(db, max_retries=settings.STATISTICS_UPSERT_MAX_RETRIES)


@pytest.fixture
def service(repository, statistics_cache, settings) -> StatisticsService:
    return StatisticsService(repository, statistics_cache, settings)


@pytest.fixture
def create_project(db):
    """Factory inserting a project row and returning its id."""

    async def _create(
        status: ProjectStatus = ProjectStatus.ACTIVE,
        name: str = "Test Project",
    ) -> UUID:
        project = Project(id=uuid4(), name=name, status=status, created_at=datetime.utcnow())
        db.add(project)
        await db.commit()
        return project.id

    return _create
