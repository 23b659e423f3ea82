"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database (aiosqlite). Every
collaborator outside this service is replaced by a double from ``tests.fakes``:

- embedding provider: ``FakeEmbeddingProvider`` (deterministic vectors)
- job dispatcher: ``RecordingDispatcher`` (no Celery broker)
- file service: ``httpx.MockTransport`` serving ``FILES``

References:
-----------
- Pytest Fixtures: https://docs.pytest.org/en/stable/fixture.html
- FastAPI Testing: https://fastapi.tiangolo.com/advanced/async-tests/
"""

import os

# Must be set before the application modules read their settings
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_FORMAT"] = "text"

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from content_ingestion.core.config import EmbeddingConfig, JobConfig, Settings
from content_ingestion.db.base import Base
from content_ingestion.db.deps import get_db
from content_ingestion.db.session import create_session_factory
from content_ingestion.main import app
from content_ingestion.models import ContentItem, ContentSourceType, ProcessingStatus
from content_ingestion.services.container import build_container
from content_ingestion.services.sources import FileSourceAdapter, ManualSourceAdapter
from tests.fakes import (
    EMBEDDING_DIMENSIONS,
    FakeEmbeddingProvider,
    RecordingDispatcher,
    make_file_service,
)


# ================================
# Database Fixtures
# ================================

@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive, so every session of the
    test sees the same database.
    """
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
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ================================
# Pipeline Fixtures
# ================================

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        APP_ENV="testing",
        EMBEDDING_PROVIDER="local",
        EMBEDDING_DIMENSION=EMBEDDING_DIMENSIONS,
        EMBEDDING_BATCH_SIZE=10,
        EMBEDDING_RETRY_BASE_DELAY_SECONDS=0,
        EMBEDDING_INTER_BATCH_DELAY_SECONDS=0,
        MAX_CONCURRENT_JOBS=2,
        JOB_MAX_ATTEMPTS=3,
        URL_RESPECT_ROBOTS_TXT=False,
    )


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    return EmbeddingConfig(
        dimensions=EMBEDDING_DIMENSIONS,
        batch_size=10,
        max_retries=3,
        retry_base_delay_seconds=0,
        inter_batch_delay_seconds=0,
    )


@pytest.fixture
def job_config() -> JobConfig:
    return JobConfig(max_concurrent_jobs=2, retry_delay_seconds=5, max_attempts=3, stale_after_seconds=3600)


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def container(test_settings, session_factory, dispatcher, embedding_provider):
    """Fully wired pipeline over the test database and fakes."""
    return build_container(
        settings=test_settings,
        session_factory=session_factory,
        dispatcher=dispatcher,
        embedding_provider=embedding_provider,
        adapters=[FileSourceAdapter(make_file_service()), ManualSourceAdapter()],
    )


# ================================
# Data Fixtures
# ================================

@pytest.fixture
def make_item(db_session: AsyncSession):
    """
    Factory for persisted content items.

    Usage:
        item = await make_item(content="...", processing_status=ProcessingStatus.PROCESSING)
    """
    async def _make_item(**overrides) -> ContentItem:
        values = {
            "source_id": "manual_1",
            "source_type": ContentSourceType.MANUAL,
            "source_metadata": {},
            "title": "Test content",
            "content": "",
            "content_type": "text/plain",
            "processing_status": ProcessingStatus.PENDING,
            "processing_metadata": {},
            "tags": [],
            "categories": [],
        }
        values.update(overrides)
        item = ContentItem(**values)
        db_session.add(item)
        await db_session.commit()
        await db_session.refresh(item)
        return item

    return _make_item


@pytest.fixture
def long_text() -> str:
    """About 1,600 characters of prose: four chunks with the default settings."""
    sentence = "Mitochondria produce most of the chemical energy needed by the cell. "
    return (sentence * 24).strip()


# ================================
# FastAPI Client Fixtures
# ================================

@pytest_asyncio.fixture
async def client(container, session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Async HTTP client for the API, wired to the test container.

    ASGITransport does not run the lifespan, so the container is put on
    ``app.state`` here and every request gets a session from the test
    database.

    Usage:
        async def test_something(client):
            response = await client.get("/api/v1/content")
            assert response.status_code == 200
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.container = container

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Clean up
    app.dependency_overrides.clear()
    del app.state.container
