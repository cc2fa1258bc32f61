"""Shared fixtures for the pipeline test suite."""

import pytest

from flowdrop.core.config import Settings
from flowdrop.core.database import Database
from flowdrop.services.pipeline.events import RecordingEventSink
from flowdrop.services.pipeline.generation import JobGenerationService
from flowdrop.services.pipeline.orchestrator import PipelineOrchestrator
from flowdrop.services.pipeline.repository import InMemoryJobRepository
from flowdrop.services.pipeline.sql_repository import SqlJobRepository

MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(
        database_url=MEMORY_DATABASE_URL,
        poll_interval=0.01,
        _env_file=None,
    )


@pytest.fixture
def repository():
    return InMemoryJobRepository()


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def service(repository, sink):
    return JobGenerationService(repository, sink)


@pytest.fixture
def orchestrator(service, repository, sink, settings):
    return PipelineOrchestrator(service, repository, sink, settings)


@pytest.fixture
async def database(settings):
    """Fresh in-memory SQLite database per test."""
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest.fixture
async def sql_repository(database):
    return SqlJobRepository(database)
