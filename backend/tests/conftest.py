"""Shared pytest fixtures for the import pipeline tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from promptvault.categorizer.service import AICategorizer
from promptvault.db.connection import Database
from promptvault.importer.batch import BatchProcessor
from promptvault.importer.errors import ErrorClassifier
from promptvault.importer.quota import TierQuotaService
from promptvault.importer.router import (
    get_error_classifier,
    get_import_service,
    get_progress_tracker,
)
from promptvault.importer.service import ImportService
from promptvault.importer.store import SQLitePromptStore
from promptvault.main import app
from promptvault.progress import ProgressTracker


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    return SQLitePromptStore(db)


@pytest.fixture
async def tracker():
    progress = ProgressTracker()
    yield progress
    progress.shutdown()


@pytest.fixture
def classifier():
    """Classifier without recovery pauses."""
    return ErrorClassifier(memory_pause=0, network_pause=0)


@pytest.fixture
def batch_processor(tracker, classifier):
    return BatchProcessor(tracker, classifier)


@pytest.fixture
async def import_service(store, tracker, batch_processor):
    """ImportService with the real tier quota and heuristic categorization."""
    service = ImportService(
        store,
        TierQuotaService(store),
        AICategorizer(None),
        tracker,
        batch_processor,
    )
    yield service
    await service.shutdown()


@pytest.fixture
async def client(import_service, tracker, classifier):
    """Async test client with in-memory services wired into the app."""
    app.dependency_overrides[get_import_service] = lambda: import_service
    app.dependency_overrides[get_progress_tracker] = lambda: tracker
    app.dependency_overrides[get_error_classifier] = lambda: classifier
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
