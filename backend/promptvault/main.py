"""PromptVault import service: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptvault.categorizer.backend import (
    AnthropicCategorizerBackend,
    CategorizerBackend,
    OpenAICategorizerBackend,
)
from promptvault.categorizer.cache import RedisCache
from promptvault.categorizer.service import AICategorizer
from promptvault.config import Settings, configure_logging, load_settings
from promptvault.db.connection import Database
from promptvault.importer.batch import BatchOptions, BatchProcessor
from promptvault.importer.errors import ErrorClassifier
from promptvault.importer.quota import TierQuotaService, load_tiers
from promptvault.importer.router import (
    get_error_classifier,
    get_import_service,
    get_progress_tracker,
)
from promptvault.importer.router import router as import_router
from promptvault.importer.service import ImportService
from promptvault.importer.store import SQLitePromptStore
from promptvault.progress import ProgressTracker

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def build_categorizer_backend(settings: Settings) -> CategorizerBackend | None:
    """OpenAI if configured, else Anthropic, else None (heuristics only)."""
    if settings.openai_api_key:
        return OpenAICategorizerBackend(
            api_key=settings.openai_api_key,
            model=settings.categorizer_model or "gpt-4o-mini",
        )
    if settings.anthropic_api_key:
        return AnthropicCategorizerBackend(
            api_key=settings.anthropic_api_key,
            model=settings.categorizer_model or "claude-haiku-4-5-20251001",
        )
    return None


def load_env_settings(env_path: Path = ENV_PATH) -> Settings:
    """Load backend/.env (secrets stay out of the shell profile), then read settings."""
    load_dotenv(env_path)
    return load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database lifecycle and service wiring."""
    settings = load_env_settings()
    configure_logging(settings.log_level)

    db = await Database.connect(settings.database_path)
    store = SQLitePromptStore(db)
    tracker = ProgressTracker(retention_seconds=settings.session_retention_seconds)
    classifier = ErrorClassifier()

    backend = build_categorizer_backend(settings)
    cache = RedisCache.from_url(settings.redis_url) if settings.redis_url else None
    categorizer = AICategorizer(backend, cache, timeout=settings.categorizer_timeout)
    if backend is None:
        logger.warning("No categorizer API key configured; using heuristic categorization")

    batch = BatchProcessor(tracker, classifier)
    quota = TierQuotaService(store, tiers=load_tiers(settings.tiers_path))
    batch_defaults = BatchOptions(
        max_concurrency=settings.max_concurrency,
        chunk_size=settings.chunk_size,
        max_retries=settings.max_retries,
    )
    import_svc = ImportService(store, quota, categorizer, tracker, batch, batch_defaults)

    app.dependency_overrides[get_import_service] = lambda: import_svc
    app.dependency_overrides[get_progress_tracker] = lambda: tracker
    app.dependency_overrides[get_error_classifier] = lambda: classifier

    app.state.db = db
    yield

    await import_svc.shutdown()
    tracker.shutdown()
    if cache is not None:
        await cache.close()
    await db.close()


app = FastAPI(
    title="PromptVault Import",
    description="Multi-source prompt import pipeline for AI conversation exports",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=load_env_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(import_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}


def run() -> None:
    """Serve the app with uvicorn. Entry point for the promptvault-server script."""
    settings = load_env_settings()
    uvicorn.run("promptvault.main:app", host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
