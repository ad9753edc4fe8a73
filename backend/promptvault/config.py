"""Runtime settings read from environment variables.

The FastAPI lifespan loads backend/.env first, so secrets stay out of the
shell profile. Every field has a default that works for local development.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from promptvault.importer.quota import TIERS_PATH


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class Settings:
    database_path: str = "promptvault.db"
    redis_url: str | None = None
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    categorizer_model: str | None = None
    categorizer_timeout: float = 30.0
    max_concurrency: int = 3
    chunk_size: int = 10
    max_retries: int = 2
    session_retention_seconds: float = 300.0
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    tiers_path: Path = TIERS_PATH
    host: str = "127.0.0.1"
    port: int = 8000


def load_settings() -> Settings:
    origins = os.environ.get("CORS_ORIGINS")
    return Settings(
        database_path=os.environ.get("DATABASE_PATH", "promptvault.db"),
        redis_url=os.environ.get("REDIS_URL") or None,
        openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
        categorizer_model=os.environ.get("CATEGORIZER_MODEL") or None,
        categorizer_timeout=_float("CATEGORIZER_TIMEOUT", 30.0),
        max_concurrency=_int("IMPORT_MAX_CONCURRENCY", 3),
        chunk_size=_int("IMPORT_CHUNK_SIZE", 10),
        max_retries=_int("IMPORT_MAX_RETRIES", 2),
        session_retention_seconds=_float("SESSION_RETENTION_SECONDS", 300.0),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        cors_origins=(
            [o.strip() for o in origins.split(",") if o.strip()]
            if origins
            else ["http://localhost:5173"]
        ),
        tiers_path=Path(os.environ["TIERS_PATH"]) if os.environ.get("TIERS_PATH") else TIERS_PATH,
        host=os.environ.get("HOST") or "127.0.0.1",
        port=_int("PORT", 8000),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
