"""AI categorization with a two-tier cache and a heuristic fallback.

Lookup order per prompt: bounded in-process LRU, shared KV cache, backend. Prompts
the caches miss are sent to the backend in batches; a failed or slow batch,
or an answer missing entries, falls back to the heuristic categorizer for
the affected prompts. Only backend answers are cached.
"""

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Sequence

from pydantic import ValidationError

from promptvault.categorizer.backend import CategorizerBackend
from promptvault.categorizer.cache import KeyValueCache
from promptvault.categorizer.heuristics import heuristic_categorization, validate_categorization
from promptvault.models import Categorization, CategorizedPrompt, ExtractedPrompt

logger = logging.getLogger(__name__)

CACHE_PREFIX = "prompt:category:"
CACHE_TTL_SECONDS = 86400
MEMORY_CACHE_SIZE = 10_000


def cache_key(content: str) -> str:
    """Stable key over the full normalized content."""
    normalized = content.strip().lower()
    return CACHE_PREFIX + hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class AICategorizer:
    def __init__(
        self,
        backend: CategorizerBackend | None = None,
        cache: KeyValueCache | None = None,
        *,
        batch_size: int = 10,
        timeout: float = 30.0,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        memory_size: int = MEMORY_CACHE_SIZE,
    ) -> None:
        self._backend = backend
        self._shared = cache
        # key -> (monotonic expiry, categorization), least recently used first
        self._memory: OrderedDict[str, tuple[float, Categorization]] = OrderedDict()
        self._memory_size = max(1, memory_size)
        self._batch_size = max(1, batch_size)
        self._timeout = timeout
        self._ttl = ttl_seconds

    async def categorize_batch(
        self, prompts: Sequence[ExtractedPrompt]
    ) -> list[CategorizedPrompt]:
        """Categorize prompts, returning results in input order."""
        results: list[Categorization | None] = [None] * len(prompts)
        misses: list[int] = []

        for i, prompt in enumerate(prompts):
            cached = await self._lookup(cache_key(prompt.content))
            if cached is not None:
                results[i] = cached
            else:
                misses.append(i)

        for start in range(0, len(misses), self._batch_size):
            indices = misses[start:start + self._batch_size]
            batch = [prompts[i] for i in indices]
            for i, categorization in zip(indices, await self._categorize_uncached(batch)):
                results[i] = categorization

        return [
            CategorizedPrompt.from_parts(prompt, categorization)
            for prompt, categorization in zip(prompts, results)
            if categorization is not None
        ]

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------

    async def _categorize_uncached(
        self, batch: list[ExtractedPrompt]
    ) -> list[Categorization]:
        if self._backend is None:
            return [heuristic_categorization(p) for p in batch]

        try:
            raw = await asyncio.wait_for(self._backend.categorize(batch), self._timeout)
        except Exception as e:
            logger.warning(
                "Categorizer backend %s failed for %d prompts, using heuristics: %s",
                self._backend.name, len(batch), e,
            )
            return [heuristic_categorization(p) for p in batch]

        if len(raw) < len(batch):
            logger.warning(
                "Categorizer backend returned %d of %d entries", len(raw), len(batch)
            )

        categorized: list[Categorization] = []
        for i, prompt in enumerate(batch):
            entry = raw[i] if i < len(raw) else None
            if not entry:
                categorized.append(heuristic_categorization(prompt))
                continue
            result = validate_categorization(entry, prompt)
            await self._store(cache_key(prompt.content), result)
            categorized.append(result)
        return categorized

    # ------------------------------------------------------------------
    # Cache tiers
    # ------------------------------------------------------------------

    async def _lookup(self, key: str) -> Categorization | None:
        hit = self._remember_get(key)
        if hit is not None:
            return hit.model_copy(update={"source": "cache"})
        if self._shared is None:
            return None

        try:
            raw = await self._shared.get(key)
        except Exception as e:
            logger.warning("Shared cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            cached = Categorization.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

        self._remember(key, cached)
        return cached.model_copy(update={"source": "cache"})

    def _remember_get(self, key: str) -> Categorization | None:
        entry = self._memory.get(key)
        if entry is None:
            return None
        expires, categorization = entry
        if expires <= time.monotonic():
            del self._memory[key]
            return None
        self._memory.move_to_end(key)
        return categorization

    def _remember(self, key: str, categorization: Categorization) -> None:
        self._memory[key] = (time.monotonic() + self._ttl, categorization)
        self._memory.move_to_end(key)
        while len(self._memory) > self._memory_size:
            self._memory.popitem(last=False)

    async def _store(self, key: str, categorization: Categorization) -> None:
        self._remember(key, categorization)
        if self._shared is None:
            return
        try:
            await self._shared.setex(key, self._ttl, categorization.model_dump_json())
        except Exception as e:
            logger.warning("Shared cache write failed for %s: %s", key, e)
