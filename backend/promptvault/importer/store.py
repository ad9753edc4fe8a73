"""Prompt persistence used by the importer.

PromptStore is the seam the importer depends on; SQLitePromptStore is the
shipped implementation on top of the shared Database wrapper.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from uuid import uuid4

import aiosqlite

from promptvault.db.connection import Database
from promptvault.importer.errors import StoreError
from promptvault.models import CategorizedPrompt, StoredPrompt
from promptvault.utils.json import dumps_compact, parse_json_field

DEFAULT_TIER = "free"


class PromptStore(ABC):
    @abstractmethod
    async def insert_prompt(
        self,
        user_id: str,
        prompt: CategorizedPrompt,
        *,
        folder: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        """Persist one prompt atomically and return its id. Raises StoreError."""
        ...

    @abstractmethod
    async def find_existing_for_duplicate_check(
        self, user_id: str, limit: int = 100
    ) -> list[StoredPrompt]:
        """Most recent prompts of a user, newest first."""
        ...

    @abstractmethod
    async def count_prompts(self, user_id: str) -> int: ...

    async def get_user_tier(self, user_id: str) -> str:
        return DEFAULT_TIER


class SQLitePromptStore(PromptStore):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def insert_prompt(
        self,
        user_id: str,
        prompt: CategorizedPrompt,
        *,
        folder: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        prompt_id = str(uuid4())
        all_tags = list(dict.fromkeys([*prompt.tags, *(tags or [])]))
        metadata = prompt.metadata.model_dump(mode="json")
        try:
            await self._db.execute(
                """INSERT INTO prompts
                   (prompt_id, user_id, name, content, folder, category, tags,
                    complexity, source, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    prompt_id,
                    user_id,
                    prompt.suggested_name or prompt.title,
                    prompt.content,
                    folder or prompt.suggested_folder,
                    prompt.category,
                    dumps_compact(all_tags),
                    prompt.complexity.value,
                    prompt.metadata.source.value,
                    dumps_compact(metadata),
                    datetime.now(UTC).isoformat(),
                ),
            )
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to save prompt '{prompt.title}': {e}") from e
        return prompt_id

    async def find_existing_for_duplicate_check(
        self, user_id: str, limit: int = 100
    ) -> list[StoredPrompt]:
        rows = await self._db.fetchall(
            """SELECT prompt_id, name, content, folder, metadata FROM prompts
               WHERE user_id = ? ORDER BY created_at DESC LIMIT ?""",
            (user_id, limit),
        )
        return [
            StoredPrompt(
                id=row["prompt_id"],
                name=row["name"],
                content=row["content"],
                folder=row["folder"],
                metadata=parse_json_field(row["metadata"]),
            )
            for row in rows
        ]

    async def count_prompts(self, user_id: str) -> int:
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM prompts WHERE user_id = ?", (user_id,)
        )

    async def get_user_tier(self, user_id: str) -> str:
        row = await self._db.fetchone(
            "SELECT tier FROM user_tiers WHERE user_id = ?", (user_id,)
        )
        return row["tier"] if row is not None else DEFAULT_TIER

    async def set_user_tier(self, user_id: str, tier: str) -> None:
        await self._db.execute(
            """INSERT INTO user_tiers (user_id, tier, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET tier = excluded.tier,
               updated_at = excluded.updated_at""",
            (user_id, tier, datetime.now(UTC).isoformat()),
        )
