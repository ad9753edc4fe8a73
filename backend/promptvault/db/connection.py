"""aiosqlite connection for the prompt store.

File databases run in WAL mode so session reads do not wait on import
writes. The schema is applied on every connect; all DDL is idempotent.
"""

import logging
from pathlib import Path

import aiosqlite

from promptvault.db.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


class Database:
    """Single shared aiosqlite connection with dict-style rows."""

    def __init__(self, connection: aiosqlite.Connection, path: str = IN_MEMORY) -> None:
        self._conn = connection
        self.path = path

    @classmethod
    async def connect(cls, path: str = "promptvault.db") -> "Database":
        if path != IN_MEMORY:
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        if path != IN_MEMORY:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=5000")
        await conn.executescript(SCHEMA_SQL)
        await conn.commit()
        logger.info("Prompt database ready at %s", path)
        return cls(conn, path)

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement and commit. Returns the affected row count."""
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor.rowcount

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        cursor = await self._conn.execute(sql, params)
        return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        cursor = await self._conn.execute(sql, params)
        return list(await cursor.fetchall())

    async def fetchval(self, sql: str, params: tuple = (), default: int = 0) -> int:
        """First column of the first row, for COUNT(*) style queries."""
        row = await self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    async def close(self) -> None:
        await self._conn.close()
