"""
Per-file index map storage.

Provides:
- IndexEntry bookkeeping record (path, content hash, mtime, language, summary)
- IndexStore interface owned by one CodebaseIndexer per project
- In-memory and SQLite implementations
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from ctxkb.storage.sqlite_store import SQLiteStore

logger = structlog.get_logger(__name__)


@dataclass
class IndexEntry:
    """Bookkeeping for one indexed file."""

    path: str
    hash: str
    modified_at: str
    language: str
    summary: str  # JSON-serialized FileSummary


class IndexStore(ABC):
    """Path -> IndexEntry map plus a few run timestamps."""

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get(self, path: str) -> IndexEntry | None:
        pass

    @abstractmethod
    async def get_all(self) -> dict[str, IndexEntry]:
        pass

    @abstractmethod
    async def put_many(self, entries: list[IndexEntry]) -> None:
        pass

    @abstractmethod
    async def delete_many(self, paths: list[str]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def get_meta(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set_meta(self, key: str, value: str) -> None:
        pass

    async def put(self, entry: IndexEntry) -> None:
        await self.put_many([entry])

    async def delete(self, path: str) -> None:
        await self.delete_many([path])


class MemoryIndexStore(IndexStore):
    """Dictionary-backed index map, lost when the process exits."""

    def __init__(self) -> None:
        self._entries: dict[str, IndexEntry] = {}
        self._meta: dict[str, str] = {}

    async def get(self, path: str) -> IndexEntry | None:
        return self._entries.get(path)

    async def get_all(self) -> dict[str, IndexEntry]:
        return dict(self._entries)

    async def put_many(self, entries: list[IndexEntry]) -> None:
        for entry in entries:
            self._entries[entry.path] = entry

    async def delete_many(self, paths: list[str]) -> None:
        for path in paths:
            self._entries.pop(path, None)

    async def clear(self) -> None:
        self._entries.clear()
        self._meta.clear()

    async def get_meta(self, key: str) -> str | None:
        return self._meta.get(key)

    async def set_meta(self, key: str, value: str) -> None:
        self._meta[key] = value


class SQLiteIndexStore(SQLiteStore, IndexStore):
    """Index map persisted in the ``files`` table."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS files (
        path TEXT PRIMARY KEY,
        hash TEXT NOT NULL,
        modified_at TEXT NOT NULL,
        language TEXT NOT NULL,
        summary TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS index_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );
    """

    async def get(self, path: str) -> IndexEntry | None:
        async with self.db.execute(
            "SELECT path, hash, modified_at, language, summary FROM files WHERE path = ?",
            (path,),
        ) as cursor:
            row = await cursor.fetchone()
        return IndexEntry(*row) if row else None

    async def get_all(self) -> dict[str, IndexEntry]:
        async with self.db.execute(
            "SELECT path, hash, modified_at, language, summary FROM files"
        ) as cursor:
            rows = await cursor.fetchall()
        return {row[0]: IndexEntry(*row) for row in rows}

    async def put_many(self, entries: list[IndexEntry]) -> None:
        if not entries:
            return
        async with self.transaction() as conn:
            await conn.executemany(
                """
                INSERT OR REPLACE INTO files (path, hash, modified_at, language, summary)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(e.path, e.hash, e.modified_at, e.language, e.summary) for e in entries],
            )

    async def delete_many(self, paths: list[str]) -> None:
        if not paths:
            return
        async with self.transaction() as conn:
            await conn.executemany("DELETE FROM files WHERE path = ?", [(p,) for p in paths])

    async def clear(self) -> None:
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM files")
            await conn.execute("DELETE FROM index_meta")

    async def get_meta(self, key: str) -> str | None:
        async with self.db.execute(
            "SELECT value FROM index_meta WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_meta(self, key: str, value: str) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO index_meta (key, value) VALUES (?, ?)",
                (key, value),
            )
