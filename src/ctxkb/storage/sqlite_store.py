"""
SQLite storage for entities.

Provides:
- Shared aiosqlite connection handling (WAL, schema bootstrap, transactions)
- Entity persistence with upsert by qualified name
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from ctxkb.errors import CtxkbError, NotInitializedError
from ctxkb.interfaces import EntityStore
from ctxkb.models import Entity, EntityInput

logger = structlog.get_logger(__name__)


class SQLiteStore:
    """
    Base class for aiosqlite-backed stores.

    Subclasses set ``SCHEMA``; it is applied with ``executescript`` on
    initialization.
    """

    SCHEMA = ""

    def __init__(self, db_path: str | Path, wal_mode: bool = True) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            wal_mode: Enable WAL journaling.
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create schema."""
        if self._db is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode for explicit transactions
        )
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.execute("PRAGMA busy_timeout=5000")

        await self._db.executescript(self.SCHEMA)
        logger.debug("Store initialized", store=type(self).__name__, db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise NotInitializedError(f"{type(self).__name__} not initialized")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for transactions."""
        db = self.db
        async with self._lock:
            await db.execute("BEGIN")
            try:
                yield db
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise


def _generate_entity_id(qualified_name: str) -> str:
    return hashlib.sha256(qualified_name.encode()).hexdigest()[:16]


class SQLiteEntityStore(SQLiteStore, EntityStore):
    """Entity catalog keyed by id, unique by qualified name."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        name TEXT NOT NULL,
        qualified_name TEXT NOT NULL UNIQUE,
        file_path TEXT,
        start_line INTEGER,
        end_line INTEGER,
        content TEXT,
        summary TEXT,
        metadata TEXT DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_entities_file_path ON entities(file_path);
    CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
    """

    UPDATABLE_FIELDS = frozenset(
        {"type", "name", "file_path", "start_line", "end_line", "content", "summary", "metadata"}
    )

    @staticmethod
    def _row_to_entity(row: aiosqlite.Row) -> Entity:
        return Entity(
            id=row["id"],
            type=row["type"],
            name=row["name"],
            qualified_name=row["qualified_name"],
            file_path=row["file_path"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            content=row["content"],
            summary=row["summary"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def create(self, entity: EntityInput) -> Entity:
        """
        Insert or replace an entity by qualified name.

        The id is derived from the qualified name, so re-creating an entity
        keeps its id and its embeddings stay addressable.
        """
        entity_id = _generate_entity_id(entity.qualified_name)
        now = datetime.utcnow().isoformat()

        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO entities (
                    id, type, name, qualified_name, file_path, start_line,
                    end_line, content, summary, metadata, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(qualified_name) DO UPDATE SET
                    type = excluded.type,
                    name = excluded.name,
                    file_path = excluded.file_path,
                    start_line = excluded.start_line,
                    end_line = excluded.end_line,
                    content = excluded.content,
                    summary = excluded.summary,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (
                    entity_id,
                    entity.type,
                    entity.name,
                    entity.qualified_name,
                    entity.file_path,
                    entity.start_line,
                    entity.end_line,
                    entity.content,
                    entity.summary,
                    json.dumps(entity.metadata or {}),
                    now,
                    now,
                ),
            )

        created = await self.get_by_qualified_name(entity.qualified_name)
        if created is None:
            raise CtxkbError(f"Entity {entity.qualified_name} missing after upsert")
        return created

    async def update(self, entity_id: str, **fields: Any) -> Entity | None:
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entity fields: {sorted(unknown)}")

        if fields:
            if "metadata" in fields:
                fields["metadata"] = json.dumps(fields["metadata"] or {})
            assignments = ", ".join(f"{name} = ?" for name in fields)
            params = [*fields.values(), datetime.utcnow().isoformat(), entity_id]
            async with self.transaction() as conn:
                await conn.execute(
                    f"UPDATE entities SET {assignments}, updated_at = ? WHERE id = ?",
                    params,
                )

        return await self.get(entity_id)

    async def delete(self, entity_id: str) -> bool:
        async with self.transaction() as conn:
            cursor = await conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
            return cursor.rowcount > 0

    async def delete_by_file(self, file_path: str) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM entities WHERE file_path = ?", (file_path,)
            )
            return cursor.rowcount

    async def get(self, entity_id: str) -> Entity | None:
        async with self.db.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_entity(row) if row else None

    async def get_by_qualified_name(self, qualified_name: str) -> Entity | None:
        async with self.db.execute(
            "SELECT * FROM entities WHERE qualified_name = ?", (qualified_name,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_entity(row) if row else None

    async def list_all(self) -> list[Entity]:
        async with self.db.execute("SELECT * FROM entities ORDER BY qualified_name") as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_entity(row) for row in rows]

    async def list_by_file(self, file_path: str) -> list[Entity]:
        async with self.db.execute(
            "SELECT * FROM entities WHERE file_path = ? ORDER BY start_line", (file_path,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_entity(row) for row in rows]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM entities") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
