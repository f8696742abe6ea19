"""
SQLite storage for entity embeddings.

Vectors are stored as float32 BLOBs keyed by (entity_id, model_id,
chunk_index). Each row carries the content fingerprint that produced it;
rows without one are treated as stale.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime

import numpy as np
import structlog

from ctxkb.storage.sqlite_store import SQLiteStore

logger = structlog.get_logger(__name__)


@dataclass
class StoredEmbedding:
    """A persisted vector for one chunk of an entity."""

    id: str
    entity_id: str
    model_id: str
    vector: np.ndarray
    content_hash: str | None
    chunk_index: int = 0
    created_at: str | None = None


def _embedding_id(entity_id: str, model_id: str, chunk_index: int) -> str:
    key = f"{entity_id}:{model_id}:{chunk_index}"
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class EmbeddingStore(SQLiteStore):
    """Vector rows with fingerprints for incremental re-embedding."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS embeddings (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL,
        model_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL DEFAULT 0,
        dimensions INTEGER NOT NULL,
        vector BLOB NOT NULL,
        content_hash TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (entity_id, model_id, chunk_index)
    );

    CREATE INDEX IF NOT EXISTS idx_embeddings_entity ON embeddings(entity_id);
    CREATE INDEX IF NOT EXISTS idx_embeddings_model ON embeddings(model_id);
    """

    async def replace(
        self,
        entity_id: str,
        model_id: str,
        vectors: list[np.ndarray],
        content_hash: str | None,
    ) -> None:
        """
        Replace every chunk vector of an entity for a model.

        Args:
            entity_id: Owning entity.
            model_id: Model that produced the vectors.
            vectors: One vector per chunk, in chunk order.
            content_hash: Fingerprint of the embedded content, or None.
        """
        now = datetime.utcnow().isoformat()
        async with self.transaction() as conn:
            await conn.execute(
                "DELETE FROM embeddings WHERE entity_id = ? AND model_id = ?",
                (entity_id, model_id),
            )
            await conn.executemany(
                """
                INSERT INTO embeddings (
                    id, entity_id, model_id, chunk_index, dimensions,
                    vector, content_hash, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        _embedding_id(entity_id, model_id, i),
                        entity_id,
                        model_id,
                        i,
                        int(np.asarray(vector).shape[0]),
                        _to_blob(vector),
                        content_hash,
                        now,
                    )
                    for i, vector in enumerate(vectors)
                ],
            )

    async def get_hashes(self, model_id: str) -> dict[str, str | None]:
        """Fingerprint per embedded entity for a model (None for legacy rows)."""
        async with self.db.execute(
            "SELECT entity_id, content_hash FROM embeddings WHERE model_id = ? AND chunk_index = 0",
            (model_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def get_hash(self, entity_id: str, model_id: str) -> tuple[bool, str | None]:
        """Return (exists, fingerprint) for an entity's first chunk."""
        async with self.db.execute(
            """
            SELECT content_hash FROM embeddings
            WHERE entity_id = ? AND model_id = ? AND chunk_index = 0
            """,
            (entity_id, model_id),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return False, None
        return True, row[0]

    async def get(self, entity_id: str, model_id: str) -> list[StoredEmbedding]:
        async with self.db.execute(
            """
            SELECT id, entity_id, model_id, vector, content_hash, chunk_index, created_at
            FROM embeddings WHERE entity_id = ? AND model_id = ?
            ORDER BY chunk_index
            """,
            (entity_id, model_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            StoredEmbedding(
                id=row[0],
                entity_id=row[1],
                model_id=row[2],
                vector=_from_blob(row[3]),
                content_hash=row[4],
                chunk_index=row[5],
                created_at=row[6],
            )
            for row in rows
        ]

    async def iter_vectors(self, model_id: str) -> list[tuple[str, np.ndarray]]:
        """All (entity_id, vector) pairs for a model."""
        async with self.db.execute(
            "SELECT entity_id, vector FROM embeddings WHERE model_id = ?",
            (model_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [(row[0], _from_blob(row[1])) for row in rows]

    async def entity_ids(self, model_id: str | None = None) -> set[str]:
        if model_id is None:
            query, params = "SELECT DISTINCT entity_id FROM embeddings", ()
        else:
            query = "SELECT DISTINCT entity_id FROM embeddings WHERE model_id = ?"
            params = (model_id,)
        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def delete_entities(self, entity_ids: list[str], model_id: str | None = None) -> int:
        """Delete all vectors of the given entities; returns entities removed."""
        if not entity_ids:
            return 0
        async with self.transaction() as conn:
            for entity_id in entity_ids:
                if model_id is None:
                    await conn.execute("DELETE FROM embeddings WHERE entity_id = ?", (entity_id,))
                else:
                    await conn.execute(
                        "DELETE FROM embeddings WHERE entity_id = ? AND model_id = ?",
                        (entity_id, model_id),
                    )
        return len(entity_ids)

    async def delete_other_models(self, model_id: str) -> int:
        """Delete rows produced by any other model; returns rows removed."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM embeddings WHERE model_id != ?", (model_id,)
            )
            return cursor.rowcount

    async def count_by_model(self) -> dict[str, int]:
        """Embedded entity count per model."""
        async with self.db.execute(
            "SELECT model_id, COUNT(DISTINCT entity_id) FROM embeddings GROUP BY model_id"
        ) as cursor:
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def count_stale(self, model_id: str) -> int:
        """Entities whose vectors carry no fingerprint."""
        async with self.db.execute(
            """
            SELECT COUNT(DISTINCT entity_id) FROM embeddings
            WHERE model_id = ? AND content_hash IS NULL
            """,
            (model_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def entities_in_other_models(self, model_id: str) -> list[str]:
        """Entities with vectors produced by a model other than ``model_id``."""
        async with self.db.execute(
            "SELECT DISTINCT entity_id FROM embeddings WHERE model_id != ? ORDER BY entity_id",
            (model_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
