"""
Incremental embedding synchronization.

Provides:
- Fingerprint comparison against stored vectors (needs-embedding test)
- Chunked, batched embedding of changed entities only
- Orphan cleanup and model-migration helpers
- Staleness statistics and cosine similarity search
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import numpy as np
import structlog

from ctxkb.config import EmbeddingConfig
from ctxkb.embeddings.chunker import chunk_entity_for_embedding
from ctxkb.embeddings.fingerprint import build_embedding_content, hash_entity_content
from ctxkb.embeddings.provider import EmbeddingProvider, embed_texts_with_fallback
from ctxkb.models import Entity
from ctxkb.storage.embedding_store import EmbeddingStore, StoredEmbedding

logger = structlog.get_logger(__name__)

EmbedProgressCallback = Callable[[int, int, int], None]


@dataclass
class IncrementalEmbedResult:
    """Outcome of ``embed_incremental``."""

    embedded: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0


@dataclass
class EmbeddingStats:
    """Detailed embedding statistics for the current model."""

    count: int
    model_id: str
    dimensions: int
    stale_count: int = 0
    model_mismatch_count: int = 0
    by_model: dict[str, int] = field(default_factory=dict)


@dataclass
class SimilarityResult:
    """A search hit."""

    entity_id: str
    score: float


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


class EmbeddingManager:
    """
    Keeps stored vectors in sync with the entity catalog.

    An entity is (re-)embedded only when it has no vector for the current
    model or the stored fingerprint differs from its current one.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            store: Vector persistence.
            provider: Embedding provider.
            config: Batch and chunking settings.
        """
        self.store = store
        self.provider = provider
        self.config = config or EmbeddingConfig()

    @property
    def model_id(self) -> str:
        return self.provider.model_id

    def embedding_texts(self, entity: Entity) -> list[str]:
        """Texts to embed for an entity; more than one when it is chunked."""
        content = build_embedding_content(entity)
        if len(content) <= self.config.max_chars:
            return [content]
        return chunk_entity_for_embedding(
            entity,
            max_chars=self.config.max_chars,
            overlap_chars=self.config.overlap_chars,
            min_chunk_chars=self.config.min_chunk_chars,
        )

    async def needs_embedding(self, entity: Entity) -> bool:
        exists, stored_hash = await self.store.get_hash(entity.id, self.model_id)
        if not exists or stored_hash is None:
            return True
        return stored_hash != hash_entity_content(entity)

    async def get_entities_needing_embedding(self, entities: list[Entity]) -> list[Entity]:
        """Filter to missing or stale entities using one bulk hash read."""
        stored = await self.store.get_hashes(self.model_id)
        needing = []
        for entity in entities:
            stored_hash = stored.get(entity.id)
            if stored_hash is None or stored_hash != hash_entity_content(entity):
                needing.append(entity)
        return needing

    async def embed_incremental(
        self,
        entities: list[Entity],
        batch_size: int | None = None,
        on_progress: EmbedProgressCallback | None = None,
    ) -> IncrementalEmbedResult:
        """
        Embed only entities whose fingerprint changed.

        Entities whose vectors include a zero-vector placeholder are stored
        without a fingerprint, so the next run retries them.

        Args:
            entities: Current entity set.
            batch_size: Entities per provider batch.
            on_progress: Called with (completed, total_needing, skipped).

        Returns:
            Counts of embedded, skipped and failed entities.
        """
        needing = await self.get_entities_needing_embedding(entities)
        result = IncrementalEmbedResult(
            skipped=len(entities) - len(needing),
            total=len(entities),
        )
        if not needing:
            return result

        size = batch_size or self.config.batch_size

        for i in range(0, len(needing), size):
            batch = needing[i : i + size]

            texts: list[str] = []
            spans: list[tuple[int, int]] = []
            for entity in batch:
                entity_texts = self.embedding_texts(entity)
                spans.append((len(texts), len(texts) + len(entity_texts)))
                texts.extend(entity_texts)

            vectors, failed = await embed_texts_with_fallback(self.provider, texts)

            for entity, (start, end) in zip(batch, spans):
                had_failure = any(j in failed for j in range(start, end))
                await self.store.replace(
                    entity.id,
                    self.model_id,
                    vectors[start:end],
                    None if had_failure else hash_entity_content(entity),
                )
                if had_failure:
                    result.errors += 1
                else:
                    result.embedded += 1

            if on_progress:
                on_progress(i + len(batch), len(needing), result.skipped)

        logger.info(
            "Incremental embedding complete",
            embedded=result.embedded,
            skipped=result.skipped,
            errors=result.errors,
            model=self.model_id,
        )
        return result

    async def embed_entity(self, entity: Entity) -> None:
        """Embed one entity unconditionally."""
        vectors, failed = await embed_texts_with_fallback(
            self.provider, self.embedding_texts(entity)
        )
        await self.store.replace(
            entity.id,
            self.model_id,
            vectors,
            None if failed else hash_entity_content(entity),
        )

    async def embed_text(self, text: str) -> np.ndarray:
        return await self.provider.embed(text)

    async def cleanup_orphaned(self, valid_ids: set[str]) -> int:
        """
        Delete vectors whose entity is no longer in ``valid_ids``.

        Returns:
            Number of entities whose vectors were removed.
        """
        stored = await self.store.entity_ids(self.model_id)
        orphans = sorted(stored - set(valid_ids))
        removed = await self.store.delete_entities(orphans, self.model_id)
        if removed:
            logger.info("Removed orphaned embeddings", count=removed)
        return removed

    async def delete_for_entity(self, entity_id: str) -> None:
        await self.store.delete_entities([entity_id])

    async def has_embedding(self, entity_id: str) -> bool:
        exists, _ = await self.store.get_hash(entity_id, self.model_id)
        return exists

    async def get_embedding(self, entity_id: str) -> StoredEmbedding | None:
        """First-chunk vector of an entity for the current model."""
        rows = await self.store.get(entity_id, self.model_id)
        return rows[0] if rows else None

    async def get_stats(self) -> dict[str, int | str]:
        by_model = await self.store.count_by_model()
        return {
            "count": by_model.get(self.model_id, 0),
            "model_id": self.model_id,
            "dimensions": self.provider.dimensions,
        }

    async def get_detailed_stats(self) -> EmbeddingStats:
        by_model = await self.store.count_by_model()
        return EmbeddingStats(
            count=by_model.get(self.model_id, 0),
            model_id=self.model_id,
            dimensions=self.provider.dimensions,
            stale_count=await self.store.count_stale(self.model_id),
            model_mismatch_count=sum(
                count for model, count in by_model.items() if model != self.model_id
            ),
            by_model=dict(sorted(by_model.items(), key=lambda item: -item[1])),
        )

    async def get_model_mismatch_entity_ids(self) -> list[str]:
        return await self.store.entities_in_other_models(self.model_id)

    async def cleanup_old_model_vectors(self) -> int:
        """Drop vectors produced by other models; returns rows removed."""
        removed = await self.store.delete_other_models(self.model_id)
        if removed:
            logger.info("Removed vectors from previous models", count=removed)
        return removed

    async def find_similar_by_vector(
        self,
        vector: np.ndarray,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        """
        Rank entities by cosine similarity to ``vector``.

        Chunked entities score as their best-matching chunk.
        """
        best: dict[str, float] = {}
        for entity_id, stored in await self.store.iter_vectors(self.model_id):
            score = cosine_similarity(vector, stored)
            if score >= threshold and score > best.get(entity_id, float("-inf")):
                best[entity_id] = score

        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)
        return [SimilarityResult(entity_id=eid, score=score) for eid, score in ranked[:limit]]

    async def find_similar(
        self,
        query: str,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        vector = await self.embed_text(query)
        return await self.find_similar_by_vector(vector, limit=limit, threshold=threshold)
