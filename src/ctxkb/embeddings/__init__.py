"""
Embedding modules for ctxkb.

Provides:
- Content fingerprints for change detection
- Overlapping chunker for long entities
- Offline and remote embedding providers
- Incremental embedding manager
"""

from ctxkb.embeddings.chunker import Chunk, ChunkResult, chunk_entity, chunk_entity_for_embedding
from ctxkb.embeddings.fingerprint import build_embedding_content, hash_content, hash_entity_content
from ctxkb.embeddings.manager import EmbeddingManager, EmbeddingStats, IncrementalEmbedResult
from ctxkb.embeddings.provider import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_provider,
    embed_texts_with_fallback,
)

__all__ = [
    "Chunk",
    "ChunkResult",
    "chunk_entity",
    "chunk_entity_for_embedding",
    "build_embedding_content",
    "hash_content",
    "hash_entity_content",
    "EmbeddingManager",
    "EmbeddingStats",
    "IncrementalEmbedResult",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "create_provider",
    "embed_texts_with_fallback",
]
