"""
Storage layer for ctxkb.

Provides:
- SQLite entity catalog
- Index map (in-memory and SQLite)
- Embedding vectors with content fingerprints
- Graph persistence
"""

from ctxkb.storage.embedding_store import EmbeddingStore, StoredEmbedding
from ctxkb.storage.graph_store import GraphStore
from ctxkb.storage.index_store import IndexEntry, IndexStore, MemoryIndexStore, SQLiteIndexStore
from ctxkb.storage.sqlite_store import SQLiteEntityStore, SQLiteStore

__all__ = [
    "SQLiteStore",
    "SQLiteEntityStore",
    "IndexEntry",
    "IndexStore",
    "MemoryIndexStore",
    "SQLiteIndexStore",
    "EmbeddingStore",
    "StoredEmbedding",
    "GraphStore",
]
