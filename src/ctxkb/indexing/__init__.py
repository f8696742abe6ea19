"""
Indexing modules for ctxkb.

Provides:
- Ignore pattern resolution (.gitignore, .ctxignore, defaults)
- Deterministic file discovery and content hashing
- In-memory incremental indexing with bounded concurrency
- Checkpointed streaming traversal for large trees
"""

from ctxkb.indexing.discovery import detect_language, discover_files, hash_file_bytes
from ctxkb.indexing.ignore_resolver import (
    DEFAULT_EXCLUDE,
    IgnoreResolver,
    gitignore_to_globs,
    parse_ignore_file,
)
from ctxkb.indexing.indexer import CodebaseIndexer, IndexOptions, IndexResult
from ctxkb.indexing.streaming import (
    FileProcessResult,
    IndexingCheckpoint,
    StreamingFileProcessor,
    StreamingOptions,
)

__all__ = [
    "DEFAULT_EXCLUDE",
    "IgnoreResolver",
    "gitignore_to_globs",
    "parse_ignore_file",
    "discover_files",
    "detect_language",
    "hash_file_bytes",
    "CodebaseIndexer",
    "IndexOptions",
    "IndexResult",
    "StreamingFileProcessor",
    "StreamingOptions",
    "IndexingCheckpoint",
    "FileProcessResult",
]
