"""
Knowledge base service.

Wires the ignore resolver, indexer, streaming processor, embedding
synchronizer and relationship graph to their SQLite stores and runs the
full refresh pipeline.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import structlog

from ctxkb.config import Config
from ctxkb.embeddings.manager import EmbeddingManager, IncrementalEmbedResult
from ctxkb.embeddings.provider import EmbeddingProvider, create_provider
from ctxkb.graph.engine import GraphStats, RelationshipGraph
from ctxkb.indexing.indexer import CodebaseIndexer, IndexOptions, IndexResult
from ctxkb.indexing.streaming import StreamingFileProcessor, StreamingOptions
from ctxkb.interfaces import Parser, Summarizer
from ctxkb.logging_setup import configure_logging
from ctxkb.storage.embedding_store import EmbeddingStore
from ctxkb.storage.graph_store import GraphStore
from ctxkb.storage.index_store import SQLiteIndexStore
from ctxkb.storage.sqlite_store import SQLiteEntityStore

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Combined outcome of an index -> embed -> graph refresh."""

    index: IndexResult
    embedding: IncrementalEmbedResult
    orphans_removed: int
    graph: GraphStats


@dataclass
class StreamingRunResult:
    """Outcome of a checkpointed streaming run."""

    processed_files: int = 0
    batches: int = 0
    failed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    embedding: IncrementalEmbedResult = field(default_factory=IncrementalEmbedResult)


class KnowledgeBaseService:
    """
    Main service orchestrating indexing, embeddings and the graph.

    Use ``session()`` to open and close the stores.
    """

    def __init__(
        self,
        config: Config,
        parser: Parser,
        summarizer: Summarizer,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Configuration instance.
            parser: Parser collaborator.
            summarizer: Summarizer collaborator.
            provider: Embedding provider; built from config if omitted.
        """
        self.config = config
        self.parser = parser
        self.summarizer = summarizer
        self.provider = provider or create_provider(config)

        db_path = config.db_path
        wal = config.storage.wal_mode
        self.entity_store = SQLiteEntityStore(db_path, wal_mode=wal)
        self.index_store = SQLiteIndexStore(db_path, wal_mode=wal)
        self.embedding_store = EmbeddingStore(db_path, wal_mode=wal)
        self.graph_store = GraphStore(db_path, wal_mode=wal)

        self.indexer = CodebaseIndexer(
            config.project_root,
            parser,
            summarizer,
            index_store=self.index_store,
            entity_store=self.entity_store,
            config=config.indexing,
        )
        self.embeddings = EmbeddingManager(self.embedding_store, self.provider, config.embedding)
        self.graph = RelationshipGraph(
            include_external=config.graph.include_external,
            types=config.graph.types,
            hub_limit=config.graph.hub_limit,
        )
        self._initialized = False

    async def initialize(self) -> None:
        """Open stores and load the persisted graph."""
        if self._initialized:
            return

        configure_logging(self.config.log_level)
        self.config.ensure_directories()

        for store in (self.entity_store, self.index_store, self.embedding_store, self.graph_store):
            await store.initialize()
        await self.provider.initialize()
        edges = await self.graph_store.load(self.graph)

        self._initialized = True
        logger.info(
            "Knowledge base initialized",
            project_root=str(self.config.project_root),
            db_path=str(self.config.db_path),
            graph_edges=edges,
        )

    async def shutdown(self) -> None:
        await self.provider.close()
        for store in (self.graph_store, self.embedding_store, self.index_store, self.entity_store):
            await store.close()
        self._initialized = False
        logger.info("Knowledge base closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["KnowledgeBaseService"]:
        """Context manager for service lifecycle."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def _sync_embeddings(self) -> tuple[IncrementalEmbedResult, int]:
        entities = await self.entity_store.list_all()
        result = await self.embeddings.embed_incremental(entities)
        removed = await self.embeddings.cleanup_orphaned({e.id for e in entities})
        return result, removed

    async def index_project(
        self,
        force: bool = False,
        on_progress: Callable[[int, int, str], None] | None = None,
    ) -> PipelineResult:
        """
        Refresh every derived view.

        Reindexes changed files, embeds changed entities, removes orphaned
        vectors and adds graph edges from the reparsed files.

        Args:
            force: Reparse every file, even unchanged ones.
            on_progress: Per-file progress callback.

        Returns:
            Combined pipeline statistics.
        """
        if not self._initialized:
            await self.initialize()

        options = IndexOptions(force=force, on_progress=on_progress)
        if force:
            index_result = await self.indexer.index_all(options)
        else:
            index_result = await self.indexer.update_index(options)

        embed_result, removed = await self._sync_embeddings()

        for parse_result in self.indexer.last_parse_results.values():
            self.graph.extract_from_parse_result(parse_result)
        await self.graph_store.save(self.graph)

        graph_stats = self.graph.get_stats()
        logger.info(
            "Pipeline complete",
            added=len(index_result.added),
            modified=len(index_result.modified),
            deleted=len(index_result.deleted),
            embedded=embed_result.embedded,
            orphans_removed=removed,
            graph_edges=graph_stats.edge_count,
        )
        return PipelineResult(
            index=index_result,
            embedding=embed_result,
            orphans_removed=removed,
            graph=graph_stats,
        )

    def streaming_processor(self, **overrides) -> StreamingFileProcessor:
        """Build a streaming processor from the indexing configuration."""
        cfg = self.config.indexing
        options = StreamingOptions(
            file_batch_size=cfg.file_batch_size,
            max_file_size_kb=cfg.max_file_size_kb,
            max_entities_per_file=cfg.max_entities_per_file,
            checkpoint_interval=cfg.checkpoint_interval,
            exclude=list(cfg.extra_exclude),
            use_gitignore=cfg.use_gitignore,
            use_ctxignore=cfg.use_ctxignore,
            state_file=self.config.checkpoint_path,
        )
        for name, value in overrides.items():
            setattr(options, name, value)
        return StreamingFileProcessor(
            self.config.project_root, self.parser, self.summarizer, options
        )

    async def index_streaming(self, processor: StreamingFileProcessor | None = None) -> StreamingRunResult:
        """
        Checkpointed run for large trees.

        Each batch's entities and graph edges are persisted before the next
        batch is pulled; embeddings are synchronized once at the end.
        """
        if not self._initialized:
            await self.initialize()

        processor = processor or self.streaming_processor()
        result = StreamingRunResult()

        async for batch in processor.process_files():
            for item in batch:
                await self.indexer.store_file_summary(item.file_path, item.summary, item.source_code)
                self.graph.extract_from_parse_result(item.parse_result)
            await self.graph_store.save(self.graph)
            result.batches += 1

        state = processor.get_state()
        result.processed_files = state.processed_files
        result.failed_files = state.failed_files
        result.skipped_files = state.skipped_files
        result.embedding, _ = await self._sync_embeddings()
        return result
