"""
In-memory codebase indexer.

Provides:
- File classification (added / modified / unchanged / deleted) against an index map
- Bounded-concurrency processing in sequential groups
- File and symbol entity persistence through an EntityStore
- Index statistics and symbol search
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import structlog

from ctxkb.config import IndexingConfig
from ctxkb.indexing.discovery import (
    detect_language,
    discover_files,
    hash_bytes,
    hash_file_bytes,
)
from ctxkb.indexing.ignore_resolver import IgnoreResolver
from ctxkb.interfaces import EntityStore, Parser, Summarizer
from ctxkb.models import EntityInput, FileSummary, ParseResult
from ctxkb.storage.index_store import IndexEntry, IndexStore, MemoryIndexStore

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]

# Maximum source lines stored per symbol type
MAX_LINES_BY_TYPE = {
    "function": 500,
    "method": 300,
    "class": 1000,
    "interface": 200,
    "type": 100,
}
DEFAULT_MAX_LINES = 200
TRUNCATION_MARKER = "  // ... (truncated)"

IMPORT_PREFIXES = ("import ", "from ", "require(")
COMMENT_PREFIXES = ("//", "/*", "*", "#")


@dataclass
class IndexOptions:
    """Options for a full or incremental index run."""

    exclude: list[str] = field(default_factory=list)
    force: bool = False
    concurrency: int | None = None
    on_progress: ProgressCallback | None = None


@dataclass
class FileError:
    """A per-file failure recorded during a run."""

    path: str
    error: str


@dataclass
class IndexStats:
    """Aggregate view of the index map."""

    total_files: int = 0
    total_symbols: int = 0
    by_language: dict[str, int] = field(default_factory=dict)
    last_full_index: str | None = None
    last_update: str | None = None


@dataclass
class IndexResult:
    """Outcome of ``index_all`` / ``update_index``."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    duration: float = 0.0
    stats: IndexStats = field(default_factory=IndexStats)


@dataclass
class IndexedFile:
    """Listing row for an indexed file."""

    path: str
    hash: str
    modified_at: str
    language: str
    symbol_count: int


@dataclass
class _FileOutcome:
    """Result produced by a worker; committed by the indexer."""

    path: str
    status: str
    entry: IndexEntry | None = None
    summary: FileSummary | None = None
    parse_result: ParseResult | None = None
    source: str = ""
    error: str | None = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_symbol_code(source_lines: list[str], symbol_type: str, start_line: int, end_line: int) -> str:
    """
    Slice a symbol's source by line range, capped per symbol type.

    Lines are 1-based and inclusive.
    """
    start = max(start_line - 1, 0)
    max_lines = MAX_LINES_BY_TYPE.get(symbol_type, DEFAULT_MAX_LINES)
    end = min(end_line, start + max_lines)

    code = "\n".join(source_lines[start:end])
    if end_line > end:
        code += "\n" + TRUNCATION_MARKER
    return code


def find_import_end(lines: list[str]) -> int:
    """Return the line count of the leading import block (first 50 lines)."""
    last_import = 0
    for i, raw in enumerate(lines[:50]):
        line = raw.strip()
        is_import = line.startswith(IMPORT_PREFIXES) or (
            line.startswith("const ") and "require(" in line
        )
        if is_import:
            last_import = i + 1
        elif last_import and line and not line.startswith(COMMENT_PREFIXES):
            break
    return last_import


def extract_file_overview(source: str, summary: FileSummary) -> str:
    """Imports block, export list and the first top-level signatures."""
    lines = source.split("\n")
    parts: list[str] = []

    import_end = find_import_end(lines)
    if import_end:
        parts.append("\n".join(lines[:import_end]))
        parts.append("")

    if summary.exports:
        parts.append(f"// Exports: {', '.join(summary.exports)}")

    for symbol in summary.symbols[:10]:
        if symbol.signature:
            parts.append(symbol.signature)

    return "\n".join(parts)


class CodebaseIndexer:
    """
    Keeps a path -> IndexEntry map in sync with a source tree.

    Files are processed in fixed-size groups; each group runs concurrently
    and is joined before its results are committed to the index map and the
    entity store. Workers never mutate shared state.
    """

    def __init__(
        self,
        project_root: str | Path,
        parser: Parser,
        summarizer: Summarizer,
        index_store: IndexStore | None = None,
        entity_store: EntityStore | None = None,
        config: IndexingConfig | None = None,
    ) -> None:
        """
        Initialize the indexer.

        Args:
            project_root: Root of the source tree.
            parser: Parser collaborator.
            summarizer: Summarizer collaborator.
            index_store: Index map owned by this indexer. In-memory if omitted.
            entity_store: Optional entity persistence.
            config: Indexing settings.
        """
        self.project_root = Path(project_root).resolve()
        self.parser = parser
        self.summarizer = summarizer
        self.index_store = index_store or MemoryIndexStore()
        self.entity_store = entity_store
        self.config = config or IndexingConfig()
        self.last_parse_results: dict[str, ParseResult] = {}

    def _resolver(self, exclude: list[str] | None = None) -> IgnoreResolver:
        return IgnoreResolver(
            self.project_root,
            extra_exclude=[*self.config.extra_exclude, *(exclude or [])],
            use_vcs_ignore=self.config.use_gitignore,
            use_tool_ignore=self.config.use_ctxignore,
        )

    def _relative(self, path: str | Path) -> str:
        p = Path(path)
        if p.is_absolute():
            return p.resolve().relative_to(self.project_root).as_posix()
        return p.as_posix()

    async def discover(self, exclude: list[str] | None = None) -> list[str]:
        """Relative paths of supported, non-ignored files in stable order."""
        files = await asyncio.to_thread(
            discover_files,
            self.project_root,
            self._resolver(exclude),
            self.parser.is_supported,
        )
        return [f.relative_to(self.project_root).as_posix() for f in files]

    async def index_all(self, options: IndexOptions | None = None) -> IndexResult:
        """
        Index every discovered file and reconcile the index map.

        Args:
            options: Run options; ``force`` reparses unchanged files.

        Returns:
            Per-path classification, errors, duration and stats.
        """
        result = await self._run(options or IndexOptions())
        now = _utc_now()
        await self.index_store.set_meta("last_full_index", now)
        await self.index_store.set_meta("last_update", now)
        result.stats = await self.get_stats()
        return result

    async def update_index(self, options: IndexOptions | None = None) -> IndexResult:
        """Incremental run: only new or changed files are reparsed."""
        result = await self._run(options or IndexOptions())
        await self.index_store.set_meta("last_update", _utc_now())
        result.stats = await self.get_stats()
        return result

    async def _run(self, options: IndexOptions) -> IndexResult:
        started = time.monotonic()
        result = IndexResult()
        self.last_parse_results = {}

        files = await self.discover(options.exclude)
        prior = await self.index_store.get_all()
        concurrency = options.concurrency or self.config.concurrency
        total = len(files)
        completed = 0

        logger.info(
            "Index run started",
            root=str(self.project_root),
            files=total,
            force=options.force,
            concurrency=concurrency,
        )

        for i in range(0, total, concurrency):
            group = files[i : i + concurrency]
            outcomes = await asyncio.gather(
                *(self._process_file(path, prior.get(path), options.force) for path in group)
            )

            await self._commit(outcomes, result)

            for outcome in outcomes:
                completed += 1
                if options.on_progress:
                    options.on_progress(completed, total, outcome.path)

        discovered = set(files)
        deleted = sorted(path for path in prior if path not in discovered)
        if deleted:
            await self.index_store.delete_many(deleted)
            if self.entity_store:
                for path in deleted:
                    await self.entity_store.delete_by_file(path)
        result.deleted = deleted

        result.duration = time.monotonic() - started
        logger.info(
            "Index run complete",
            added=len(result.added),
            modified=len(result.modified),
            deleted=len(result.deleted),
            unchanged=len(result.unchanged),
            errors=len(result.errors),
            duration=round(result.duration, 3),
        )
        return result

    async def _process_file(
        self,
        path: str,
        prior: IndexEntry | None,
        force: bool,
    ) -> _FileOutcome:
        absolute = self.project_root / path
        try:
            raw = await asyncio.to_thread(absolute.read_bytes)
            digest = hash_bytes(raw)

            if prior is not None and prior.hash == digest and not force:
                return _FileOutcome(path=path, status="unchanged")

            parse_result = await self.parser.parse_file(absolute)
            parse_result.file_path = path
            summary = await self.summarizer.summarize_file(parse_result)
            stat = await asyncio.to_thread(absolute.stat)

            entry = IndexEntry(
                path=path,
                hash=digest,
                modified_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
                language=summary.language or detect_language(path),
                summary=json.dumps(summary.to_dict()),
            )
            return _FileOutcome(
                path=path,
                status="modified" if prior is not None else "added",
                entry=entry,
                summary=summary,
                parse_result=parse_result,
                source=raw.decode("utf-8", errors="replace"),
            )
        except Exception as e:
            logger.warning("Failed to index file", path=path, error=str(e))
            return _FileOutcome(path=path, status="error", error=str(e))

    async def _commit(self, outcomes: list[_FileOutcome], result: IndexResult) -> None:
        # Index entries are written only for files whose entities were stored
        entries: list[IndexEntry] = []

        for outcome in outcomes:
            if outcome.status == "error":
                result.errors.append(FileError(path=outcome.path, error=outcome.error or ""))
                continue
            if outcome.status == "unchanged":
                result.unchanged.append(outcome.path)
                continue

            if outcome.summary is not None:
                try:
                    await self.store_file_summary(outcome.path, outcome.summary, outcome.source)
                except Exception as e:
                    logger.warning("Failed to store entities", path=outcome.path, error=str(e))
                    result.errors.append(FileError(path=outcome.path, error=str(e)))
                    continue

            if outcome.entry is not None:
                entries.append(outcome.entry)
            if outcome.parse_result is not None:
                self.last_parse_results[outcome.path] = outcome.parse_result

            if outcome.status == "added":
                result.added.append(outcome.path)
            else:
                result.modified.append(outcome.path)

        await self.index_store.put_many(entries)

    async def store_file_summary(self, path: str, summary: FileSummary, source: str) -> None:
        """
        Persist a file entity and one entity per summarized symbol.

        Entities previously owned by the file are removed first so renamed or
        deleted symbols do not linger.
        """
        if not self.entity_store:
            return

        await self.entity_store.delete_by_file(path)

        await self.entity_store.create(
            EntityInput(
                type="file",
                name=Path(path).name,
                qualified_name=path,
                file_path=path,
                content=extract_file_overview(source, summary),
                summary=summary.description,
                metadata={
                    "language": summary.language,
                    "exports": summary.exports,
                    "dependencies": summary.dependencies,
                    "metrics": summary.to_dict()["metrics"],
                },
            )
        )

        lines = source.split("\n")
        for symbol in summary.symbols:
            await self.entity_store.create(
                EntityInput(
                    type=symbol.type,
                    name=symbol.name,
                    qualified_name=symbol.qualified_name or f"{path}::{symbol.name}",
                    file_path=path,
                    start_line=symbol.start_line,
                    end_line=symbol.end_line,
                    content=extract_symbol_code(
                        lines, symbol.type, symbol.start_line, symbol.end_line
                    ),
                    summary=symbol.description,
                    metadata={"signature": symbol.signature},
                )
            )

    async def index_file(self, path: str | Path) -> FileSummary | None:
        """
        Parse, summarize and record a single file regardless of its hash.

        Returns:
            The file summary, or None if the parser does not support the file.
        """
        relative = self._relative(path)
        absolute = self.project_root / relative
        if not self.parser.is_supported(absolute):
            return None

        prior = await self.index_store.get(relative)
        outcome = await self._process_file(relative, prior, force=True)
        if outcome.error is not None:
            raise RuntimeError(f"Failed to index {relative}: {outcome.error}")

        result = IndexResult()
        await self._commit([outcome], result)
        if result.errors:
            raise RuntimeError(f"Failed to index {relative}: {result.errors[0].error}")
        return outcome.summary

    async def needs_reindex(self, path: str | Path) -> bool:
        """True if the file has no entry or its bytes hash differently."""
        relative = self._relative(path)
        entry = await self.index_store.get(relative)
        if entry is None:
            return True

        try:
            digest = await asyncio.to_thread(hash_file_bytes, self.project_root / relative)
        except OSError:
            return True
        return digest != entry.hash

    async def get_file_summary(self, path: str | Path) -> FileSummary | None:
        entry = await self.index_store.get(self._relative(path))
        if entry is None:
            return None
        try:
            return FileSummary.from_dict(json.loads(entry.summary))
        except (ValueError, KeyError, TypeError):
            return None

    async def get_indexed_files(self) -> list[IndexedFile]:
        files = []
        for path, entry in sorted((await self.index_store.get_all()).items()):
            summary = await self.get_file_summary(path)
            files.append(
                IndexedFile(
                    path=path,
                    hash=entry.hash,
                    modified_at=entry.modified_at,
                    language=entry.language,
                    symbol_count=len(summary.symbols) if summary else 0,
                )
            )
        return files

    async def get_stats(self) -> IndexStats:
        stats = IndexStats(
            last_full_index=await self.index_store.get_meta("last_full_index"),
            last_update=await self.index_store.get_meta("last_update"),
        )
        for indexed in await self.get_indexed_files():
            stats.total_files += 1
            stats.total_symbols += indexed.symbol_count
            stats.by_language[indexed.language] = stats.by_language.get(indexed.language, 0) + 1
        return stats

    async def search_symbols(self, query: str) -> list[FileSummary]:
        """Files whose path, symbol names or symbol descriptions contain ``query``."""
        needle = query.lower()
        matches: list[FileSummary] = []

        for path in sorted(await self.index_store.get_all()):
            summary = await self.get_file_summary(path)
            if summary is None:
                continue
            if needle in path.lower():
                matches.append(summary)
                continue
            if any(
                needle in s.name.lower() or needle in (s.description or "").lower()
                for s in summary.symbols
            ):
                matches.append(summary)

        return matches

    async def clear(self) -> None:
        """Drop the index map and any entities owned by indexed files."""
        if self.entity_store:
            for path in await self.index_store.get_all():
                await self.entity_store.delete_by_file(path)
        await self.index_store.clear()
        self.last_parse_results = {}
