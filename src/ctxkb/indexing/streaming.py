"""
Checkpointed streaming file processor for large trees.

Provides:
- Batched traversal with bounded memory (one batch held at a time)
- JSON checkpoints written every N processed files
- Resume by offset into the deterministically ordered file list
- Per-file size and entity ceilings
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from ctxkb.errors import CheckpointError
from ctxkb.indexing.discovery import discover_files
from ctxkb.indexing.ignore_resolver import IgnoreResolver
from ctxkb.interfaces import Parser, Summarizer
from ctxkb.models import FileSummary, ParseResult

logger = structlog.get_logger(__name__)

CHECKPOINT_FILE = "indexing-state.json"
DATA_DIR = ".ctxkb"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class IndexingCheckpoint:
    """
    Resumable run state.

    ``processed_files`` only grows within a run and is the resume cursor.
    """

    total_files: int = 0
    processed_files: int = 0
    current_batch: int = 0
    failed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    last_processed_path: str | None = None
    started_at: str = field(default_factory=_utc_now)
    checkpoint_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "processedFiles": self.processed_files,
            "currentBatch": self.current_batch,
            "failedFiles": list(self.failed_files),
            "skippedFiles": list(self.skipped_files),
            "lastProcessedPath": self.last_processed_path,
            "startedAt": self.started_at,
            "checkpointAt": self.checkpoint_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "IndexingCheckpoint":
        if not isinstance(data, dict):
            raise CheckpointError("Checkpoint is not a JSON object")
        try:
            state = cls(
                total_files=int(data["totalFiles"]),
                processed_files=int(data["processedFiles"]),
                current_batch=int(data.get("currentBatch", 0)),
                failed_files=list(data.get("failedFiles", [])),
                skipped_files=list(data.get("skippedFiles", [])),
                last_processed_path=data.get("lastProcessedPath"),
                started_at=data.get("startedAt") or _utc_now(),
                checkpoint_at=data.get("checkpointAt"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointError(f"Malformed checkpoint: {e}") from e
        if state.processed_files < 0:
            raise CheckpointError("Negative processedFiles in checkpoint")
        return state


@dataclass
class FileProcessResult:
    """One successfully processed file."""

    file_path: str
    summary: FileSummary
    source_code: str
    file_size: int
    parse_result: ParseResult


@dataclass
class StreamingOptions:
    """Streaming run options."""

    file_batch_size: int = 100
    max_file_size_kb: int = 500
    max_entities_per_file: int = 100
    checkpoint_interval: int = 50
    exclude: list[str] = field(default_factory=list)
    use_gitignore: bool = True
    use_ctxignore: bool = True
    state_file: Path | None = None
    on_progress: Callable[[int, int, str], None] | None = None
    on_batch_complete: Callable[[list[FileProcessResult]], Awaitable[None]] | None = None


class StreamingFileProcessor:
    """
    Process a tree in batches, persisting progress so a crash can resume.

    ``process_files()`` is an async generator: each ``__anext__`` pulls one
    batch. The checkpoint for a batch is written before the next batch is
    started. Files are processed at least once; consumers should write
    results idempotently (replace by id).
    """

    def __init__(
        self,
        project_root: str | Path,
        parser: Parser,
        summarizer: Summarizer,
        options: StreamingOptions | None = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.parser = parser
        self.summarizer = summarizer
        self.options = options or StreamingOptions()
        self.state_file = self.options.state_file or (
            self.project_root / DATA_DIR / CHECKPOINT_FILE
        )
        self._state = IndexingCheckpoint()
        self._files: list[str] = []

    async def process_files(self) -> AsyncIterator[list[FileProcessResult]]:
        """
        Yield batches of processed files, resuming from a checkpoint if any.

        Yields:
            Non-empty lists of per-file results.
        """
        start_index = await self._load_checkpoint()
        self._files = await self._discover()
        self._state.total_files = len(self._files)

        batch_size = max(self.options.file_batch_size, 1)
        interval = max(self.options.checkpoint_interval, 1)
        processed_since_checkpoint = 0

        logger.info(
            "Streaming run started",
            root=str(self.project_root),
            total_files=self._state.total_files,
            resume_from=start_index,
        )

        for i in range(start_index, len(self._files), batch_size):
            batch = self._files[i : i + batch_size]
            results: list[FileProcessResult] = []

            for path in batch:
                try:
                    result = await self._process_file(path)
                    if result is not None:
                        results.append(result)
                except Exception as e:
                    logger.warning("Failed to process file", path=path, error=str(e))
                    self._state.failed_files.append(path)

                self._state.processed_files += 1
                processed_since_checkpoint += 1
                if self.options.on_progress:
                    self.options.on_progress(
                        self._state.processed_files, self._state.total_files, path
                    )

            if results:
                yield results
                if self.options.on_batch_complete:
                    await self.options.on_batch_complete(results)

            if processed_since_checkpoint >= interval:
                self._state.last_processed_path = batch[-1]
                self._state.current_batch += 1
                await self._save_checkpoint()
                processed_since_checkpoint = 0

        await self._save_checkpoint()
        await self._delete_checkpoint_file()

        logger.info(
            "Streaming run complete",
            processed=self._state.processed_files,
            failed=len(self._state.failed_files),
            skipped=len(self._state.skipped_files),
        )

    async def _process_file(self, path: str) -> FileProcessResult | None:
        absolute = self.project_root / path

        if not self.parser.is_supported(absolute):
            return None

        stat = await asyncio.to_thread(absolute.stat)
        if stat.st_size > self.options.max_file_size_kb * 1024:
            logger.debug("Skipping large file", path=path, size=stat.st_size)
            self._state.skipped_files.append(path)
            return None

        raw = await asyncio.to_thread(absolute.read_bytes)
        parse_result = await self.parser.parse_file(absolute)
        parse_result.file_path = path
        summary = await self.summarizer.summarize_file(parse_result)

        limit = self.options.max_entities_per_file
        if len(summary.symbols) > limit:
            summary.symbols = summary.symbols[:limit]

        return FileProcessResult(
            file_path=path,
            summary=summary,
            source_code=raw.decode("utf-8", errors="replace"),
            file_size=stat.st_size,
            parse_result=parse_result,
        )

    async def _discover(self) -> list[str]:
        resolver = IgnoreResolver(
            self.project_root,
            extra_exclude=self.options.exclude,
            use_vcs_ignore=self.options.use_gitignore,
            use_tool_ignore=self.options.use_ctxignore,
        )
        files = await asyncio.to_thread(discover_files, self.project_root, resolver)
        return [f.relative_to(self.project_root).as_posix() for f in files]

    async def _load_checkpoint(self) -> int:
        """Restore state from disk; returns the resume offset."""
        if not self.state_file.exists():
            self._state = IndexingCheckpoint()
            return 0

        try:
            text = await asyncio.to_thread(self.state_file.read_text, encoding="utf-8")
            self._state = IndexingCheckpoint.from_dict(json.loads(text))
        except (OSError, ValueError, CheckpointError) as e:
            logger.warning(
                "Discarding unreadable checkpoint",
                path=str(self.state_file),
                error=str(e),
            )
            self._state = IndexingCheckpoint()
            return 0

        logger.info(
            "Resuming from checkpoint",
            processed=self._state.processed_files,
            total=self._state.total_files,
        )
        return self._state.processed_files

    async def _save_checkpoint(self) -> None:
        self._state.checkpoint_at = _utc_now()
        payload = json.dumps(self._state.to_dict(), indent=2)

        def write() -> None:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.state_file)

        await asyncio.to_thread(write)
        logger.debug("Checkpoint saved", processed=self._state.processed_files)

    def get_state(self) -> IndexingCheckpoint:
        """Copy of the current run state."""
        return replace(
            self._state,
            failed_files=list(self._state.failed_files),
            skipped_files=list(self._state.skipped_files),
        )

    def has_checkpoint(self) -> bool:
        return self.state_file.exists()

    async def reset_checkpoint(self) -> None:
        """Delete the checkpoint file and clear the in-memory run state."""
        await self._delete_checkpoint_file()
        self._state = IndexingCheckpoint()

    async def _delete_checkpoint_file(self) -> None:
        try:
            await asyncio.to_thread(self.state_file.unlink)
        except FileNotFoundError:
            pass
