"""
Tests for the checkpointed streaming processor.

Tests cover:
- Resume from a checkpoint after an interrupted run
- Corrupt checkpoint recovery
- Size and entity ceilings
- Failure isolation and callbacks
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ctxkb.errors import CheckpointError
from ctxkb.indexing.streaming import (
    IndexingCheckpoint,
    StreamingFileProcessor,
    StreamingOptions,
)


def _processor(root: Path, parser, summarizer, state_file: Path, **options) -> StreamingFileProcessor:
    return StreamingFileProcessor(
        root,
        parser,
        summarizer,
        StreamingOptions(state_file=state_file, **options),
    )


async def _drain(processor: StreamingFileProcessor) -> list[list]:
    return [batch async for batch in processor.process_files()]


class TestResume:
    """Tests for crash/resume behavior."""

    @pytest.mark.asyncio
    async def test_resume_after_interrupt(self, write_tree, make_parser, summarizer, temp_dir: Path):
        """Test a run stopped after 120 of 500 files resumes at file 121."""
        root = write_tree({f"f{i:03d}.py": f"def fn_{i}():\n    pass\n" for i in range(500)})
        state_file = temp_dir / "state" / "indexing-state.json"
        options = {"file_batch_size": 10, "checkpoint_interval": 10}

        first_parser = make_parser()
        first = _processor(root, first_parser, summarizer, state_file, **options)
        gen = first.process_files()
        received = 0
        async for _ in gen:
            received += 1
            if received == 13:
                break
        await gen.aclose()

        saved = json.loads(state_file.read_text())
        assert saved["processedFiles"] == 120
        assert saved["totalFiles"] == 500
        assert saved["currentBatch"] == 12
        assert saved["lastProcessedPath"] == "f119.py"

        second_parser = make_parser()
        second = _processor(root, second_parser, summarizer, state_file, **options)
        assert second.has_checkpoint()

        batches = await _drain(second)

        parsed = [p.name for p in second_parser.parsed]
        assert parsed[0] == "f120.py"
        assert len(parsed) == 380
        assert not any(name < "f120.py" for name in parsed)
        assert sum(len(b) for b in batches) == 380
        assert second.get_state().processed_files == 500
        assert not state_file.exists()

    @pytest.mark.asyncio
    async def test_completed_run_deletes_checkpoint(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({f"m{i}.py": "" for i in range(5)})
        state_file = temp_dir / "state.json"
        processor = _processor(root, parser, summarizer, state_file, file_batch_size=2, checkpoint_interval=1)

        batches = await _drain(processor)

        assert [len(b) for b in batches] == [2, 2, 1]
        assert not processor.has_checkpoint()
        state = processor.get_state()
        assert state.total_files == 5
        assert state.processed_files == 5
        assert state.current_batch == 3

    @pytest.mark.asyncio
    async def test_corrupt_checkpoint_starts_fresh(self, write_tree, parser, summarizer, temp_dir: Path):
        """Test an unreadable checkpoint is replaced by a fresh state."""
        root = write_tree({"a.py": "", "b.py": ""})
        state_file = temp_dir / "state.json"
        state_file.write_text("{not json")
        processor = _processor(root, parser, summarizer, state_file)

        batches = await _drain(processor)

        assert [r.file_path for r in batches[0]] == ["a.py", "b.py"]
        assert processor.get_state().processed_files == 2

    @pytest.mark.asyncio
    async def test_checkpoint_missing_fields_starts_fresh(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"a.py": ""})
        state_file = temp_dir / "state.json"
        state_file.write_text(json.dumps({"unexpected": True}))
        processor = _processor(root, parser, summarizer, state_file)

        await _drain(processor)

        assert [p.name for p in parser.parsed] == ["a.py"]

    @pytest.mark.asyncio
    async def test_reset_checkpoint(self, project_dir: Path, parser, summarizer, temp_dir: Path):
        state_file = temp_dir / "state.json"
        state_file.write_text(json.dumps(IndexingCheckpoint(total_files=3).to_dict()))
        processor = _processor(project_dir, parser, summarizer, state_file)

        assert processor.has_checkpoint()
        await processor.reset_checkpoint()
        await processor.reset_checkpoint()
        assert not processor.has_checkpoint()

    @pytest.mark.asyncio
    async def test_reset_clears_run_state(self, write_tree, make_parser, summarizer, temp_dir: Path):
        """Test reset after a finished run zeroes counters and failure lists."""
        root = write_tree({"a.py": "", "b.py": ""})
        processor = _processor(root, make_parser(fail_on={"b.py"}), summarizer, temp_dir / "state.json")
        await _drain(processor)
        assert processor.get_state().failed_files == ["b.py"]

        await processor.reset_checkpoint()

        state = processor.get_state()
        assert state.processed_files == 0
        assert state.total_files == 0
        assert state.failed_files == []
        assert state.skipped_files == []

    def test_default_state_file(self, project_dir: Path, parser, summarizer):
        processor = StreamingFileProcessor(project_dir, parser, summarizer)
        assert processor.state_file == project_dir / ".ctxkb" / "indexing-state.json"


class TestCeilings:
    """Tests for per-file limits."""

    @pytest.mark.asyncio
    async def test_large_file_skipped(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"big.py": "x = 1\n" * 400, "small.py": "y = 2\n"})
        processor = _processor(root, parser, summarizer, temp_dir / "s.json", max_file_size_kb=1)

        batches = await _drain(processor)

        assert [r.file_path for r in batches[0]] == ["small.py"]
        assert processor.get_state().skipped_files == ["big.py"]
        assert processor.get_state().processed_files == 2

    @pytest.mark.asyncio
    async def test_entity_ceiling(self, write_tree, parser, summarizer, temp_dir: Path):
        source = "".join(f"def f{i}():\n    pass\n" for i in range(5))
        root = write_tree({"many.py": source})
        processor = _processor(root, parser, summarizer, temp_dir / "s.json", max_entities_per_file=2)

        batches = await _drain(processor)

        result = batches[0][0]
        assert [s.name for s in result.summary.symbols] == ["f0", "f1"]
        assert result.file_size == len(source.encode())
        assert result.source_code == source

    @pytest.mark.asyncio
    async def test_unsupported_files_counted_not_yielded(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"a.py": "", "notes.txt": "hello"})
        processor = _processor(root, parser, summarizer, temp_dir / "s.json")

        batches = await _drain(processor)

        assert [r.file_path for r in batches[0]] == ["a.py"]
        assert processor.get_state().processed_files == 2


class TestFailuresAndCallbacks:
    """Tests for failure isolation and hooks."""

    @pytest.mark.asyncio
    async def test_failed_file_recorded(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"a.py": "", "b.py": "", "c.py": ""})
        parser.fail_on.add("b.py")
        processor = _processor(root, parser, summarizer, temp_dir / "s.json")

        batches = await _drain(processor)

        assert [r.file_path for r in batches[0]] == ["a.py", "c.py"]
        assert processor.get_state().failed_files == ["b.py"]
        assert processor.get_state().processed_files == 3

    @pytest.mark.asyncio
    async def test_batch_of_only_failures_not_yielded(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"a.py": "", "b.py": ""})
        parser.fail_on.update({"a.py", "b.py"})
        processor = _processor(root, parser, summarizer, temp_dir / "s.json")

        assert await _drain(processor) == []
        assert processor.get_state().failed_files == ["a.py", "b.py"]

    @pytest.mark.asyncio
    async def test_callbacks(self, write_tree, parser, summarizer, temp_dir: Path):
        root = write_tree({"a.py": "", "b.py": "", "c.py": ""})
        progress: list[tuple[int, int, str]] = []
        completed: list[list[str]] = []

        async def on_batch_complete(results):
            completed.append([r.file_path for r in results])

        processor = _processor(
            root,
            parser,
            summarizer,
            temp_dir / "s.json",
            file_batch_size=2,
            on_progress=lambda c, t, p: progress.append((c, t, p)),
            on_batch_complete=on_batch_complete,
        )

        await _drain(processor)

        assert progress == [(1, 3, "a.py"), (2, 3, "b.py"), (3, 3, "c.py")]
        assert completed == [["a.py", "b.py"], ["c.py"]]

    @pytest.mark.asyncio
    async def test_relative_paths_in_parse_results(self, sample_tree, parser, summarizer, temp_dir: Path):
        processor = _processor(sample_tree, parser, summarizer, temp_dir / "s.json")

        batches = await _drain(processor)

        results = [r for batch in batches for r in batch]
        assert [r.parse_result.file_path for r in results] == ["src/app.py", "src/util.py"]


class TestIndexingCheckpoint:
    """Tests for checkpoint serialization."""

    def test_camel_case_keys(self):
        state = IndexingCheckpoint(
            total_files=10,
            processed_files=4,
            current_batch=2,
            failed_files=["x.py"],
            last_processed_path="d.py",
        )

        data = state.to_dict()

        assert data["totalFiles"] == 10
        assert data["processedFiles"] == 4
        assert data["failedFiles"] == ["x.py"]
        assert IndexingCheckpoint.from_dict(data) == state

    def test_rejects_non_object(self):
        with pytest.raises(CheckpointError):
            IndexingCheckpoint.from_dict([1, 2, 3])

    def test_rejects_negative_cursor(self):
        data = IndexingCheckpoint().to_dict()
        data["processedFiles"] = -1

        with pytest.raises(CheckpointError):
            IndexingCheckpoint.from_dict(data)
