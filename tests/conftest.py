"""
Shared fixtures for the ctxkb test suite.

Provides:
- Temporary project trees
- A line-based fake parser and a deterministic fake summarizer
- Initialized SQLite stores
- Offline embedding provider
"""

from __future__ import annotations

import re
import tempfile
from pathlib import Path
from typing import AsyncIterator, Callable, Iterator

import pytest

from ctxkb.config import Config, EmbeddingConfig
from ctxkb.embeddings.provider import HashEmbeddingProvider
from ctxkb.indexing.discovery import detect_language
from ctxkb.interfaces import Parser, Summarizer
from ctxkb.models import (
    ExportRef,
    FileMetrics,
    FileSummary,
    ImportRef,
    ParseResult,
    Symbol,
    SymbolSummary,
)

DEF_RE = re.compile(r"^(\s*)def (\w+)\(")
CLASS_RE = re.compile(r"^class (\w+)(?:\(([\w, ]*)\))?:")
IMPORT_RE = re.compile(r"^import ([\w.]+)")
FROM_RE = re.compile(r"^from ([\w.]+) import (.+)$")


# ==============================================================================
# Collaborator Fakes
# ==============================================================================


def _block_end(lines: list[str], index: int) -> int:
    """1-based end line of the indented block starting at ``lines[index]``."""
    end = index + 1
    while end < len(lines) and (lines[end].startswith((" ", "\t")) or not lines[end].strip()):
        end += 1
    while end - 1 > index and not lines[end - 1].strip():
        end -= 1
    return end


class FakeParser(Parser):
    """
    Recognizes ``def``, ``class`` and import lines in Python-like sources.

    Records every parsed path and raises for file names in ``fail_on``.
    """

    SUPPORTED = {".py", ".ts", ".js"}

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.fail_on = set(fail_on or ())
        self.parsed: list[Path] = []

    def is_supported(self, path: str | Path) -> bool:
        return Path(path).suffix in self.SUPPORTED

    async def parse_file(self, path: str | Path) -> ParseResult:
        path = Path(path)
        self.parsed.append(path)
        if path.name in self.fail_on:
            raise ValueError(f"cannot parse {path.name}")

        lines = path.read_text(encoding="utf-8").split("\n")
        symbols: list[Symbol] = []
        imports: list[ImportRef] = []
        current_class: Symbol | None = None

        for i, line in enumerate(lines):
            lineno = i + 1

            match = CLASS_RE.match(line)
            if match:
                bases = [b.strip() for b in (match.group(2) or "").split(",") if b.strip()]
                current_class = Symbol(
                    type="class",
                    name=match.group(1),
                    start_line=lineno,
                    end_line=_block_end(lines, i),
                    extends=bases,
                    is_exported=not match.group(1).startswith("_"),
                )
                symbols.append(current_class)
                continue

            match = DEF_RE.match(line)
            if match:
                indent, name = match.groups()
                symbol = Symbol(
                    type="method" if indent else "function",
                    name=name,
                    start_line=lineno,
                    end_line=_block_end(lines, i),
                    signature=line.strip().rstrip(":"),
                    is_exported=not name.startswith("_"),
                )
                if indent and current_class and lineno <= current_class.end_line:
                    current_class.children.append(symbol)
                elif not indent:
                    current_class = None
                    symbols.append(symbol)
                continue

            match = FROM_RE.match(line)
            if match:
                source = match.group(1)
                imports.append(
                    ImportRef(
                        source=source,
                        specifiers=[s.strip() for s in match.group(2).split(",")],
                        is_relative=source.startswith("."),
                        line=lineno,
                    )
                )
                continue

            match = IMPORT_RE.match(line)
            if match:
                imports.append(ImportRef(source=match.group(1), line=lineno))

        return ParseResult(
            file_path=str(path),
            language=detect_language(path),
            symbols=symbols,
            imports=imports,
            exports=[ExportRef(name=s.name) for s in symbols if s.is_exported],
        )


class FakeSummarizer(Summarizer):
    """Template summaries built only from the parse result."""

    def __init__(self) -> None:
        self.calls = 0

    async def summarize_file(self, parse_result: ParseResult) -> FileSummary:
        self.calls += 1
        symbols = [
            SymbolSummary(
                name=s.name,
                type=s.type,
                start_line=s.start_line,
                end_line=s.end_line,
                signature=s.signature or f"{s.type} {s.name}",
                description=f"The {s.name} {s.type}",
            )
            for s in parse_result.symbols
        ]
        return FileSummary(
            file_path=parse_result.file_path,
            language=parse_result.language,
            description=f"{parse_result.file_path} defines {len(symbols)} symbols",
            exports=[e.name for e in parse_result.exports],
            dependencies=[i.source for i in parse_result.imports],
            symbols=symbols,
            metrics=FileMetrics(
                function_count=sum(1 for s in symbols if s.type == "function"),
                class_count=sum(1 for s in symbols if s.type == "class"),
                import_count=len(parse_result.imports),
                export_count=len(parse_result.exports),
            ),
        )


# ==============================================================================
# Path Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def project_dir(temp_dir: Path) -> Path:
    """Empty project root."""
    root = temp_dir / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_tree(project_dir: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative_path: content}`` files under the project root."""

    def write(files: dict[str, str]) -> Path:
        for rel, content in files.items():
            path = project_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return project_dir

    return write


@pytest.fixture
def sample_tree(write_tree) -> Path:
    """Small project with a relative import between two modules."""
    return write_tree(
        {
            "src/util.py": "def helper():\n    return 1\n",
            "src/app.py": (
                "from .util import helper\n"
                "import os\n"
                "\n"
                "class App(Base):\n"
                "    def run(self):\n"
                "        return helper()\n"
            ),
            "README.md": "# Sample\n",
            "node_modules/dep/index.js": "module.exports = 1\n",
        }
    )


# ==============================================================================
# Collaborator Fixtures
# ==============================================================================


@pytest.fixture
def parser() -> FakeParser:
    return FakeParser()


@pytest.fixture
def make_parser() -> Callable[..., FakeParser]:
    """Factory for extra parser instances."""
    return FakeParser


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def hash_provider() -> HashEmbeddingProvider:
    """Small offline provider for fast tests."""
    return HashEmbeddingProvider(dimension=64)


@pytest.fixture
def test_config(project_dir: Path) -> Config:
    """Create a test configuration."""
    return Config(
        project_root=project_dir,
        log_level="DEBUG",
        embedding=EmbeddingConfig(dimension=64),
    )


# ==============================================================================
# Store Fixtures
# ==============================================================================


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "data" / "index.db"


@pytest.fixture
async def entity_store(db_path: Path) -> AsyncIterator:
    """Create an entity store for testing."""
    from ctxkb.storage.sqlite_store import SQLiteEntityStore

    store = SQLiteEntityStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def index_store(db_path: Path) -> AsyncIterator:
    """Create a SQLite index store for testing."""
    from ctxkb.storage.index_store import SQLiteIndexStore

    store = SQLiteIndexStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def embedding_store(db_path: Path) -> AsyncIterator:
    """Create an embedding store for testing."""
    from ctxkb.storage.embedding_store import EmbeddingStore

    store = EmbeddingStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def graph_store(db_path: Path) -> AsyncIterator:
    """Create a graph store for testing."""
    from ctxkb.storage.graph_store import GraphStore

    store = GraphStore(db_path)
    await store.initialize()
    yield store
    await store.close()
