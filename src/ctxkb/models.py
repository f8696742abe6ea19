"""
Shared records exchanged with the external collaborators.

Provides:
- Parse results (symbols, imports, exports) produced by a Parser
- File summaries produced by a Summarizer
- Entities persisted by an EntityStore
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Symbol:
    """A named code symbol reported by a parser."""

    type: str
    name: str
    start_line: int
    end_line: int
    qualified_name: str | None = None
    signature: str | None = None
    docstring: str | None = None
    is_exported: bool = False
    extends: list[str] = field(default_factory=list)
    implements: list[str] = field(default_factory=list)
    children: list["Symbol"] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return self.qualified_name or self.name


@dataclass
class ImportRef:
    """An import statement."""

    source: str
    specifiers: list[str] = field(default_factory=list)
    is_relative: bool = False
    line: int | None = None


@dataclass
class ExportRef:
    """An exported name."""

    name: str
    is_default: bool = False
    source: str | None = None


@dataclass
class ParseResult:
    """Output of ``Parser.parse_file``."""

    file_path: str
    language: str
    symbols: list[Symbol] = field(default_factory=list)
    imports: list[ImportRef] = field(default_factory=list)
    exports: list[ExportRef] = field(default_factory=list)
    success: bool = True
    errors: list[str] = field(default_factory=list)

    def symbol_count(self) -> int:
        """Count symbols including nested children."""

        def count(symbols: list[Symbol]) -> int:
            return sum(1 + count(s.children) for s in symbols)

        return count(self.symbols)


@dataclass
class SymbolSummary:
    """Summarized view of a symbol."""

    name: str
    type: str
    start_line: int
    end_line: int
    signature: str | None = None
    description: str | None = None
    qualified_name: str | None = None


@dataclass
class FileMetrics:
    """Simple per-file counts."""

    function_count: int = 0
    class_count: int = 0
    import_count: int = 0
    export_count: int = 0


@dataclass
class FileSummary:
    """Output of ``Summarizer.summarize_file``."""

    file_path: str
    language: str
    description: str = ""
    exports: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    symbols: list[SymbolSummary] = field(default_factory=list)
    line_count: int = 0
    metrics: FileMetrics = field(default_factory=FileMetrics)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileSummary":
        return cls(
            file_path=data["file_path"],
            language=data.get("language", "unknown"),
            description=data.get("description", ""),
            exports=list(data.get("exports", [])),
            dependencies=list(data.get("dependencies", [])),
            symbols=[SymbolSummary(**s) for s in data.get("symbols", [])],
            line_count=data.get("line_count", 0),
            metrics=FileMetrics(**data.get("metrics", {})),
        )


@dataclass
class EntityInput:
    """Fields required to create or replace an entity."""

    type: str
    name: str
    qualified_name: str
    file_path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Entity:
    """
    A named unit of content (file, function, class, document section).

    The qualified name is unique within a project.
    """

    id: str
    type: str
    name: str
    qualified_name: str
    file_path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def fingerprint(self) -> str:
        """Content fingerprint used to detect stale embeddings."""
        from ctxkb.embeddings.fingerprint import hash_entity_content

        return hash_entity_content(self)
