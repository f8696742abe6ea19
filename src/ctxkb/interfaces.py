"""
Abstract collaborators consumed by the indexing pipeline.

Parsing, summarization and entity persistence live outside this package;
these base classes define the boundary. The embedding provider contract
lives in ``ctxkb.embeddings.provider``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ctxkb.models import Entity, EntityInput, FileSummary, ParseResult


class Parser(ABC):
    """Turns a source file into symbols, imports and exports."""

    @abstractmethod
    def is_supported(self, path: str | Path) -> bool:
        """Return True if the file extension can be parsed."""
        pass

    @abstractmethod
    async def parse_file(self, path: str | Path) -> ParseResult:
        """
        Parse a file.

        Args:
            path: Absolute path of the file.

        Returns:
            Parse result for the file.
        """
        pass


class Summarizer(ABC):
    """Produces a natural-language summary of a parsed file."""

    @abstractmethod
    async def summarize_file(self, parse_result: ParseResult) -> FileSummary:
        pass


class EntityStore(ABC):
    """Persistence for entities, keyed by id and unique by qualified name."""

    @abstractmethod
    async def create(self, entity: EntityInput) -> Entity:
        """Insert an entity, replacing any entity with the same qualified name."""
        pass

    @abstractmethod
    async def update(self, entity_id: str, **fields: Any) -> Entity | None:
        pass

    @abstractmethod
    async def delete(self, entity_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_by_file(self, file_path: str) -> int:
        """Delete every entity owned by a file; returns the count removed."""
        pass

    @abstractmethod
    async def get(self, entity_id: str) -> Entity | None:
        pass

    @abstractmethod
    async def get_by_qualified_name(self, qualified_name: str) -> Entity | None:
        pass

    @abstractmethod
    async def list_all(self) -> list[Entity]:
        """Bulk read of every entity in the project."""
        pass
