"""
SQLite persistence for the relationship graph.
"""

from __future__ import annotations

import json

import structlog

from ctxkb.graph.engine import Relationship, RelationshipGraph, RelationshipMetadata
from ctxkb.storage.sqlite_store import SQLiteStore

logger = structlog.get_logger(__name__)


def _bool_to_db(value: bool | None) -> int | None:
    return None if value is None else int(value)


class GraphStore(SQLiteStore):
    """Nodes and edges of a RelationshipGraph."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS graph_nodes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        file_path TEXT,
        in_degree INTEGER NOT NULL DEFAULT 0,
        out_degree INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS graph_edges (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        source TEXT NOT NULL,
        target TEXT NOT NULL,
        line INTEGER,
        is_external INTEGER,
        specifiers TEXT,
        UNIQUE (type, source, target)
    );

    CREATE INDEX IF NOT EXISTS idx_graph_edges_source ON graph_edges(source);
    CREATE INDEX IF NOT EXISTS idx_graph_edges_target ON graph_edges(target);
    """

    async def save(self, graph: RelationshipGraph) -> None:
        """Replace the stored graph with ``graph``; edge order is preserved."""
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM graph_edges")
            await conn.execute("DELETE FROM graph_nodes")
            await conn.executemany(
                """
                INSERT INTO graph_nodes (id, name, type, file_path, in_degree, out_degree)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (n.id, n.name, n.type.value, n.file_path, n.in_degree, n.out_degree)
                    for n in graph.get_nodes()
                ],
            )
            await conn.executemany(
                """
                INSERT INTO graph_edges (type, source, target, line, is_external, specifiers)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        rel.type.value,
                        rel.source,
                        rel.target,
                        rel.metadata.line,
                        _bool_to_db(rel.metadata.is_external),
                        json.dumps(rel.metadata.specifiers)
                        if rel.metadata.specifiers is not None
                        else None,
                    )
                    for rel in graph.get_relationships()
                ],
            )

        logger.debug(
            "Graph saved",
            nodes=len(graph.get_nodes()),
            edges=len(graph.get_relationships()),
        )

    async def load(self, graph: RelationshipGraph) -> int:
        """
        Replay stored edges into ``graph`` (after clearing it).

        Node degrees are rebuilt by insertion.

        Returns:
            Number of edges added.
        """
        graph.clear()
        async with self.db.execute(
            "SELECT type, source, target, line, is_external, specifiers FROM graph_edges ORDER BY seq"
        ) as cursor:
            rows = await cursor.fetchall()

        added = 0
        for type_, source, target, line, is_external, specifiers in rows:
            rel = Relationship(
                type=type_,
                source=source,
                target=target,
                metadata=RelationshipMetadata(
                    line=line,
                    is_external=None if is_external is None else bool(is_external),
                    specifiers=json.loads(specifiers) if specifiers else None,
                ),
            )
            if graph.add_relationship(rel):
                added += 1
        return added

    async def count_edges(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM graph_edges") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
