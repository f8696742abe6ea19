"""
Relationship graph built from parse results.

Extracts structural relationships from parsed files:
- Imports (with externality and specifiers)
- Definitions (file -> symbol, class -> member)
- Exports
- Inheritance and interface implementation

and answers dependency, dependent, path and statistics queries.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Iterable

import structlog

from ctxkb.models import ParseResult, Symbol

logger = structlog.get_logger(__name__)


class RelationshipType(str, Enum):
    """Types of edges in the relationship graph."""

    IMPORTS = "imports"
    EXPORTS = "exports"
    CALLS = "calls"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"
    USES = "uses"
    DEFINES = "defines"
    REFERENCES = "references"
    DEPENDS_ON = "depends-on"


class NodeKind(str, Enum):
    """Kinds of nodes, inferred from the id shape."""

    FILE = "file"
    SYMBOL = "symbol"
    MODULE = "module"


# Edge types followed by dependency traversal
DEPENDENCY_TYPES = frozenset(
    {RelationshipType.IMPORTS, RelationshipType.DEPENDS_ON, RelationshipType.USES}
)

SYMBOL_SEPARATORS = ("::", "#")

FILE_EXTENSIONS = frozenset(
    {
        ".py", ".pyi", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
        ".go", ".rs", ".java", ".kt", ".c", ".h", ".cpp", ".hpp", ".cs",
        ".rb", ".php", ".swift", ".scala", ".md", ".json", ".yaml", ".yml",
    }
)


@dataclass
class RelationshipMetadata:
    """Optional edge attributes."""

    line: int | None = None
    is_external: bool | None = None
    specifiers: list[str] | None = None


@dataclass
class Relationship:
    """Typed directed edge."""

    type: RelationshipType
    source: str
    target: str
    metadata: RelationshipMetadata = field(default_factory=RelationshipMetadata)

    def __post_init__(self) -> None:
        self.type = RelationshipType(self.type)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.type.value, self.source, self.target)


@dataclass
class GraphNode:
    """Graph node created the first time an id appears on an edge."""

    id: str
    name: str
    type: NodeKind
    file_path: str | None = None
    in_degree: int = 0
    out_degree: int = 0


@dataclass
class HubNode:
    id: str
    connections: int


@dataclass
class GraphStats:
    """Structural statistics."""

    node_count: int
    edge_count: int
    root_nodes: list[str]
    leaf_nodes: list[str]
    hubs: list[HubNode]
    by_type: dict[str, int]


def infer_node_kind(node_id: str) -> NodeKind:
    """Qualifier separator means symbol, known extension means file, else module."""
    if any(sep in node_id for sep in SYMBOL_SEPARATORS):
        return NodeKind.SYMBOL
    if PurePosixPath(node_id).suffix.lower() in FILE_EXTENSIONS:
        return NodeKind.FILE
    return NodeKind.MODULE


def _display_name(node_id: str, kind: NodeKind) -> str:
    if kind == NodeKind.SYMBOL:
        name = node_id
        for sep in SYMBOL_SEPARATORS:
            name = name.rsplit(sep, 1)[-1]
        return name.rsplit(".", 1)[-1] or name
    return node_id.rstrip("/").rsplit("/", 1)[-1] or node_id


def _owning_file(node_id: str, kind: NodeKind) -> str | None:
    if kind == NodeKind.FILE:
        return node_id
    if kind == NodeKind.SYMBOL:
        for sep in SYMBOL_SEPARATORS:
            if sep in node_id:
                owner = node_id.split(sep, 1)[0]
                if PurePosixPath(owner).suffix.lower() in FILE_EXTENSIONS:
                    return owner
    return None


def symbol_id(file_path: str, qualified_name: str) -> str:
    """Graph id for a symbol defined in a file."""
    if any(sep in qualified_name for sep in SYMBOL_SEPARATORS):
        return qualified_name
    return f"{file_path}::{qualified_name}"


class RelationshipGraph:
    """
    Directed, typed relationship graph with degree bookkeeping.

    Edges are unique on (type, source, target); re-adding an edge is a
    no-op, so extracting the same parse result twice is idempotent.
    """

    def __init__(
        self,
        include_external: bool = True,
        types: Iterable[str | RelationshipType] | None = None,
        hub_limit: int = 10,
    ) -> None:
        """
        Initialize the graph.

        Args:
            include_external: Keep import edges to non-relative modules.
            types: Relationship types to keep; all when None.
            hub_limit: Number of hubs reported by ``get_stats``.
        """
        self.include_external = include_external
        self.types = (
            frozenset(RelationshipType(t) for t in types) if types is not None else None
        )
        self.hub_limit = hub_limit

        self._nodes: dict[str, GraphNode] = {}
        self._edges: list[Relationship] = []
        self._keys: set[tuple[str, str, str]] = set()
        self._outgoing: dict[str, list[Relationship]] = {}
        self._incoming: dict[str, list[Relationship]] = {}

    def _ensure_node(self, node_id: str) -> GraphNode:
        node = self._nodes.get(node_id)
        if node is None:
            kind = infer_node_kind(node_id)
            node = GraphNode(
                id=node_id,
                name=_display_name(node_id, kind),
                type=kind,
                file_path=_owning_file(node_id, kind),
            )
            self._nodes[node_id] = node
        return node

    def add_relationship(self, relationship: Relationship) -> bool:
        """
        Insert an edge.

        Returns:
            True if the edge was added, False if filtered out or duplicate.
        """
        if self.types is not None and relationship.type not in self.types:
            return False
        if relationship.key in self._keys:
            return False

        self._keys.add(relationship.key)
        self._edges.append(relationship)

        source = self._ensure_node(relationship.source)
        target = self._ensure_node(relationship.target)
        source.out_degree += 1
        target.in_degree += 1

        self._outgoing.setdefault(relationship.source, []).append(relationship)
        self._incoming.setdefault(relationship.target, []).append(relationship)
        return True

    def add(
        self,
        type: str | RelationshipType,
        source: str,
        target: str,
        **metadata: Any,
    ) -> bool:
        """Shorthand for ``add_relationship``."""
        return self.add_relationship(
            Relationship(
                type=RelationshipType(type),
                source=source,
                target=target,
                metadata=RelationshipMetadata(**metadata),
            )
        )

    def extract_from_parse_result(self, parse_result: ParseResult) -> list[Relationship]:
        """
        Add edges derived from one parsed file.

        Returns:
            The relationships that were newly added.
        """
        file_path = parse_result.file_path
        candidates: list[Relationship] = []

        for ref in parse_result.imports:
            is_external = not ref.is_relative
            if is_external and not self.include_external:
                continue
            candidates.append(
                Relationship(
                    type=RelationshipType.IMPORTS,
                    source=file_path,
                    target=ref.source,
                    metadata=RelationshipMetadata(
                        line=ref.line,
                        is_external=is_external,
                        specifiers=list(ref.specifiers),
                    ),
                )
            )

        for symbol in parse_result.symbols:
            candidates.extend(self._symbol_relationships(file_path, symbol, parent_id=None))

        for export in parse_result.exports:
            candidates.append(
                Relationship(
                    type=RelationshipType.EXPORTS,
                    source=file_path,
                    target=symbol_id(file_path, export.name),
                    metadata=RelationshipMetadata(specifiers=[export.name]),
                )
            )

        added = [rel for rel in candidates if self.add_relationship(rel)]
        logger.debug("Extracted relationships", file=file_path, added=len(added))
        return added

    def _symbol_relationships(
        self,
        file_path: str,
        symbol: Symbol,
        parent_id: str | None,
    ) -> list[Relationship]:
        if parent_id is not None and not symbol.qualified_name:
            parent_name = parent_id.split("::", 1)[-1]
            node_id = symbol_id(file_path, f"{parent_name}.{symbol.name}")
        else:
            node_id = symbol_id(file_path, symbol.full_name)

        rels = [
            Relationship(
                type=RelationshipType.DEFINES,
                source=parent_id or file_path,
                target=node_id,
                metadata=RelationshipMetadata(line=symbol.start_line),
            )
        ]
        for base in symbol.extends:
            rels.append(
                Relationship(
                    type=RelationshipType.EXTENDS,
                    source=node_id,
                    target=base,
                    metadata=RelationshipMetadata(line=symbol.start_line),
                )
            )
        for interface in symbol.implements:
            rels.append(
                Relationship(
                    type=RelationshipType.IMPLEMENTS,
                    source=node_id,
                    target=interface,
                    metadata=RelationshipMetadata(line=symbol.start_line),
                )
            )
        for child in symbol.children:
            rels.extend(self._symbol_relationships(file_path, child, parent_id=node_id))
        return rels

    def get_relationships(self) -> list[Relationship]:
        return list(self._edges)

    def get_relationships_by_type(self, type: str | RelationshipType) -> list[Relationship]:
        wanted = RelationshipType(type)
        return [rel for rel in self._edges if rel.type == wanted]

    def get_outgoing(self, node_id: str) -> list[Relationship]:
        return list(self._outgoing.get(node_id, []))

    def get_incoming(self, node_id: str) -> list[Relationship]:
        return list(self._incoming.get(node_id, []))

    def get_nodes(self) -> list[GraphNode]:
        return list(self._nodes.values())

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def _traverse(self, start: str, depth: int | None, outgoing: bool) -> list[str]:
        adjacency = self._outgoing if outgoing else self._incoming
        visited = {start}
        reached: list[str] = []
        queue: deque[tuple[str, int]] = deque([(start, 0)])

        while queue:
            current, level = queue.popleft()
            if depth is not None and level >= depth:
                continue
            for rel in adjacency.get(current, []):
                if rel.type not in DEPENDENCY_TYPES:
                    continue
                neighbor = rel.target if outgoing else rel.source
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                reached.append(neighbor)
                queue.append((neighbor, level + 1))

        return reached

    def get_dependencies(self, node_id: str, depth: int | None = None) -> list[str]:
        """
        Nodes reachable over imports / depends-on / uses edges.

        Args:
            node_id: Start node (excluded from the result).
            depth: Maximum hops; None for full reachability.

        Returns:
            Reachable node ids in breadth-first order.
        """
        return self._traverse(node_id, depth, outgoing=True)

    def get_dependents(self, node_id: str, depth: int | None = None) -> list[str]:
        """Reverse of ``get_dependencies``: nodes that reach ``node_id``."""
        return self._traverse(node_id, depth, outgoing=False)

    def find_path(self, source: str, target: str) -> list[str] | None:
        """
        Shortest path by edge count over outgoing edges of any type.

        Returns:
            Node ids from ``source`` to ``target`` inclusive, or None.
        """
        if source not in self._nodes or target not in self._nodes:
            return None
        if source == target:
            return [source]

        parents: dict[str, str] = {}
        visited = {source}
        queue: deque[str] = deque([source])

        while queue:
            current = queue.popleft()
            for rel in self._outgoing.get(current, []):
                neighbor = rel.target
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                parents[neighbor] = current
                if neighbor == target:
                    path = [target]
                    while path[-1] != source:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                queue.append(neighbor)

        return None

    def get_stats(self) -> GraphStats:
        nodes = list(self._nodes.values())
        by_type: dict[str, int] = {}
        for rel in self._edges:
            by_type[rel.type.value] = by_type.get(rel.type.value, 0) + 1

        # sorted() is stable, so equal degrees keep insertion order
        ranked = sorted(nodes, key=lambda n: n.in_degree + n.out_degree, reverse=True)

        return GraphStats(
            node_count=len(nodes),
            edge_count=len(self._edges),
            root_nodes=[n.id for n in nodes if n.in_degree == 0],
            leaf_nodes=[n.id for n in nodes if n.out_degree == 0],
            hubs=[
                HubNode(id=n.id, connections=n.in_degree + n.out_degree)
                for n in ranked[: self.hub_limit]
            ],
            by_type=by_type,
        )

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()
        self._keys.clear()
        self._outgoing.clear()
        self._incoming.clear()

    def to_networkx(self) -> Any:
        """Export to NetworkX MultiDiGraph for advanced analysis."""
        try:
            import networkx as nx
        except ImportError:
            raise ImportError("networkx required for graph export: pip install 'ctxkb[graph]'")

        G = nx.MultiDiGraph()
        for node in self._nodes.values():
            G.add_node(
                node.id,
                name=node.name,
                node_type=node.type.value,
                file_path=node.file_path,
            )
        for rel in self._edges:
            G.add_edge(rel.source, rel.target, key=rel.type.value, edge_type=rel.type.value)
        return G
