"""
Relationship graph for ctxkb.

Provides:
- Edge extraction from parse results
- Dependency and dependent traversal
- Shortest paths and structural statistics
"""

from ctxkb.graph.engine import (
    GraphNode,
    GraphStats,
    NodeKind,
    Relationship,
    RelationshipGraph,
    RelationshipMetadata,
    RelationshipType,
)

__all__ = [
    "RelationshipGraph",
    "Relationship",
    "RelationshipMetadata",
    "RelationshipType",
    "GraphNode",
    "GraphStats",
    "NodeKind",
]
