"""
Unit tests for the relationship graph.

Tests cover:
- Edge uniqueness and type filtering
- Node kind inference
- Dependency / dependent traversal and shortest paths
- Statistics (roots, leaves, hubs)
- Extraction from parse results
"""

from __future__ import annotations

import pytest

from ctxkb.graph.engine import (
    NodeKind,
    Relationship,
    RelationshipGraph,
    RelationshipType,
    infer_node_kind,
    symbol_id,
)
from ctxkb.models import ExportRef, ImportRef, ParseResult, Symbol


@pytest.fixture
def chain() -> RelationshipGraph:
    """a -> b -> c -> d over import edges."""
    graph = RelationshipGraph(hub_limit=2)
    graph.add("imports", "a", "b")
    graph.add("imports", "b", "c")
    graph.add("imports", "c", "d")
    return graph


def _parse_result() -> ParseResult:
    return ParseResult(
        file_path="src/app.ts",
        language="typescript",
        imports=[
            ImportRef(source="./util", specifiers=["helper"], is_relative=True, line=1),
            ImportRef(source="react", specifiers=["useState"], line=2),
        ],
        symbols=[
            Symbol(
                type="class",
                name="App",
                start_line=4,
                end_line=10,
                extends=["Base"],
                implements=["Runnable"],
                children=[Symbol(type="method", name="run", start_line=5, end_line=7)],
            ),
            Symbol(type="function", name="main", start_line=12, end_line=14),
        ],
        exports=[ExportRef(name="App"), ExportRef(name="main")],
    )


class TestEdges:
    """Tests for edge insertion."""

    def test_duplicate_edge_ignored(self):
        graph = RelationshipGraph()

        assert graph.add("imports", "a.ts", "b.ts") is True
        assert graph.add("imports", "a.ts", "b.ts") is False

        assert len(graph.get_relationships()) == 1
        assert graph.get_node("a.ts").out_degree == 1
        assert graph.get_node("b.ts").in_degree == 1

    def test_same_endpoints_different_type(self):
        graph = RelationshipGraph()
        graph.add("imports", "a.ts", "b.ts")
        graph.add("uses", "a.ts", "b.ts")

        assert len(graph.get_relationships()) == 2
        assert graph.get_node("a.ts").out_degree == 2

    def test_type_filter(self):
        graph = RelationshipGraph(types=["imports"])

        assert graph.add("defines", "a.ts", "a.ts::f") is False
        assert graph.add("imports", "a.ts", "b.ts") is True
        assert graph.get_node("a.ts::f") is None

    def test_relationship_coerces_type(self):
        rel = Relationship(type="depends-on", source="x", target="y")

        assert rel.type is RelationshipType.DEPENDS_ON
        assert rel.key == ("depends-on", "x", "y")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            Relationship(type="likes", source="x", target="y")

    def test_queries_by_direction_and_type(self, chain):
        chain.add("defines", "b", "b::f")

        assert [r.target for r in chain.get_outgoing("b")] == ["c", "b::f"]
        assert [r.source for r in chain.get_incoming("c")] == ["b"]
        assert len(chain.get_relationships_by_type(RelationshipType.DEFINES)) == 1
        assert chain.get_outgoing("missing") == []

    def test_clear(self, chain):
        chain.clear()

        assert chain.get_nodes() == []
        assert chain.get_relationships() == []
        assert chain.add("imports", "a", "b") is True


class TestNodes:
    """Tests for node kind inference."""

    @pytest.mark.parametrize(
        "node_id, kind",
        [
            ("src/a.ts::Foo", NodeKind.SYMBOL),
            ("Foo#bar", NodeKind.SYMBOL),
            ("src/a.ts", NodeKind.FILE),
            ("README.md", NodeKind.FILE),
            ("react", NodeKind.MODULE),
            ("./util", NodeKind.MODULE),
        ],
    )
    def test_infer_kind(self, node_id: str, kind: NodeKind):
        assert infer_node_kind(node_id) == kind

    def test_node_attributes(self):
        graph = RelationshipGraph()
        graph.add("defines", "src/a.ts", "src/a.ts::Foo")
        graph.add("defines", "Foo", "Foo#bar")

        symbol = graph.get_node("src/a.ts::Foo")
        assert symbol.type == NodeKind.SYMBOL
        assert symbol.name == "Foo"
        assert symbol.file_path == "src/a.ts"

        file_node = graph.get_node("src/a.ts")
        assert file_node.name == "a.ts"
        assert file_node.file_path == "src/a.ts"

        method = graph.get_node("Foo#bar")
        assert method.name == "bar"
        assert method.file_path is None

    def test_symbol_id(self):
        assert symbol_id("src/a.ts", "Foo") == "src/a.ts::Foo"
        assert symbol_id("src/a.ts", "other.ts::Foo") == "other.ts::Foo"


class TestTraversal:
    """Tests for dependency queries and path finding."""

    def test_dependencies(self, chain):
        assert chain.get_dependencies("a") == ["b", "c", "d"]
        assert chain.get_dependencies("a", depth=1) == ["b"]
        assert chain.get_dependencies("d") == []

    def test_dependents(self, chain):
        assert chain.get_dependents("d") == ["c", "b", "a"]
        assert chain.get_dependents("d", depth=2) == ["c", "b"]

    def test_non_dependency_edges_not_followed(self, chain):
        chain.add("defines", "d", "d::x")
        chain.add("depends-on", "d", "e")

        assert chain.get_dependencies("a") == ["b", "c", "d", "e"]

    def test_cycle_terminates(self):
        graph = RelationshipGraph()
        graph.add("imports", "a", "b")
        graph.add("imports", "b", "a")

        assert graph.get_dependencies("a") == ["b"]
        assert graph.get_dependents("a") == ["b"]
        assert graph.find_path("a", "b") == ["a", "b"]

    def test_find_path(self, chain):
        assert chain.find_path("a", "d") == ["a", "b", "c", "d"]
        assert chain.find_path("d", "a") is None
        assert chain.find_path("a", "a") == ["a"]
        assert chain.find_path("a", "zzz") is None
        assert chain.find_path("zzz", "a") is None

    def test_find_path_uses_any_edge_type(self, chain):
        chain.add("defines", "a", "a::f")
        chain.add("calls", "a::f", "d")

        assert chain.find_path("a", "d") == ["a", "a::f", "d"]


class TestStats:
    """Tests for get_stats."""

    def test_chain_stats(self, chain):
        stats = chain.get_stats()

        assert stats.node_count == 4
        assert stats.edge_count == 3
        assert stats.root_nodes == ["a"]
        assert stats.leaf_nodes == ["d"]
        assert [(h.id, h.connections) for h in stats.hubs] == [("b", 2), ("c", 2)]
        assert stats.by_type == {"imports": 3}

    def test_empty_graph(self):
        stats = RelationshipGraph().get_stats()

        assert stats.node_count == 0
        assert stats.hubs == []
        assert stats.by_type == {}


class TestExtraction:
    """Tests for extract_from_parse_result."""

    def test_extracts_all_relationship_kinds(self):
        graph = RelationshipGraph()

        added = graph.extract_from_parse_result(_parse_result())

        assert len(added) == 9
        assert {(r.type.value, r.source, r.target) for r in added} == {
            ("imports", "src/app.ts", "./util"),
            ("imports", "src/app.ts", "react"),
            ("defines", "src/app.ts", "src/app.ts::App"),
            ("extends", "src/app.ts::App", "Base"),
            ("implements", "src/app.ts::App", "Runnable"),
            ("defines", "src/app.ts::App", "src/app.ts::App.run"),
            ("defines", "src/app.ts", "src/app.ts::main"),
            ("exports", "src/app.ts", "src/app.ts::App"),
            ("exports", "src/app.ts", "src/app.ts::main"),
        }

    def test_import_metadata(self):
        graph = RelationshipGraph()
        graph.extract_from_parse_result(_parse_result())

        local, external = graph.get_relationships_by_type("imports")

        assert local.metadata.is_external is False
        assert local.metadata.specifiers == ["helper"]
        assert local.metadata.line == 1
        assert external.metadata.is_external is True

    def test_reextraction_is_idempotent(self):
        graph = RelationshipGraph()
        graph.extract_from_parse_result(_parse_result())

        assert graph.extract_from_parse_result(_parse_result()) == []
        assert len(graph.get_relationships()) == 9

    def test_external_imports_excluded(self):
        graph = RelationshipGraph(include_external=False)

        added = graph.extract_from_parse_result(_parse_result())

        assert len(added) == 8
        assert [r.target for r in graph.get_relationships_by_type("imports")] == ["./util"]

    def test_method_node(self):
        graph = RelationshipGraph()
        graph.extract_from_parse_result(_parse_result())

        node = graph.get_node("src/app.ts::App.run")
        assert node.name == "run"
        assert node.file_path == "src/app.ts"


class TestNetworkxExport:
    """Tests for NetworkX export."""

    def test_to_networkx(self, chain):
        nx = pytest.importorskip("networkx")

        G = chain.to_networkx()

        assert isinstance(G, nx.MultiDiGraph)
        assert G.number_of_nodes() == 4
        assert G.number_of_edges() == 3
        assert G.nodes["a"]["node_type"] == "module"
