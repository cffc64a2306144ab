import logging

import pytest

from vaultgraph.processing_layer.graph_builder import GraphBuilder, parse_edge

# Setup basic logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def chain(*paths):
    nodes = [{"path": p, "tags": []} for p in paths]
    edges = [{"source": a, "target": b} for a, b in zip(paths, paths[1:])]
    return nodes, edges


def test_build_reports_order_and_size(graph, vault_nodes, vault_edges):
    """Test that build counts every node and every parallel edge."""
    result = graph.build(vault_nodes, vault_edges)

    assert result == {"order": 5, "size": 6}
    assert graph.get_size() == {"nodes": 5, "edges": 6}


def test_build_is_idempotent(graph, vault_nodes, vault_edges):
    """Test that building the same input twice gives the same graph and ranks."""
    graph.build(vault_nodes, vault_edges)
    first_size = graph.get_size()
    first_scores = graph.compute_pagerank()

    graph.build(vault_nodes, vault_edges)

    assert graph.get_size() == first_size
    assert graph.compute_pagerank() == pytest.approx(first_scores)


def test_build_replaces_previous_graph(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)
    graph.build([{"path": "solo.md", "tags": []}], [])

    assert graph.get_size() == {"nodes": 1, "edges": 0}


def test_duplicate_nodes_are_ignored(graph):
    nodes = [{"path": "a.md", "tags": ["first"]}, {"path": "a.md", "tags": ["second"]}]

    graph.build(nodes, [])

    assert graph.get_size()["nodes"] == 1
    assert graph.get_tags("a.md") == ["first"]


def test_dangling_edges_are_never_counted(graph):
    """Test that edges to or from unknown nodes are dropped silently."""
    nodes = [{"path": "a.md", "tags": []}, {"path": "b.md", "tags": []}]
    edges = [
        {"source": "a.md", "target": "b.md"},
        {"source": "a.md", "target": "missing.md"},
        {"source": "ghost.md", "target": "b.md"},
    ]

    graph.build(nodes, edges)

    assert graph.get_size() == {"nodes": 2, "edges": 1}


def test_invalid_entries_are_skipped(graph):
    nodes = [{"path": "a.md"}, {"path": "b.md", "tags": None}, {"tags": ["no-path"]}, "c.md", None]
    edges = [
        {"source": "a.md", "target": "b.md", "weight": "heavy"},
        {"source": "a.md", "target": "b.md", "weight": 0},
        {"source": "a.md", "target": "b.md", "weight": -2.5},
        {"source": "a.md", "target": "b.md", "weight": None},
        {"source": "a.md"},
        ["a.md", "b.md"],
    ]

    result = graph.build(nodes, edges)

    assert result == {"order": 2, "size": 1}


def test_parse_edge_defaults_weight():
    assert parse_edge({"source": "a", "target": "b"}) == ("a", "b", 1.0)
    assert parse_edge({"source": "a", "target": "b", "weight": "2"}) == ("a", "b", 2.0)
    assert parse_edge({"source": "a", "target": "b", "weight": float("nan")}) is None
    assert parse_edge({"source": "a", "target": "b", "weight": True}) is None


def test_update_node_replaces_tags_and_edges(graph, vault_nodes, vault_edges):
    """Test that update_node drops every incident edge and adds only the new ones."""
    graph.build(vault_nodes, vault_edges)

    result = graph.update_node(
        {"path": "beta.md", "tags": ["final"]},
        [{"source": "beta.md", "target": "gamma.md"}, {"source": "beta.md", "target": "nowhere.md"}]
    )

    # index->beta, alpha->beta (x2) and beta->gamma are gone; beta->gamma is back
    assert result == {"order": 5, "size": 3}
    assert graph.get_tags("beta.md") == ["final"]


def test_update_node_adds_new_node(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)

    result = graph.update_node({"path": "delta.md", "tags": []}, [{"source": "delta.md", "target": "index.md"}])

    assert result == {"order": 6, "size": 7}


def test_update_node_with_invalid_node_changes_nothing(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)

    result = graph.update_node({"tags": ["x"]}, [{"source": "index.md", "target": "orphan.md"}])

    assert result == {"order": 5, "size": 6}


def test_remove_node_drops_incident_edges_and_self_loops(graph):
    graph.build(
        [{"path": "a.md", "tags": []}, {"path": "b.md", "tags": []}],
        [{"source": "a.md", "target": "a.md"}, {"source": "a.md", "target": "b.md"}, {"source": "b.md", "target": "a.md"}]
    )

    assert graph.remove_node("a.md") is True
    assert graph.remove_node("a.md") is False
    assert graph.get_size() == {"nodes": 1, "edges": 0}


def test_pagerank_sums_to_one(graph, vault_nodes, vault_edges):
    """Test that PageRank scores of one snapshot sum to 1."""
    graph.build(vault_nodes, vault_edges)

    scores = graph.compute_pagerank()

    assert set(scores) == {n["path"] for n in vault_nodes}
    assert all(score >= 0 for score in scores.values())
    assert sum(scores.values()) == pytest.approx(1.0, abs=1e-6)


def test_pagerank_prefers_heavier_links(graph):
    graph.build(
        [{"path": p, "tags": []} for p in ("a.md", "b.md", "c.md")],
        [{"source": "a.md", "target": "b.md", "weight": 1.0}, {"source": "a.md", "target": "c.md", "weight": 3.0}]
    )

    scores = graph.compute_pagerank()

    assert scores["c.md"] > scores["b.md"] > scores["a.md"]


def test_pagerank_ranks_hub_first(graph):
    spokes = [f"spoke{i}.md" for i in range(5)]
    graph.build(
        [{"path": "hub.md", "tags": []}] + [{"path": s, "tags": []} for s in spokes],
        [{"source": s, "target": "hub.md"} for s in spokes]
    )

    scores = graph.compute_pagerank(damping=0.85)

    assert max(scores, key=scores.get) == "hub.md"


def test_pagerank_stops_at_max_iterations(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)

    scores = graph.compute_pagerank(tolerance=1e-12, max_iterations=1)

    assert len(scores) == 5
    assert sum(scores.values()) == pytest.approx(1.0, abs=1e-6)


def test_pagerank_on_empty_graph(graph):
    assert graph.compute_pagerank() == {}


def test_spreading_activation_reaches_both_directions(graph, vault_nodes, vault_edges):
    """Test that energy flows along incoming and outgoing links alike."""
    graph.build(vault_nodes, vault_edges)

    activated = graph.spreading_activation("index.md")

    assert activated == [
        {"path": "alpha.md", "score": 0.5},
        {"path": "beta.md", "score": 0.5},
        {"path": "gamma.md", "score": 0.5},
    ]


def test_spreading_activation_decays_per_hop(graph):
    nodes, edges = chain("a.md", "b.md", "c.md", "d.md", "e.md")
    graph.build(nodes, edges)

    activated = graph.spreading_activation("a.md", decay=0.5, initial=1.0, threshold=0.1)

    assert activated == [
        {"path": "b.md", "score": 0.5},
        {"path": "c.md", "score": 0.25},
        {"path": "d.md", "score": 0.125},
    ]


def test_spreading_activation_terminates_on_cycles(graph):
    """Test that cyclic graphs finish and never report the start node."""
    paths = [f"n{i}.md" for i in range(6)]
    edges = [{"source": a, "target": b} for a in paths for b in paths if a != b]
    graph.build([{"path": p, "tags": []} for p in paths], edges)

    activated = graph.spreading_activation("n0.md", decay=1.0, threshold=0.0)

    assert [entry["path"] for entry in activated] == paths[1:]
    assert all(entry["score"] == 1.0 for entry in activated)


def test_spreading_activation_missing_start_node(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)

    assert graph.spreading_activation("missing") == []


def test_spreading_activation_rejects_amplifying_decay(graph, vault_nodes, vault_edges):
    graph.build(vault_nodes, vault_edges)

    with pytest.raises(ValueError):
        graph.spreading_activation("index.md", decay=1.5)


def test_neighbors_are_unique_and_sorted():
    graph = GraphBuilder()
    graph.build(
        [{"path": p, "tags": []} for p in ("a.md", "b.md", "c.md")],
        [
            {"source": "a.md", "target": "c.md"},
            {"source": "c.md", "target": "a.md"},
            {"source": "b.md", "target": "a.md"},
        ]
    )

    assert graph.neighbors("a.md") == ["b.md", "c.md"]
