import math
import logging
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx
import numpy as np
from scipy import sparse

from vaultgraph.utils.error_handler import log_errors

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0

EdgeSpec = Tuple[str, str, float]


def parse_node(node: Any) -> Optional[Tuple[str, frozenset]]:
    """Return (path, tags) for a well-formed node entry, else None."""
    if not isinstance(node, dict):
        return None
    path = node.get('path')
    if not isinstance(path, str) or not path:
        return None
    tags = node.get('tags') or ()
    if isinstance(tags, str):
        tags = (tags,)
    try:
        return path, frozenset(tag for tag in tags if isinstance(tag, str))
    except TypeError:
        return path, frozenset()


def parse_edge(edge: Any) -> Optional[EdgeSpec]:
    """Return (source, target, weight) for a well-formed edge entry, else None.

    A missing weight means DEFAULT_WEIGHT; a weight that is not a positive
    finite number makes the whole entry invalid.
    """
    if not isinstance(edge, dict):
        return None
    source, target = edge.get('source'), edge.get('target')
    if not isinstance(source, str) or not isinstance(target, str):
        return None
    weight = edge.get('weight')
    if weight is None:
        return source, target, DEFAULT_WEIGHT
    if isinstance(weight, bool):
        return None
    try:
        weight = float(weight)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(weight) or weight <= 0:
        return None
    return source, target, weight


class GraphBuilder:
    """Owns the document link graph and runs graph algorithms over it.

    Nodes are document paths carrying a ``tags`` attribute; edges are
    directed, weighted and may repeat between the same pair of nodes.
    An edge is only ever added when both of its endpoints already exist.
    """

    def __init__(self):
        self.graph = nx.MultiDiGraph()
        self._edge_count = 0

    @log_errors(logger)
    def build(self, nodes: Iterable[Any], edges: Iterable[Any]) -> Dict[str, int]:
        """
        Replace the graph with the given nodes and edges.

        The replacement graph is assembled on the side and swapped in at the
        end, so the previous graph survives any failure part-way through.

        Args:
            nodes: Entries of the form {"path": str, "tags": [str]}
            edges: Entries of the form {"source": str, "target": str, "weight": float?}

        Returns:
            Dict with the new node count ("order") and edge count ("size")
        """
        graph = nx.MultiDiGraph()
        skipped_nodes = 0
        for node in nodes or ():
            parsed = parse_node(node)
            if parsed is None:
                skipped_nodes += 1
                continue
            path, tags = parsed
            if not graph.has_node(path):
                graph.add_node(path, tags=tags)

        edge_count, skipped_edges = self._add_edges(graph, edges)

        self.graph = graph
        self._edge_count = edge_count
        if skipped_nodes or skipped_edges:
            logger.debug(f"Skipped {skipped_nodes} invalid nodes and {skipped_edges} invalid or dangling edges")
        logger.info(f"Built graph with {self.graph.number_of_nodes()} nodes and {self._edge_count} edges")
        return {'order': self.graph.number_of_nodes(), 'size': self._edge_count}

    @log_errors(logger)
    def update_node(self, node: Any, edges: Iterable[Any]) -> Dict[str, int]:
        """
        Re-index a single document without rebuilding the graph.

        The node and every edge touching it are dropped, the node is re-created
        with its new tags and the supplied edges are added. Edges from other
        documents into this one are not rediscovered: the caller resupplies them.

        Args:
            node: Entry of the form {"path": str, "tags": [str]}
            edges: Edge entries to add after the node is re-created

        Returns:
            Dict with the node count ("order") and edge count ("size")
        """
        parsed = parse_node(node)
        if parsed is None:
            logger.debug(f"Ignoring update for invalid node entry: {node!r}")
            return {'order': self.graph.number_of_nodes(), 'size': self._edge_count}
        path, tags = parsed
        parsed_edges = [item for item in map(parse_edge, edges or ()) if item is not None]

        self.remove_node(path)
        self.graph.add_node(path, tags=tags)
        added, skipped = self._add_edges(self.graph, parsed_edges, parsed=True)
        self._edge_count += added

        logger.debug(f"Updated node {path}: {added} edges added, {skipped} skipped")
        return {'order': self.graph.number_of_nodes(), 'size': self._edge_count}

    def remove_node(self, path: str) -> bool:
        """Drop a node and all its incident edges. Returns False if it was absent."""
        if not self.graph.has_node(path):
            return False
        incident = (
            self.graph.out_degree(path)
            + self.graph.in_degree(path)
            - self.graph.number_of_edges(path, path)
        )
        self.graph.remove_node(path)
        self._edge_count -= incident
        return True

    @staticmethod
    def _add_edges(graph: nx.MultiDiGraph, edges: Iterable[Any], parsed: bool = False) -> Tuple[int, int]:
        added = skipped = 0
        for edge in edges or ():
            parsed_edge = edge if parsed else parse_edge(edge)
            if parsed_edge is None:
                skipped += 1
                continue
            source, target, weight = parsed_edge
            if graph.has_node(source) and graph.has_node(target):
                graph.add_edge(source, target, weight=weight)
                added += 1
            else:
                skipped += 1
        return added, skipped

    @log_errors(logger)
    def compute_pagerank(
        self,
        damping: float = 0.85,
        tolerance: float = 1e-4,
        max_iterations: int = 100
    ) -> Dict[str, float]:
        """
        Weighted PageRank by power iteration.

        Parallel edges contribute the sum of their weights. Nodes without
        outgoing edges spread their rank uniformly over the graph, so the
        scores of one snapshot sum to 1. Iteration stops on convergence
        (L1 change below ``order * tolerance``) or after ``max_iterations``,
        in which case the last iterate is returned.

        Args:
            damping: Probability of following a link rather than teleporting
            tolerance: Per-node convergence tolerance
            max_iterations: Upper bound on power iterations

        Returns:
            Dict mapping every node path to its score
        """
        if not 0 <= damping <= 1:
            raise ValueError(f"damping must be within [0, 1], got {damping}")
        nodelist = list(self.graph)
        order = len(nodelist)
        if order == 0:
            return {}

        adjacency = nx.to_scipy_sparse_array(self.graph, nodelist=nodelist, weight='weight', dtype=float)
        out_weight = np.asarray(adjacency.sum(axis=1)).ravel()
        inverse = np.zeros(order)
        nonzero = out_weight != 0
        inverse[nonzero] = 1.0 / out_weight[nonzero]
        transition = sparse.diags_array(inverse) @ adjacency

        teleport = np.repeat(1.0 / order, order)
        dangling = np.where(out_weight == 0)[0]
        scores = teleport.copy()

        for iteration in range(1, max(int(max_iterations), 1) + 1):
            previous = scores
            scores = damping * (previous @ transition + previous[dangling].sum() * teleport) + (1 - damping) * teleport
            error = np.absolute(scores - previous).sum()
            if error < order * tolerance:
                logger.debug(f"PageRank converged after {iteration} iterations")
                break
        else:
            logger.warning(f"PageRank did not converge within {max_iterations} iterations (error {error:.2e})")

        return {path: float(score) for path, score in zip(nodelist, scores)}

    def neighbors(self, path: str) -> List[str]:
        """Direct neighbors in either direction, each listed once."""
        found = set(self.graph.successors(path))
        found.update(self.graph.predecessors(path))
        return sorted(found)

    def spreading_activation(
        self,
        start_node: str,
        decay: float = 0.5,
        initial: float = 1.0,
        threshold: float = 0.01
    ) -> List[Dict[str, Any]]:
        """
        Propagate energy outward from ``start_node``.

        Every neighbor of a processed node receives the full decayed energy.
        A neighbor is queued again only when that energy is above
        ``threshold`` and strictly above what it already holds, which keeps
        cyclic graphs finite.

        Args:
            start_node: Path of the seed node
            decay: Fraction of energy passed on per hop, within (0, 1]
            initial: Energy of the seed node
            threshold: Energy below which propagation stops

        Returns:
            [{"path", "score"}] without the seed, highest score first
        """
        if not 0 < decay <= 1:
            raise ValueError(f"decay must be within (0, 1], got {decay}")
        if not self.graph.has_node(start_node):
            return []

        activation = {start_node: initial}
        queue = deque([(start_node, initial)])

        while queue:
            node, energy = queue.popleft()
            if energy < threshold:
                continue

            output = energy * decay
            if output <= threshold:
                continue
            for neighbor in self.neighbors(node):
                if output > activation.get(neighbor, 0.0):
                    activation[neighbor] = output
                    queue.append((neighbor, output))

        ranked = sorted(
            ((path, score) for path, score in activation.items() if path != start_node),
            key=lambda item: (-item[1], item[0])
        )
        return [{'path': path, 'score': score} for path, score in ranked]

    def get_size(self) -> Dict[str, int]:
        """Node and edge counts of the current graph."""
        return {'nodes': self.graph.number_of_nodes(), 'edges': self._edge_count}

    def get_tags(self, path: str) -> Optional[List[str]]:
        """Sorted tags of a node, or None when the node is absent."""
        if not self.graph.has_node(path):
            return None
        return sorted(self.graph.nodes[path].get('tags', ()))
