import time
import logging
from collections import deque
from typing import Any, Dict, Iterable, List, Mapping

logger = logging.getLogger(__name__)

ResolvedLinks = Mapping[str, Mapping[str, Any]]


class ResolvedGraphEngine:
    """Bounded neighborhood analysis over a resolved-links snapshot.

    The snapshot maps each source path to the paths it links to
    (``{source: {target: link_count}}``). It is read, never modified, and
    an instance lives only as long as one request.
    """

    def __init__(self, links: ResolvedLinks, all_files: Iterable[str]):
        self.links = links or {}
        self.all_files = set(all_files or ())
        self._backlinks = None

    def _build_backlinks(self) -> Dict[str, List[str]]:
        if self._backlinks is None:
            self._backlinks = {}
            for source, targets in self.links.items():
                for target in (targets or {}):
                    self._backlinks.setdefault(target, []).append(source)
        return self._backlinks

    def outgoing(self, node: str) -> List[str]:
        return list(self.links.get(node) or {})

    def incoming(self, node: str) -> List[str]:
        return self._build_backlinks().get(node, [])

    def link_count(self, node: str) -> int:
        return len(self.outgoing(node)) + len(self.incoming(node))

    def analyze_neighborhood(self, start_node: str, max_depth: int) -> Dict[str, Any]:
        """
        Breadth-first traversal from ``start_node`` along links in both directions.

        A node is recorded once, at its minimum hop distance, and only if it
        is part of ``all_files``. ``max_depth`` 0 yields just the start node.

        Args:
            start_node: Path of the focal document
            max_depth: Maximum number of hops

        Returns:
            Dict with "relatedFiles" (ranked paths, focal node excluded),
            "nodeMap" (path -> hop, type, linkCount) and "stats"
        """
        started = time.perf_counter()

        direct_outgoing = set(self.outgoing(start_node))
        direct_incoming = set(self.incoming(start_node))

        node_map = {
            start_node: {
                'hop': 0,
                'type': 'focal',
                'linkCount': len(direct_outgoing) + len(direct_incoming),
            }
        }
        visited = {start_node}
        queue = deque([(start_node, 0)])

        while queue:
            node, depth = queue.popleft()
            if depth >= max_depth:
                continue

            # Outgoing first, then incoming; the fallback type follows the
            # direction the node was reached from.
            for neighbors, fallback in ((self.outgoing(node), 'outgoing'), (self.incoming(node), 'incoming')):
                for neighbor in neighbors:
                    if neighbor in visited or neighbor not in self.all_files:
                        continue
                    visited.add(neighbor)
                    queue.append((neighbor, depth + 1))
                    node_map[neighbor] = {
                        'hop': depth + 1,
                        'type': self._relation(neighbor, direct_outgoing, direct_incoming, fallback),
                        'linkCount': self.link_count(neighbor),
                    }

        related = sorted(
            (path for path in node_map if path != start_node),
            key=lambda path: (
                node_map[path]['type'] != 'bidirectional',
                node_map[path]['hop'],
                -node_map[path]['linkCount'],
                path,
            )
        )

        execution_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"Neighborhood of {start_node}: {len(related)} related files within {max_depth} hops")
        return {
            'relatedFiles': related,
            'nodeMap': node_map,
            'stats': {
                'totalNodes': len(node_map),
                'executionMs': execution_ms,
            },
        }

    @staticmethod
    def _relation(node: str, direct_outgoing: set, direct_incoming: set, fallback: str) -> str:
        is_outgoing = node in direct_outgoing
        is_incoming = node in direct_incoming
        if is_outgoing and is_incoming:
            return 'bidirectional'
        if is_outgoing:
            return 'outgoing'
        if is_incoming:
            return 'incoming'
        return fallback


def analyze_neighborhood(
    start_node: str,
    links: ResolvedLinks,
    all_files: Iterable[str],
    max_depth: int = 2
) -> Dict[str, Any]:
    """Run one neighborhood analysis over a freshly captured snapshot."""
    return ResolvedGraphEngine(links, all_files).analyze_neighborhood(start_node, max_depth)
