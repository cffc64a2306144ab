import re
import time
import logging
from collections import deque
from typing import Any, Dict, Iterable, List, Optional

from vaultgraph.utils.error_handler import log_errors

logger = logging.getLogger(__name__)

WIKI_LINK_PATTERN = re.compile(r'\[\[([^\]|]+)(?:\|[^\]]+)?\]\]')
TAG_PATTERN = re.compile(r'#([\w-]+)')


class ContentGraphEngine:
    """Link graph derived from raw document text.

    Keeps an index of path -> (title, content) between calls, refreshed by
    ``initialize_index``. Links are found by parsing ``[[wiki-links]]`` and
    ``#tags`` out of the indexed content, so this engine works without any
    resolved-links snapshot from the host.
    """

    def __init__(
        self,
        preview_length: int = 150,
        backlink_weight: float = 1.0,
        tag_weight: float = 0.7
    ):
        self.preview_length = preview_length
        self.backlink_weight = backlink_weight
        self.tag_weight = tag_weight
        self.file_index: Dict[str, Dict[str, str]] = {}

    def initialize_index(self, files: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """
        Replace the file index.

        Args:
            files: Entries of the form {"path": str, "content": str, "title": str?}

        Returns:
            Dict with the number of indexed files
        """
        index = {}
        for entry in files or ():
            path = entry.get('path')
            if not isinstance(path, str) or not path:
                continue
            title = entry.get('title') or path.split('/')[-1] or 'Unknown'
            index[path] = {'title': title, 'content': entry.get('content') or ''}
        self.file_index = index
        logger.info(f"Indexed {len(index)} files")
        return {'indexed': len(index)}

    def extract_links(self, source_path: str, content: str) -> List[Dict[str, Any]]:
        """
        Find the indexed documents that ``content`` links to.

        Wiki-links must name an indexed path exactly. A hashtag links to every
        other indexed document whose content carries the same hashtag.
        Results are unique per (path, type); the first occurrence wins.
        """
        links = []
        for match in WIKI_LINK_PATTERN.finditer(content):
            linked_path = match.group(1).strip()
            if linked_path and linked_path in self.file_index:
                links.append({'path': linked_path, 'type': 'backlink', 'weight': self.backlink_weight})

        for match in TAG_PATTERN.finditer(content):
            tag = f"#{match.group(1)}"
            for path, info in self.file_index.items():
                if path != source_path and tag in info['content']:
                    links.append({'path': path, 'type': 'tag', 'weight': self.tag_weight})

        unique = {}
        for link in links:
            unique.setdefault((link['path'], link['type']), link)
        return list(unique.values())

    @log_errors(logger)
    def analyze_graph(
        self,
        root_file_path: str,
        max_hops: int,
        all_files: Optional[Iterable[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Breadth-first link graph around ``root_file_path``.

        Args:
            root_file_path: Path to start from
            max_hops: Levels to expand beyond the root
            all_files: When given, replaces the index before the traversal

        Returns:
            Dict with "nodes", "edges" and "metadata"
        """
        if all_files is not None:
            self.initialize_index(all_files)

        nodes = []
        edges = []
        visited = set()
        queue = deque([(root_file_path, 0)])

        while queue:
            path, hop = queue.popleft()
            if path in visited:
                continue
            visited.add(path)

            info = self.file_index.get(path)
            if info is None:
                continue

            nodes.append({
                'filePath': path,
                'title': info['title'],
                'level': hop,
                'preview': info['content'][:self.preview_length],
            })

            if hop >= max_hops:
                continue

            for linked in self.extract_links(path, info['content']):
                if linked['path'] not in visited:
                    queue.append((linked['path'], hop + 1))
                edges.append({
                    'source': path,
                    'target': linked['path'],
                    'type': linked['type'],
                    'weight': linked['weight'],
                })

        return {
            'nodes': nodes,
            'edges': edges,
            'metadata': {
                'generatedAt': int(time.time() * 1000),
                'rootFile': root_file_path,
                'hopCount': max_hops,
            },
        }

    @staticmethod
    def score_relatedness(graph: Dict[str, Any], target_path: str) -> float:
        """Closer nodes score higher, boosted by the weight of edges pointing at them."""
        node = next((n for n in graph['nodes'] if n['filePath'] == target_path), None)
        if node is None:
            return 0.0
        base_score = max(0.0, 1 - (node['level'] - 1) * 0.3)
        weight_boost = sum(e['weight'] for e in graph['edges'] if e['target'] == target_path)
        return base_score * (1 + weight_boost * 0.1)

    def get_top_related_notes(self, graph: Dict[str, Any], limit: int = 5) -> List[str]:
        scored = sorted(
            ((n['filePath'], self.score_relatedness(graph, n['filePath'])) for n in graph['nodes'] if n['level'] > 0),
            key=lambda item: (-item[1], item[0])
        )
        return [path for path, _ in scored[:limit]]
