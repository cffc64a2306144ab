import logging
from typing import Any, Dict, Iterable, List, Tuple, Union

logger = logging.getLogger(__name__)

Span = Dict[str, int]
CorpusEntry = Union[Tuple[str, str], Dict[str, str]]


class SearchEngine:
    """Stateless full-text search over a corpus supplied with each call.

    Matching is case-insensitive. Exact mode reports every occurrence of the
    query; fuzzy mode only decides membership (the query's characters appear
    in order) and reports one span covering the whole document.
    """

    def search(self, query: str, corpus: Iterable[CorpusEntry], fuzzy: bool = False) -> Dict[str, Any]:
        """
        Search ``corpus`` for ``query`` and rank the documents that match.

        Args:
            query: Text to look for
            corpus: (path, content) pairs or {"path", "content"} dicts
            fuzzy: Use subsequence matching instead of substring matching

        Returns:
            Dict with "matches" ([{"filePath", "score", "positions"}], best
            first), the echoed "query" and "totalMatches" (number of matching
            documents)
        """
        if not query:
            return {'matches': [], 'query': query, 'totalMatches': 0}

        matches = []
        for path, content in self._entries(corpus):
            positions = self.find_matches(content, query, fuzzy)
            if positions:
                matches.append({
                    'filePath': path,
                    'score': self.calculate_score(content, positions),
                    'positions': positions,
                })

        matches.sort(key=lambda match: (-match['score'], match['filePath']))
        logger.debug(f"Search for {query!r} matched {len(matches)} documents (fuzzy={fuzzy})")
        return {'matches': matches, 'query': query, 'totalMatches': len(matches)}

    @staticmethod
    def _entries(corpus: Iterable[CorpusEntry]):
        for entry in corpus or ():
            if isinstance(entry, dict):
                yield entry.get('path', ''), entry.get('content') or ''
            else:
                path, content = entry
                yield path, content or ''

    @staticmethod
    def find_matches(text: str, query: str, fuzzy: bool) -> List[Span]:
        """
        Spans of ``query`` in ``text``, compared in lowercase.

        Exact mode scans greedily left to right and resumes one character
        after the start of the previous match, so a match's interior is
        scanned again: "aa" in "aaa" yields (0, 2) and (1, 3).
        Offsets index the lowercased text, which can be longer than
        ``text`` when a character lowercases to several code points.
        """
        lower_text = text.lower()
        lower_query = query.lower()
        positions = []

        if not fuzzy:
            index = lower_text.find(lower_query)
            while index != -1:
                positions.append({'start': index, 'end': index + len(lower_query)})
                index = lower_text.find(lower_query, index + 1)
            return positions

        text_index = 0
        for char in lower_query:
            found = lower_text.find(char, text_index)
            if found == -1:
                return []
            text_index = found + 1
        positions.append({'start': 0, 'end': len(text)})
        return positions

    @staticmethod
    def calculate_score(text: str, positions: List[Span]) -> float:
        """
        Relevance in [0.3, 1.0] for a document with at least one match.

        Up to 0.7 comes from the number of matches (0.1 each) and up to 0.3
        from how early the matches sit in the document on average.
        """
        base_score = min(len(positions) * 0.1, 0.7)
        length = len(text) or 1
        position_boost = sum(max(0.0, 1 - p['start'] / length) for p in positions) / max(1, len(positions))
        return min(0.3 + base_score + position_boost * 0.3, 1.0)

    @staticmethod
    def levenshtein_distance(a: str, b: str) -> int:
        """Edit distance with unit cost for insertion, deletion and substitution."""
        matrix = [[0] * (len(a) + 1) for _ in range(len(b) + 1)]
        for i in range(len(b) + 1):
            matrix[i][0] = i
        for j in range(len(a) + 1):
            matrix[0][j] = j

        for i in range(1, len(b) + 1):
            for j in range(1, len(a) + 1):
                cost = 0 if b[i - 1] == a[j - 1] else 1
                matrix[i][j] = min(
                    matrix[i - 1][j] + 1,         # deletion
                    matrix[i][j - 1] + 1,         # insertion
                    matrix[i - 1][j - 1] + cost   # substitution
                )
        return matrix[len(b)][len(a)]

    def fuzzy_match_similarity(self, a: str, b: str) -> float:
        """1.0 for identical strings, falling towards 0.0 as the edit distance grows."""
        max_length = max(len(a), len(b))
        if max_length == 0:
            return 1.0
        return 1 - self.levenshtein_distance(a, b) / max_length
