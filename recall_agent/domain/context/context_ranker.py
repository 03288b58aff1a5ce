from typing import Dict, List, Sequence, Tuple
import re

from recall_agent.domain.models.memory import MemoryRecord, SearchResult, SearchType


_WORD_PATTERN = re.compile(r"\w+")


class ContextRanker:
    """Lexical scoring and hybrid result merging"""

    def __init__(
        self,
        base_increment: float = 0.3,
        boundary_bonus: float = 0.2,
        min_keyword_length: int = 3,
        tie_break_epsilon: float = 0.1
    ):
        self.base_increment = base_increment
        self.boundary_bonus = boundary_bonus
        self.min_keyword_length = min_keyword_length
        self.tie_break_epsilon = tie_break_epsilon

    def extract_keywords(self, query: str) -> List[str]:
        """Lower-cased query words of at least ``min_keyword_length`` characters, first occurrence only"""

        keywords: List[str] = []
        for word in _WORD_PATTERN.findall(query.lower()):
            if len(word) >= self.min_keyword_length and word not in keywords:
                keywords.append(word)
        return keywords

    def score_text(self, keywords: Sequence[str], text: str) -> Tuple[float, int]:
        """Return (score, matched keyword count) for one candidate"""

        if not keywords:
            return 0.0, 0

        content = text.lower()
        score = 0.0
        matched = 0

        for keyword in keywords:
            if keyword not in content:
                continue
            matched += 1
            score += self.base_increment
            if re.search(rf"\b{re.escape(keyword)}\b", content):
                score += self.boundary_bonus

        # Scale by coverage so partial matches rank below full ones
        return score * (matched / len(keywords)), matched

    def rank_keyword_matches(
        self,
        query: str,
        candidates: Sequence[MemoryRecord],
        limit: int
    ) -> List[SearchResult]:
        """Score every candidate against the query keywords"""

        keywords = self.extract_keywords(query)
        if not keywords:
            return []

        scored = []
        for position, record in enumerate(candidates):
            score, matched = self.score_text(keywords, record.text)
            if matched == 0:
                continue
            scored.append((score, position, matched, record))

        scored.sort(key=lambda item: (-item[0], item[1]))

        return [
            SearchResult(
                id=record.id,
                text=record.text,
                score=score,
                metadata=dict(record.metadata),
                search_type=SearchType.KEYWORD,
                keyword_matches=matched
            )
            for score, _, matched, record in scored[:limit]
        ]

    def merge_results(
        self,
        semantic_results: Sequence[SearchResult],
        keyword_results: Sequence[SearchResult]
    ) -> List[SearchResult]:
        """Union two result sets by id and order them.

        Semantic entries win id collisions. Ordering is by descending score,
        except that a semantic entry within ``tie_break_epsilon`` of a keyword
        entry is placed ahead of it.
        """

        merged: Dict[str, SearchResult] = {}

        for result in semantic_results:
            if result.id not in merged:
                merged[result.id] = result.model_copy(update={"search_type": SearchType.SEMANTIC})

        for result in keyword_results:
            if result.id not in merged:
                merged[result.id] = result.model_copy(update={"search_type": SearchType.KEYWORD})

        return sorted(merged.values(), key=self._merge_sort_key)

    def _merge_sort_key(self, result: SearchResult) -> Tuple[float, int]:
        # Semantic scores are lifted by epsilon; equal keys put keyword first
        is_semantic = result.search_type == SearchType.SEMANTIC
        effective = result.score + (self.tie_break_epsilon if is_semantic else 0.0)
        return (-effective, 1 if is_semantic else 0)
