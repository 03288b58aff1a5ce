from typing import List, Optional, Tuple
import time

import structlog

from recall_agent.domain.models.memory import MemoryFilter, SearchResult
from recall_agent.domain.models.turn_state import RetrievalEvaluation
from recall_agent.infrastructure.config.settings import RetrievalSettings
from .context_ranker import ContextRanker
from .memory.vector_memory_store import MemoryStore
from .retrieval_gate import RetrievalGate

logger = structlog.get_logger(__name__)


class MemoryRetriever:
    """Hybrid semantic + keyword memory retrieval"""

    def __init__(
        self,
        store: MemoryStore,
        settings: Optional[RetrievalSettings] = None,
        gate: Optional[RetrievalGate] = None,
        ranker: Optional[ContextRanker] = None
    ):
        self.store = store
        self.settings = settings or RetrievalSettings()
        self.gate = gate or RetrievalGate(
            enabled=self.settings.enabled,
            min_query_length=self.settings.min_query_length,
            important_short_terms=self.settings.important_short_terms
        )
        self.ranker = ranker or ContextRanker(
            base_increment=self.settings.keyword_base_increment,
            boundary_bonus=self.settings.keyword_boundary_bonus,
            min_keyword_length=self.settings.keyword_min_length,
            tie_break_epsilon=self.settings.tie_break_epsilon
        )

    async def retrieve(self, query: str, session_id: Optional[str] = None) -> Tuple[RetrievalEvaluation, str]:
        """Gate, search and format context for a user input.

        Returns the evaluation and the context block ("" when nothing was
        recalled). Store errors propagate to the caller.
        """

        started = time.perf_counter()

        if not self.gate.should_retrieve(query):
            logger.debug("Retrieval skipped by gate", query=query[:50])
            return RetrievalEvaluation(should_retrieve=False, query=query), ""

        results = await self.search(query, session_id=session_id)
        evaluation = RetrievalEvaluation(
            should_retrieve=True,
            query=query,
            merged_results=results,
            retrieval_time_ms=(time.perf_counter() - started) * 1000
        )

        logger.info(
            "Memory retrieval completed",
            session_id=session_id,
            results=len(results),
            retrieval_time_ms=round(evaluation.retrieval_time_ms, 2)
        )
        return evaluation, self.format_context(results)

    async def search(
        self,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        filters: Optional[MemoryFilter] = None
    ) -> List[SearchResult]:
        """Semantic search with keyword fallback, merged and filtered"""

        limit = limit or self.settings.top_k

        if not query.strip():
            return await self.list_memories(session_id=session_id, filters=filters)

        semantic_results = await self.store.search(
            query,
            limit=limit,
            session_id=session_id,
            min_score=self.settings.min_score
        )

        keyword_results: List[SearchResult] = []
        if len(semantic_results) < self.settings.keyword_fallback_threshold:
            keyword_results = await self.keyword_search(query, session_id=session_id, limit=limit)

        merged = self.ranker.merge_results(semantic_results, keyword_results)

        logger.debug(
            "Hybrid search",
            semantic=len(semantic_results),
            keyword=len(keyword_results),
            merged=len(merged)
        )

        if filters is not None:
            merged = [result for result in merged if filters.matches(result)]
        return merged

    async def keyword_search(
        self,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        """Lexical scan over the session corpus"""

        try:
            corpus = await self.store.get_all(session_id=session_id, limit=self.settings.keyword_corpus_limit)
        except Exception as e:
            logger.warning("Keyword search corpus scan failed", error=str(e), exc_info=True)
            return []

        return self.ranker.rank_keyword_matches(query, corpus, limit or self.settings.top_k)

    async def list_memories(
        self,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        filters: Optional[MemoryFilter] = None
    ) -> List[SearchResult]:
        """Every stored memory, newest first, with no relevance scoring"""

        records = await self.store.get_all(session_id=session_id, limit=self.settings.keyword_corpus_limit)
        results = [
            SearchResult(id=record.id, text=record.text, score=0.0, metadata=dict(record.metadata))
            for record in reversed(records)
        ]
        if filters is not None:
            results = [result for result in results if filters.matches(result)]
        return results[:limit] if limit is not None else results

    def format_context(self, results: List[SearchResult]) -> str:
        """Render results as a context block for the system prompt"""

        if not results:
            return ""

        lines = []
        for index, result in enumerate(results, start=1):
            label = {
                "user": "User",
                "assistant": "Assistant",
                "exchange": "Conversation",
            }.get(result.metadata.get("message_type"), "Memory")
            lines.append(
                f"{index}. [{label}, {result.search_type.value} score: {result.score * 100:.1f}%]: {result.text}"
            )

        return self.settings.context_template.replace("{memories}", "\n\n".join(lines))
