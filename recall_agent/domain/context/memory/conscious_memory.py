"""
Conscious memories: explicitly saved, tagged and importance-scored records
that live in the same store as ordinary conversation memories.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

import structlog

from recall_agent.domain.errors import MemoryStoreError
from recall_agent.domain.models.memory import (
    CONSCIOUS_MEMORY_TYPE,
    ConsciousMemoryStats,
    MemoryFilter,
    MemoryRecord,
    MemorySource,
    SearchResult,
)
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from .vector_memory_store import MemoryStore

logger = structlog.get_logger(__name__)


def _clamp_importance(value: Optional[int]) -> int:
    if value is None:
        return 5
    return max(1, min(10, int(value)))


class ConsciousMemoryService:
    """Save, search and curate conscious memories"""

    def __init__(self, store: MemoryStore, retriever: MemoryRetriever):
        self.store = store
        self.retriever = retriever

    async def save_memory(
        self,
        content: str,
        tags: Optional[List[str]] = None,
        importance: Optional[int] = None,
        source: MemorySource = MemorySource.EXPLICIT,
        context: Optional[str] = None,
        session_id: Optional[str] = None,
        related_memory_ids: Optional[List[str]] = None,
        supersedes: Optional[str] = None
    ) -> str:
        """Store a new conscious memory and return its id"""

        now = datetime.now(timezone.utc)
        metadata: Dict[str, Any] = {
            "session_id": session_id or "default",
            "timestamp": int(now.timestamp() * 1000),
            "created_at": now.isoformat(),
            "message_type": "assistant",
            "memory_type": CONSCIOUS_MEMORY_TYPE,
            "tags": [tag.strip() for tag in (tags or []) if tag and tag.strip()],
            "importance": _clamp_importance(importance),
            "source": MemorySource(source).value,
            "context": context or "",
            "related_memory_ids": list(related_memory_ids or []),
        }
        if supersedes:
            metadata["supersedes"] = supersedes

        memory_id = await self.store.store(content, metadata)
        logger.info(
            "Conscious memory saved",
            memory_id=memory_id,
            importance=metadata["importance"],
            tags=metadata["tags"]
        )
        return memory_id

    async def search(
        self,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        filters: Optional[MemoryFilter] = None
    ) -> List[SearchResult]:
        """Hybrid search with conscious-memory filters applied"""

        return await self.retriever.search(query, session_id=session_id, limit=limit, filters=filters)

    async def update_memory(
        self,
        memory_id: str,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
        importance: Optional[int] = None,
        context: Optional[str] = None,
        related_memory_ids: Optional[List[str]] = None
    ) -> str:
        """Replace a memory with an edited copy.

        Records are immutable, so the edit is written as a new record that
        points back at the old one through ``supersedes``; the old record is
        then removed. Returns the new id.
        """

        existing = await self.store.get(memory_id)
        if existing is None:
            raise MemoryStoreError(f"Memory {memory_id} not found")

        meta = existing.metadata
        new_id = await self.save_memory(
            content=content if content is not None else existing.text,
            tags=tags if tags is not None else meta.get("tags", []),
            importance=importance if importance is not None else meta.get("importance"),
            source=meta.get("source", MemorySource.EXPLICIT.value),
            context=context if context is not None else meta.get("context"),
            session_id=meta.get("session_id"),
            related_memory_ids=related_memory_ids if related_memory_ids is not None else meta.get("related_memory_ids"),
            supersedes=memory_id
        )
        await self.store.delete(memory_id)
        return new_id

    async def delete_memory(self, memory_id: str) -> bool:
        deleted = await self.store.delete(memory_id)
        if not deleted:
            logger.warning("Conscious memory not found for delete", memory_id=memory_id)
        return deleted

    async def _conscious_records(self) -> List[MemoryRecord]:
        records = await self.store.get_all(limit=self.retriever.settings.keyword_corpus_limit)
        return [record for record in records if record.is_conscious]

    async def get_all_tags(self) -> List[str]:
        tags = set()
        for record in await self._conscious_records():
            tags.update(record.metadata.get("tags") or [])
        return sorted(tags)

    async def get_related(self, memory_id: str, limit: int = 5) -> List[SearchResult]:
        """Memories similar to an existing one, excluding itself"""

        source = await self.store.get(memory_id)
        if source is None:
            logger.warning("Source memory not found for related search", memory_id=memory_id)
            return []

        results = await self.retriever.search(source.text, limit=limit + 1)
        return [result for result in results if result.id != memory_id][:limit]

    async def get_stats(self) -> ConsciousMemoryStats:
        records = await self._conscious_records()
        stats = ConsciousMemoryStats(total_conscious_memories=len(records))
        if not records:
            return stats

        tags = set()
        total_importance = 0
        for record in records:
            tags.update(record.metadata.get("tags") or [])
            source = record.metadata.get("source", MemorySource.EXPLICIT.value)
            stats.source_breakdown[source] = stats.source_breakdown.get(source, 0) + 1
            total_importance += record.metadata.get("importance", 5)

        stats.tag_count = len(tags)
        stats.average_importance = total_importance / len(records)
        return stats
