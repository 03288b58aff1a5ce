from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Tuple
from datetime import datetime, timezone
import asyncio
import uuid

import structlog
from langchain_core.embeddings import Embeddings

from recall_agent.domain.errors import MemoryStoreError
from recall_agent.domain.models.memory import MemoryRecord, SearchResult, SearchType
from .embeddings import HashingEmbeddings, cosine_similarity

logger = structlog.get_logger(__name__)


class MemoryStore(ABC):
    """Semantic similarity search plus raw record storage"""

    @abstractmethod
    async def store(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Persist a new record and return its id"""

    @abstractmethod
    async def search(
        self,
        query: str,
        limit: int = 5,
        session_id: Optional[str] = None,
        min_score: Optional[float] = None
    ) -> List[SearchResult]:
        """Return records most similar to ``query``, best first"""

    @abstractmethod
    async def get_all(self, session_id: Optional[str] = None, limit: Optional[int] = None) -> List[MemoryRecord]:
        """Return stored records in insertion order, the newest ``limit`` when capped"""

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Fetch a single record"""

    @abstractmethod
    async def delete(self, memory_id: str) -> bool:
        """Remove a record; True if it existed"""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records"""


class InMemoryMemoryStore(MemoryStore):
    """Process-local vector memory store"""

    def __init__(self, embeddings: Optional[Embeddings] = None, max_records: int = 10000):
        self.embeddings = embeddings or HashingEmbeddings()
        self.max_records = max_records
        self._records: Dict[str, Tuple[MemoryRecord, List[float]]] = {}
        self._lock = asyncio.Lock()

    async def store(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Add text to the store"""

        if not text or not text.strip():
            raise MemoryStoreError("Cannot store an empty memory")

        memory_id = uuid.uuid4().hex
        meta = dict(metadata or {})
        meta.setdefault("timestamp", int(datetime.now(timezone.utc).timestamp() * 1000))
        meta.setdefault("text_length", len(text))

        vector = await self.embeddings.aembed_query(text)
        record = MemoryRecord(id=memory_id, text=text, metadata=meta)

        async with self._lock:
            self._records[memory_id] = (record, vector)

            # Oldest records are evicted first
            while len(self._records) > self.max_records:
                oldest = next(iter(self._records))
                del self._records[oldest]

        logger.debug("Memory stored", memory_id=memory_id, session_id=meta.get("session_id"))
        return memory_id

    async def search(
        self,
        query: str,
        limit: int = 5,
        session_id: Optional[str] = None,
        min_score: Optional[float] = None
    ) -> List[SearchResult]:
        """Search for relevant memories"""

        query_vector = await self.embeddings.aembed_query(query)

        async with self._lock:
            candidates = list(self._records.values())

        scored = []
        for position, (record, vector) in enumerate(candidates):
            if session_id is not None and record.session_id != session_id:
                continue
            score = cosine_similarity(query_vector, vector)
            if min_score is not None and score < min_score:
                continue
            scored.append((score, position, record))

        # Insertion order breaks score ties so repeated searches agree
        scored.sort(key=lambda item: (-item[0], item[1]))

        return [
            SearchResult(
                id=record.id,
                text=record.text,
                score=score,
                metadata=dict(record.metadata),
                search_type=SearchType.SEMANTIC
            )
            for score, _, record in scored[:limit]
        ]

    async def get_all(self, session_id: Optional[str] = None, limit: Optional[int] = None) -> List[MemoryRecord]:
        async with self._lock:
            records = [
                record for record, _ in self._records.values()
                if session_id is None or record.session_id == session_id
            ]
        # Newest records win when the corpus is capped
        if limit is None:
            return records
        return records[max(len(records) - limit, 0):]

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        async with self._lock:
            entry = self._records.get(memory_id)
        return entry[0] if entry else None

    async def delete(self, memory_id: str) -> bool:
        async with self._lock:
            return self._records.pop(memory_id, None) is not None

    async def count(self) -> int:
        async with self._lock:
            return len(self._records)
