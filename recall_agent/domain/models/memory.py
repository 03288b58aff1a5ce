from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


CONSCIOUS_MEMORY_TYPE = "conscious"


class SearchType(str, Enum):
    """Origin of a retrieval hit"""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"


class MemorySource(str, Enum):
    """How a conscious memory came to exist"""
    EXPLICIT = "explicit"
    SUGGESTED = "suggested"
    DERIVED = "derived"


class MemoryRecord(BaseModel):
    """A stored memory. Never mutated after creation."""
    id: str = Field(description="Unique memory identifier")
    text: str = Field(description="Memory text")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    @property
    def session_id(self) -> Optional[str]:
        return self.metadata.get("session_id")

    @property
    def is_conscious(self) -> bool:
        return self.metadata.get("memory_type") == CONSCIOUS_MEMORY_TYPE


class SearchResult(BaseModel):
    """A single retrieval hit"""
    id: str
    text: str
    score: float = Field(description="Similarity score, higher is better")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    search_type: SearchType = Field(default=SearchType.SEMANTIC)
    keyword_matches: int = Field(default=0, description="Keywords matched by the lexical scorer")

    @property
    def tags(self) -> List[str]:
        return list(self.metadata.get("tags") or [])

    @property
    def importance(self) -> int:
        return int(self.metadata.get("importance", 5))

    @property
    def source(self) -> Optional[str]:
        return self.metadata.get("source")


class MemoryFilter(BaseModel):
    """Filters applied after hybrid search"""
    tags: List[str] = Field(default_factory=list, description="Match any of these tags")
    importance_min: Optional[int] = Field(None, ge=1, le=10)
    importance_max: Optional[int] = Field(None, ge=1, le=10)
    source: Optional[MemorySource] = None
    conscious_only: bool = False

    def matches(self, result: SearchResult) -> bool:
        """Check a result against the filter.

        Conscious memories are checked against tags, importance and source.
        Plain conversational memories pass unless ``conscious_only`` is set.
        """
        if result.metadata.get("memory_type") != CONSCIOUS_MEMORY_TYPE:
            return not self.conscious_only

        if self.tags and not any(tag in result.tags for tag in self.tags):
            return False
        if self.importance_min is not None and result.importance < self.importance_min:
            return False
        if self.importance_max is not None and result.importance > self.importance_max:
            return False
        if self.source is not None and result.source != self.source.value:
            return False
        return True


class ConsciousMemoryStats(BaseModel):
    """Aggregate view over conscious memories"""
    total_conscious_memories: int = 0
    tag_count: int = 0
    average_importance: float = 0.0
    source_breakdown: Dict[str, int] = Field(
        default_factory=lambda: {source.value: 0 for source in MemorySource}
    )
