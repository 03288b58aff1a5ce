from typing import Any, Dict, List, Optional

from recall_agent.domain.context.memory.conscious_memory import ConsciousMemoryService
from recall_agent.domain.models.memory import MemoryFilter, MemorySource
from .tool_provider import LocalToolProvider


SAVE_MEMORY_SCHEMA = {
    "type": "object",
    "properties": {
        "content": {"type": "string", "minLength": 1},
        "tags": {"type": "array", "items": {"type": "string"}},
        "importance": {"type": "integer", "minimum": 1, "maximum": 10},
        "context": {"type": "string"},
    },
    "required": ["content"],
}

SEARCH_MEMORIES_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "importance_min": {"type": "integer", "minimum": 1, "maximum": 10},
        "limit": {"type": "integer", "minimum": 1},
    },
}


class ConsciousMemoryToolProvider(LocalToolProvider):
    """Exposes conscious memory operations to the model as tools"""

    def __init__(self, service: ConsciousMemoryService, name: str = "memory"):
        super().__init__(name, "Save and search long-term memories")
        self.service = service

        self.register_tool(
            "save_memory",
            self.save_memory,
            "Remember a fact the user wants kept for later conversations",
            SAVE_MEMORY_SCHEMA
        )
        self.register_tool(
            "search_memories",
            self.search_memories,
            "Search saved memories by text, tags or importance",
            SEARCH_MEMORIES_SCHEMA
        )
        self.register_tool("list_tags", self.list_tags, "List every tag used by saved memories")

    async def save_memory(
        self,
        content: str,
        tags: Optional[List[str]] = None,
        importance: Optional[int] = None,
        context: Optional[str] = None
    ) -> Dict[str, Any]:
        memory_id = await self.service.save_memory(
            content,
            tags=tags,
            importance=importance,
            source=MemorySource.SUGGESTED,
            context=context
        )
        return {"id": memory_id, "saved": True}

    async def search_memories(
        self,
        query: str = "",
        tags: Optional[List[str]] = None,
        importance_min: Optional[int] = None,
        limit: int = 5
    ) -> List[Dict[str, Any]]:
        filters = MemoryFilter(tags=tags or [], importance_min=importance_min, conscious_only=True)
        results = await self.service.search(query, limit=limit, filters=filters)
        return [
            {
                "id": result.id,
                "text": result.text,
                "score": round(result.score, 3),
                "tags": result.tags,
                "importance": result.importance,
            }
            for result in results
        ]

    async def list_tags(self) -> List[str]:
        return await self.service.get_all_tags()
