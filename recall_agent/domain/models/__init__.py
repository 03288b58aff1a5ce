from .memory import (
    CONSCIOUS_MEMORY_TYPE,
    ConsciousMemoryStats,
    MemoryFilter,
    MemoryRecord,
    MemorySource,
    SearchResult,
    SearchType,
)
from .turn_state import (
    PendingToolCall,
    ReflectionResult,
    RetrievalEvaluation,
    ToolExecutionRecord,
    TurnRequest,
    TurnResponse,
    TurnState,
)

__all__ = [
    "CONSCIOUS_MEMORY_TYPE",
    "ConsciousMemoryStats",
    "MemoryFilter",
    "MemoryRecord",
    "MemorySource",
    "SearchResult",
    "SearchType",
    "PendingToolCall",
    "ReflectionResult",
    "RetrievalEvaluation",
    "ToolExecutionRecord",
    "TurnRequest",
    "TurnResponse",
    "TurnState",
]
