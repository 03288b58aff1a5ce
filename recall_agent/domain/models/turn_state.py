from typing import Dict, Any, List, Optional, Annotated, TypedDict
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages
import operator

from recall_agent.domain.models.memory import SearchResult


class PendingToolCall(BaseModel):
    """Tool invocation requested by the model"""
    provider_name: str = Field(description="Registered tool provider name")
    tool_name: str = Field(description="Tool exposed by the provider")
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolExecutionRecord(BaseModel):
    """Outcome of a single tool invocation"""
    provider: str
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = Field(None, description="Human-readable diagnostic on failure")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000


class RetrievalEvaluation(BaseModel):
    """Result of the memory retrieval stage"""
    should_retrieve: bool
    query: str
    merged_results: List[SearchResult] = Field(default_factory=list)
    retrieval_time_ms: float = 0.0


class ReflectionResult(BaseModel):
    """Critique attached to a turn"""
    score: float = Field(ge=0, le=10)
    critique: str
    improved: bool = False


def merge_tool_results(left: Optional[Dict[str, Any]], right: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reducer for the tool_results channel"""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


class TurnState(TypedDict, total=False):
    """State carried through the turn graph.

    Each stage returns a partial update. Channels annotated with a reducer
    are folded (messages append or replace by id, tool results merge,
    diagnostics append); all other channels take the latest value.
    """
    session_id: str
    user_text: str
    messages: Annotated[List[BaseMessage], add_messages]
    assistant_text: Optional[str]
    pending_tool_call: Optional[PendingToolCall]
    tool_results: Annotated[Dict[str, Any], merge_tool_results]
    tool_call_executed: Optional[ToolExecutionRecord]
    retrieval_evaluation: Optional[RetrievalEvaluation]
    memory_context: Optional[str]
    reflection: Optional[ReflectionResult]
    stored_memory_id: Optional[str]
    diagnostics: Annotated[List[str], operator.add]


class TurnRequest(BaseModel):
    """Turn API request"""
    session_id: str = Field(min_length=1)
    user_text: str


class TurnResponse(BaseModel):
    """Turn API response"""
    session_id: str
    assistant_text: str
    tool_call_executed: Optional[ToolExecutionRecord] = None
    stored_memory_id: Optional[str] = None
    reflection: Optional[ReflectionResult] = None
    diagnostics: List[str] = Field(default_factory=list)
    failed: bool = Field(default=False, description="True when the model query aborted the turn")
