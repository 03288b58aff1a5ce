from typing import Optional
import uuid

from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel, ConfigDict, Field

from recall_agent.domain.context.memory.vector_memory_store import MemoryStore
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from recall_agent.domain.errors import AgentError
from recall_agent.domain.reflection.reflection_evaluator import ReflectionEvaluator
from recall_agent.domain.tool.tool_gateway import ToolGateway
from recall_agent.infrastructure.config.settings import AgentSettings
from recall_agent.infrastructure.llm.model_client import ModelClient


EXECUTION_CONTEXT_KEY = "execution_context"


class ExecutionContext(BaseModel):
    """Collaborators handed to every stage of one turn.

    Travels in ``config["configurable"]``; the referenced services are shared
    across turns and must not hold per-session state.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, protected_namespaces=())

    turn_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    settings: AgentSettings
    model_client: ModelClient
    tool_gateway: ToolGateway
    retriever: MemoryRetriever
    memory_store: MemoryStore
    reflection_evaluator: Optional[ReflectionEvaluator] = None

    def as_config(self) -> RunnableConfig:
        return {"configurable": {EXECUTION_CONTEXT_KEY: self}}


def get_execution_context(config: Optional[RunnableConfig]) -> ExecutionContext:
    context = ((config or {}).get("configurable") or {}).get(EXECUTION_CONTEXT_KEY)
    if not isinstance(context, ExecutionContext):
        raise AgentError("Stage invoked without an execution context")
    return context
