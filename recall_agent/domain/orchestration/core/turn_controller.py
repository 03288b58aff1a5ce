from typing import Any, Dict, List, Optional

import structlog
from langchain_core.messages import AIMessage, BaseMessage
from langgraph.graph import END, StateGraph

from recall_agent.domain.context.memory.vector_memory_store import MemoryStore
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from recall_agent.domain.context.state.conversation_store import ConversationStore
from recall_agent.domain.errors import ModelQueryError
from recall_agent.domain.models.turn_state import TurnResponse, TurnState
from recall_agent.domain.reflection.reflection_evaluator import ReflectionEvaluator
from recall_agent.domain.tool.tool_gateway import ToolGateway
from recall_agent.infrastructure.config.settings import AgentSettings
from recall_agent.infrastructure.llm.model_client import ModelClient
from recall_agent.infrastructure.observability.langfuse_tracing import TurnTracer
from recall_agent.infrastructure.observability.logging import metrics
from .execution_context import ExecutionContext
from .stages import (
    entry,
    memory_retrieval,
    memory_storage,
    model_query,
    route_after_model_query,
    self_reflection,
    tool_execution,
)

logger = structlog.get_logger(__name__)


class TurnController:
    """Runs one conversational turn through the LangGraph pipeline"""

    def __init__(
        self,
        model_client: ModelClient,
        tool_gateway: ToolGateway,
        retriever: MemoryRetriever,
        memory_store: MemoryStore,
        settings: Optional[AgentSettings] = None,
        reflection_evaluator: Optional[ReflectionEvaluator] = None,
        conversation_store: Optional[ConversationStore] = None,
        tracer: Optional[TurnTracer] = None
    ):
        self.model_client = model_client
        self.tool_gateway = tool_gateway
        self.retriever = retriever
        self.memory_store = memory_store
        self.settings = settings or AgentSettings()
        self.reflection_evaluator = reflection_evaluator
        self.conversation_store = conversation_store or ConversationStore()
        self.tracer = tracer
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn graph"""

        workflow = StateGraph(TurnState)

        workflow.add_node("entry", entry)
        workflow.add_node("memory_retrieval", memory_retrieval)
        workflow.add_node("model_query", model_query)
        workflow.add_node("tool_execution", tool_execution)
        workflow.add_node("self_reflection", self_reflection)
        workflow.add_node("memory_storage", memory_storage)

        workflow.set_entry_point("entry")
        workflow.add_edge("entry", "memory_retrieval")
        workflow.add_edge("memory_retrieval", "model_query")

        # At most one tool call per turn; there is no edge back to model_query
        workflow.add_conditional_edges(
            "model_query",
            route_after_model_query,
            {
                "tool_execution": "tool_execution",
                "self_reflection": "self_reflection"
            }
        )
        workflow.add_edge("tool_execution", "self_reflection")
        workflow.add_edge("self_reflection", "memory_storage")
        workflow.add_edge("memory_storage", END)

        return workflow.compile()

    def new_execution_context(self) -> ExecutionContext:
        return ExecutionContext(
            settings=self.settings,
            model_client=self.model_client,
            tool_gateway=self.tool_gateway,
            retriever=self.retriever,
            memory_store=self.memory_store,
            reflection_evaluator=self.reflection_evaluator
        )

    async def _load_history(self, session_id: str) -> List[BaseMessage]:
        previous = await self.conversation_store.get(session_id)
        limit = self.settings.history_limit
        if not previous or limit == 0:
            return []
        return list(previous.get("messages", []))[-limit:]

    async def run_turn(self, session_id: str, user_text: str) -> TurnResponse:
        """Process a user message and return the assistant's reply.

        Only a model query failure aborts the turn; the caller then gets the
        configured apology with ``failed`` set.
        """

        context = self.new_execution_context()
        structlog.contextvars.bind_contextvars(session_id=session_id, turn_id=context.turn_id)

        initial: TurnState = {
            "session_id": session_id,
            "user_text": user_text,
            "messages": await self._load_history(session_id),
            "tool_results": {},
            "diagnostics": [],
        }

        config = context.as_config()
        if self.tracer is not None:
            config.update(self.tracer.run_config(session_id, context.turn_id))

        logger.info("Turn started", user_text_length=len(user_text))
        last: Dict[str, Any] = dict(initial)
        snapshot_errors: List[str] = []
        try:
            async for snapshot in self.workflow.astream(initial, config, stream_mode="values"):
                last = snapshot
                error = await self._save_snapshot(session_id, snapshot)
                if error is not None and error not in snapshot_errors:
                    snapshot_errors.append(error)
        except ModelQueryError as e:
            logger.error("Turn aborted", error=str(e), exc_info=True)
            metrics.increment_counter("turns_failed")
            return await self._abort(session_id, last, str(e), snapshot_errors)
        finally:
            structlog.contextvars.unbind_contextvars("session_id", "turn_id")

        metrics.increment_counter("turns_completed")
        return TurnResponse(
            session_id=session_id,
            assistant_text=last.get("assistant_text") or "",
            tool_call_executed=last.get("tool_call_executed"),
            stored_memory_id=last.get("stored_memory_id"),
            reflection=last.get("reflection"),
            diagnostics=list(last.get("diagnostics") or []) + snapshot_errors
        )

    async def _save_snapshot(self, session_id: str, snapshot: Dict[str, Any]) -> Optional[str]:
        """Store a stage snapshot; a failure keeps the previous one and is returned as a diagnostic"""

        try:
            await self.conversation_store.put(session_id, snapshot)
        except Exception as e:
            logger.warning("Snapshot not saved", error=str(e), exc_info=True)
            metrics.increment_counter("snapshot_failures")
            return f"conversation snapshot failed: {e}"
        return None

    async def _abort(
        self,
        session_id: str,
        last: Dict[str, Any],
        error: str,
        snapshot_errors: List[str]
    ) -> TurnResponse:
        apology = self.settings.apology_message
        diagnostics = list(last.get("diagnostics") or []) + snapshot_errors + [f"model_query failed: {error}"]

        state = dict(last)
        state["messages"] = list(last.get("messages") or []) + [AIMessage(content=apology)]
        state["assistant_text"] = apology
        state["diagnostics"] = diagnostics
        snapshot_error = await self._save_snapshot(session_id, state)
        if snapshot_error is not None:
            diagnostics.append(snapshot_error)

        return TurnResponse(
            session_id=session_id,
            assistant_text=apology,
            diagnostics=diagnostics,
            failed=True
        )

    async def get_messages(self, session_id: str) -> List[BaseMessage]:
        state = await self.conversation_store.get(session_id)
        return list(state.get("messages", [])) if state else []

    async def reset_session(self, session_id: str) -> bool:
        return await self.conversation_store.delete(session_id)
