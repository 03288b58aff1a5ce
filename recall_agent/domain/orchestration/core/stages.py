"""
Turn pipeline stages.

Every stage is ``async (state, config) -> partial update``. Collaborators come
from the execution context in the run config. A stage registered with a
fallback never fails the turn: the error is logged, recorded in
``diagnostics`` and the fallback update is used instead.
"""

from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional
import functools
import json
import time

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.runnables import RunnableConfig

from recall_agent.domain.errors import ModelQueryError
from recall_agent.domain.models.turn_state import (
    PendingToolCall,
    ReflectionResult,
    RetrievalEvaluation,
    TurnState,
)
from recall_agent.domain.reflection.reflection_evaluator import EVALUATION_FAILED
from recall_agent.domain.tool.tool_call_parser import find_tool_call
from recall_agent.domain.tool.tool_gateway import ProviderTools
from recall_agent.infrastructure.llm.model_client import ToolInvocationReply
from recall_agent.infrastructure.observability.logging import metrics, turn_events
from .execution_context import ExecutionContext, get_execution_context

logger = structlog.get_logger(__name__)


StageFunction = Callable[[TurnState, RunnableConfig], Awaitable[Dict[str, Any]]]
Fallback = Callable[[TurnState, Exception], Dict[str, Any]]

TOOL_INTRO = "I'll use a tool to help with this."


def pipeline_stage(name: str, fallback: Optional[Fallback] = None):
    """Time and log a stage, substituting ``fallback`` when it raises"""

    def decorator(func: StageFunction) -> StageFunction:
        @functools.wraps(func)
        async def wrapper(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
            session_id = state.get("session_id")
            started = time.perf_counter()
            try:
                update = await func(state, config)
            except Exception as e:
                duration_ms = (time.perf_counter() - started) * 1000
                turn_events.stage(name, session_id, duration_ms, error=str(e))
                metrics.increment_counter("stage_failures", tags={"stage": name})
                if fallback is None:
                    raise
                logger.warning("Stage failed, using default", stage=name, error=str(e), exc_info=True)
                update = dict(fallback(state, e))
                update["diagnostics"] = update.get("diagnostics", []) + [f"{name} failed: {e}"]
                return update

            duration_ms = (time.perf_counter() - started) * 1000
            turn_events.stage(name, session_id, duration_ms)
            metrics.record_latency(name, duration_ms)
            return update
        return wrapper
    return decorator


@pipeline_stage("entry")
async def entry(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Append the user's message to the transcript"""

    return {
        "messages": [HumanMessage(content=state["user_text"])],
        "pending_tool_call": None,
        "assistant_text": None,
    }


def _empty_retrieval(state: TurnState, error: Exception) -> Dict[str, Any]:
    return {
        "retrieval_evaluation": RetrievalEvaluation(should_retrieve=False, query=state.get("user_text", "")),
        "memory_context": None,
    }


@pipeline_stage("memory_retrieval", fallback=_empty_retrieval)
async def memory_retrieval(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    context = get_execution_context(config)
    session_id = state["session_id"] if context.settings.retrieval.session_scoped else None

    evaluation, memory_context = await context.retriever.retrieve(state["user_text"], session_id=session_id)
    turn_events.memory(
        state["session_id"],
        "retrieve",
        should_retrieve=evaluation.should_retrieve,
        results=len(evaluation.merged_results)
    )
    return {"retrieval_evaluation": evaluation, "memory_context": memory_context or None}


def build_system_prompt(
    context: ExecutionContext,
    memory_context: Optional[str],
    listings: List[ProviderTools]
) -> str:
    """Base prompt, tool capabilities, then recalled context"""

    parts = [context.settings.system_prompt]

    capabilities = context.tool_gateway.build_capability_prompt(
        listings, include_text_protocol=context.settings.tools.parse_text_tool_calls
    )
    if capabilities:
        parts.append(capabilities)
    if memory_context:
        parts.append(memory_context)
    return "\n\n".join(parts)


@pipeline_stage("model_query")
async def model_query(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Ask the model for a reply and detect a tool request.

    Any failure here is a ModelQueryError and aborts the turn.
    """

    context = get_execution_context(config)
    tool_settings = context.settings.tools

    listings = await context.tool_gateway.list_all_tools()
    system_prompt = build_system_prompt(context, state.get("memory_context"), listings)

    native = tool_settings.native_tool_calls and context.model_client.supports_native_tools
    tools = context.tool_gateway.to_native_tool_specs(listings) if native else None

    try:
        reply = await context.model_client.generate_reply(list(state.get("messages", [])), system_prompt, tools)
    except ModelQueryError:
        raise
    except Exception as e:
        raise ModelQueryError(f"Model query failed: {e}") from e

    call: Optional[PendingToolCall] = None
    text = reply.text
    if isinstance(reply, ToolInvocationReply):
        call = reply.tool_call
    elif tool_settings.parse_text_tool_calls:
        found = find_tool_call(text)
        if found is not None:
            call, start, end = found
            text = (text[:start] + text[end:]).strip()

    if call is not None:
        logger.info("Tool call requested", provider=call.provider_name, tool=call.tool_name)
        # The assistant message is written once the tool has run
        return {"pending_tool_call": call, "assistant_text": text.strip() or TOOL_INTRO}

    return {
        "pending_tool_call": None,
        "assistant_text": text,
        "messages": [AIMessage(content=text)],
    }


def route_after_model_query(state: TurnState) -> Literal["tool_execution", "self_reflection"]:
    route = "tool_execution" if state.get("pending_tool_call") is not None else "self_reflection"
    turn_events.transition(state.get("session_id"), "model_query", route, condition="pending_tool_call")
    return route


def describe_tool_outcome(call: PendingToolCall, result: Any) -> str:
    args = json.dumps(call.arguments, default=str)
    return (
        f"I called the tool {call.tool_name} from {call.provider_name} with the arguments {args}. "
        f"The result was: {json.dumps(result, default=str)}"
    )


def _tool_failed(state: TurnState, error: Exception) -> Dict[str, Any]:
    intro = state.get("assistant_text") or TOOL_INTRO
    call = state.get("pending_tool_call")
    tool = call.tool_name if call else "unknown"
    text = f"{intro}\n\nError calling tool {tool}: {error}"
    return {"assistant_text": text, "messages": [AIMessage(content=text)]}


@pipeline_stage("tool_execution", fallback=_tool_failed)
async def tool_execution(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    context = get_execution_context(config)
    call = state.get("pending_tool_call")
    if call is None:
        return {}

    record = await context.tool_gateway.execute(call, session_id=state.get("session_id"))
    intro = state.get("assistant_text") or TOOL_INTRO

    update: Dict[str, Any] = {"tool_call_executed": record}
    if record.success:
        update["tool_results"] = {call.tool_name: record.result}
        text = f"{intro}\n\n{describe_tool_outcome(call, record.result)}"
    else:
        update["diagnostics"] = [record.error]
        text = f"{intro}\n\n{record.error}"

    update["assistant_text"] = text
    update["messages"] = [AIMessage(content=text)]
    return update


def _last_assistant_message(messages: List[BaseMessage]) -> Optional[AIMessage]:
    for message in reversed(messages):
        if isinstance(message, AIMessage):
            return message
    return None


def _unreflected(state: TurnState, error: Exception) -> Dict[str, Any]:
    return {"reflection": ReflectionResult(score=0, critique=EVALUATION_FAILED, improved=False)}


@pipeline_stage("self_reflection", fallback=_unreflected)
async def self_reflection(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Critique the reply, replacing it when the critique offers a better one"""

    context = get_execution_context(config)
    evaluator = context.reflection_evaluator
    reply = state.get("assistant_text")
    if evaluator is None or not context.settings.reflection.enabled or not reply:
        return {}

    reflection, final_text = await evaluator.reflect(state["user_text"], reply)
    update: Dict[str, Any] = {"reflection": reflection}
    if reflection.improved:
        update["assistant_text"] = final_text
        last = _last_assistant_message(state.get("messages", []))
        if last is not None and last.id is not None:
            # Same id replaces the message instead of appending
            update["messages"] = [AIMessage(content=final_text, id=last.id)]
    return update


def _storage_skipped(state: TurnState, error: Exception) -> Dict[str, Any]:
    return {"stored_memory_id": None}


@pipeline_stage("memory_storage", fallback=_storage_skipped)
async def memory_storage(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Persist the finished exchange as two memories, user then assistant"""

    context = get_execution_context(config)
    reply = state.get("assistant_text")
    if not context.settings.store_memories or not reply:
        return {}

    session_id = state["session_id"]
    timestamp = int(time.time() * 1000)
    user_text = state["user_text"]

    user_id = None
    if user_text.strip():
        user_id = await context.memory_store.store(user_text, {
            "session_id": session_id,
            "timestamp": timestamp,
            "message_type": "user",
            "text_length": len(user_text),
        })
    assistant_id = await context.memory_store.store(reply, {
        "session_id": session_id,
        "timestamp": timestamp,
        "message_type": "assistant",
        "text_length": len(reply),
    })

    turn_events.memory(session_id, "store", user_memory_id=user_id, assistant_memory_id=assistant_id)
    return {"stored_memory_id": assistant_id}
