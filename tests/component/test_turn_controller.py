"""
End-to-end turns through the LangGraph pipeline with a scripted model,
the in-memory store and local tool providers.
"""

import asyncio
import threading

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from conftest import FixedSemanticStore, ScriptedModelClient
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from recall_agent.domain.context.state.conversation_store import ConversationStore
from recall_agent.domain.errors import ModelQueryError
from recall_agent.domain.models.memory import SearchType
from recall_agent.domain.models.turn_state import PendingToolCall
from recall_agent.domain.orchestration.core.turn_controller import TurnController
from recall_agent.domain.reflection.reflection_evaluator import (
    ReflectionEvaluator,
    ReflectionOutcome,
    ReflectionStrategy,
)
from recall_agent.domain.tool.tool_gateway import ToolGateway
from recall_agent.domain.tool.tool_provider import LocalToolProvider
from recall_agent.infrastructure.llm.model_client import TextReply, ToolInvocationReply


@pytest.fixture
def math_tools(gateway):
    provider = LocalToolProvider("math")

    @provider.tool(description="Add two numbers", input_schema={
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    })
    def add(a, b):
        return a + b

    @provider.tool(description="Always fails")
    def explode():
        raise RuntimeError("tool backend crashed")

    gateway.register_provider(provider)
    return provider


class RewritingStrategy(ReflectionStrategy):
    async def evaluate(self, user_text, reply):
        return ReflectionOutcome(score=2, critique="too terse", improved_text=f"{reply} (expanded)")


@pytest.mark.asyncio
async def test_greeting_skips_retrieval_and_context(make_controller):
    client = ScriptedModelClient(["Hello! How can I help?"])
    controller = make_controller(client)

    response = await controller.run_turn("s1", "hello")

    state = await controller.conversation_store.get("s1")
    assert state["retrieval_evaluation"].should_retrieve is False
    assert state.get("memory_context") is None
    assert "Based on previous conversations" not in client.calls[0]["system_prompt"]
    assert response.assistant_text == "Hello! How can I help?"
    assert response.failed is False


@pytest.mark.asyncio
async def test_recalled_memory_reaches_the_model(make_controller, memory_store):
    await memory_store.store("Paris is the capital of France", {"session_id": "s1", "message_type": "assistant"})
    client = ScriptedModelClient(["It is Paris."])
    controller = make_controller(client)

    await controller.run_turn("s1", "What is the capital of France?")

    state = await controller.conversation_store.get("s1")
    first = state["retrieval_evaluation"].merged_results[0]
    assert first.text == "Paris is the capital of France"
    assert first.search_type == SearchType.SEMANTIC
    assert "Paris is the capital of France" in client.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_plain_reply_goes_straight_to_reflection(make_controller):
    controller = make_controller(ScriptedModelClient(["No tool needed here."]))

    response = await controller.run_turn("s1", "Explain recursion briefly")

    state = await controller.conversation_store.get("s1")
    assert state.get("pending_tool_call") is None
    assert response.tool_call_executed is None
    assert response.reflection.score == 10
    assert response.stored_memory_id is not None


@pytest.mark.asyncio
async def test_tool_call_runs_once(make_controller, math_tools):
    client = ScriptedModelClient([
        'Let me add those.\n```json\n{"provider": "math", "tool": "add", "args": {"a": 2, "b": 3}}\n```'
    ])
    controller = make_controller(client)

    response = await controller.run_turn("s1", "What is 2 plus 3 exactly?")

    assert len(client.calls) == 1
    assert response.tool_call_executed.success
    assert response.tool_call_executed.result == 5
    assert response.assistant_text.startswith("Let me add those.")
    assert "The result was: 5" in response.assistant_text
    state = await controller.conversation_store.get("s1")
    assert state["tool_results"] == {"add": 5}
    assert "## math provider:" in client.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_failing_tool_still_completes_turn(make_controller, math_tools):
    client = ScriptedModelClient(['{"provider": "math", "tool": "explode", "args": {}}'])
    controller = make_controller(client)

    response = await controller.run_turn("s1", "Please run the explode tool")

    assert response.failed is False
    assert response.assistant_text
    assert response.tool_call_executed.success is False
    assert any("Error calling tool explode" in d and "tool backend crashed" in d for d in response.diagnostics)
    assert response.stored_memory_id is not None


@pytest.mark.asyncio
async def test_tool_call_without_tool_key_is_plain_text(make_controller, math_tools):
    reply = '```json\n{"provider": "math", "args": {"a": 1}}\n```'
    controller = make_controller(ScriptedModelClient([reply]))

    response = await controller.run_turn("s1", "Add something please")

    assert response.tool_call_executed is None
    assert response.assistant_text == reply


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [ModelQueryError("model offline"), RuntimeError("socket closed")])
async def test_model_failure_returns_apology(make_controller, memory_store, settings, failure):
    controller = make_controller(ScriptedModelClient([failure]))

    response = await controller.run_turn("s1", "Summarise our last meeting")

    assert response.failed is True
    assert response.assistant_text == settings.apology_message
    assert response.stored_memory_id is None
    assert any(d.startswith("model_query failed") for d in response.diagnostics)
    assert await memory_store.count() == 0
    messages = await controller.get_messages("s1")
    assert isinstance(messages[-1], AIMessage)
    assert messages[-1].content == settings.apology_message


@pytest.mark.asyncio
async def test_reflection_rewrite_replaces_last_message_and_stored_memory(make_controller, memory_store):
    controller = make_controller(
        ScriptedModelClient(["Short answer."]),
        evaluator=ReflectionEvaluator(RewritingStrategy())
    )

    response = await controller.run_turn("s1", "Tell me about vector databases")

    assert response.reflection.improved is True
    assert response.assistant_text == "Short answer. (expanded)"
    messages = await controller.get_messages("s1")
    ai_messages = [m for m in messages if isinstance(m, AIMessage)]
    assert [m.content for m in ai_messages] == ["Short answer. (expanded)"]
    stored = await memory_store.get(response.stored_memory_id)
    assert stored.text == "Short answer. (expanded)"


@pytest.mark.asyncio
async def test_history_carries_into_next_turn(make_controller):
    client = ScriptedModelClient(["First reply", "Second reply"])
    controller = make_controller(client)

    await controller.run_turn("s1", "My name is Ada")
    await controller.run_turn("s1", "What is my name?")

    second_call = client.calls[1]["messages"]
    assert [type(m) for m in second_call] == [HumanMessage, AIMessage, HumanMessage]
    assert second_call[0].content == "My name is Ada"
    assert second_call[-1].content == "What is my name?"


@pytest.mark.asyncio
async def test_concurrent_sessions_are_isolated(make_controller, memory_store):
    await memory_store.store("Alice's favourite colour is blue", {"session_id": "A"})
    await memory_store.store("Bob's favourite colour is green", {"session_id": "B"})
    controller = make_controller(ScriptedModelClient(default="Noted."))

    await asyncio.gather(
        controller.run_turn("A", "What is my favourite colour?"),
        controller.run_turn("B", "What is my favourite colour?"),
    )

    state_a = await controller.conversation_store.get("A")
    state_b = await controller.conversation_store.get("B")
    assert all(r.metadata["session_id"] == "A" for r in state_a["retrieval_evaluation"].merged_results)
    assert all(r.metadata["session_id"] == "B" for r in state_b["retrieval_evaluation"].merged_results)
    assert "blue" in state_a["memory_context"] and "green" not in state_a["memory_context"]
    assert "green" in state_b["memory_context"] and "blue" not in state_b["memory_context"]


@pytest.mark.asyncio
async def test_retrieval_and_storage_failures_fall_back(settings):
    class FlakyStore(FixedSemanticStore):
        async def search(self, *args, **kwargs):
            raise ConnectionError("vector index down")

        async def store(self, text, metadata=None):
            raise ConnectionError("write refused")

    store = FlakyStore()
    controller = TurnController(
        model_client=ScriptedModelClient(["Still here."]),
        tool_gateway=ToolGateway(),
        retriever=MemoryRetriever(store, settings.retrieval),
        memory_store=store,
        settings=settings
    )

    response = await controller.run_turn("s1", "What did we plan for the launch?")

    assert response.failed is False
    assert response.assistant_text == "Still here."
    assert response.stored_memory_id is None
    assert any(d.startswith("memory_retrieval failed") for d in response.diagnostics)
    assert any(d.startswith("memory_storage failed") for d in response.diagnostics)


@pytest.mark.asyncio
async def test_native_tool_invocation_reply(make_controller, math_tools, settings):
    class NativeClient(ScriptedModelClient):
        @property
        def supports_native_tools(self):
            return True

        async def generate_reply(self, messages, system_prompt=None, tools=None):
            self.calls.append({"messages": messages, "system_prompt": system_prompt, "tools": tools})
            if tools:
                return ToolInvocationReply(
                    tool_call=PendingToolCall(provider_name="math", tool_name="add", arguments={"a": 4, "b": 4})
                )
            return TextReply(text="no tools offered")

    native_settings = settings.model_copy(update={
        "tools": settings.tools.model_copy(update={"native_tool_calls": True})
    })
    client = NativeClient()
    controller = make_controller(client, turn_settings=native_settings)

    response = await controller.run_turn("s1", "Add four and four")

    assert client.calls[0]["tools"][0]["function"]["name"] == "math__add"
    assert response.tool_call_executed.result == 8
    assert response.assistant_text.startswith("I'll use a tool to help with this.")


@pytest.mark.asyncio
async def test_tool_returning_uncopyable_handle_completes_turn(make_controller, gateway):
    provider = LocalToolProvider("sys")

    @provider.tool(description="Hands back a live lock")
    def handle():
        return {"lock": threading.Lock(), "status": "open"}

    gateway.register_provider(provider)
    controller = make_controller(ScriptedModelClient(['{"provider": "sys", "tool": "handle", "args": {}}']))

    response = await controller.run_turn("s1", "Open a handle for me")

    assert response.failed is False
    assert response.tool_call_executed.success
    assert response.tool_call_executed.result["status"] == "open"
    state = await controller.conversation_store.get("s1")
    assert state["tool_results"]["handle"]["status"] == "open"
    assert isinstance(state["tool_results"]["handle"]["lock"], str)


@pytest.mark.asyncio
async def test_snapshot_failure_is_reported_not_raised(make_controller):
    class RefusingStore(ConversationStore):
        async def put(self, session_id, state):
            raise TypeError("cannot pickle 'generator' object")

    controller = make_controller(ScriptedModelClient(["Done."]), conversation_store=RefusingStore())

    response = await controller.run_turn("s1", "Summarise the release plan")

    assert response.failed is False
    assert response.assistant_text == "Done."
    assert response.diagnostics.count("conversation snapshot failed: cannot pickle 'generator' object") == 1
