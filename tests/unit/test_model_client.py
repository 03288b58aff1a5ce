import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel, GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage

from recall_agent.domain.errors import ModelQueryError
from recall_agent.infrastructure.llm.model_client import (
    ChatModelClient,
    TextReply,
    ToolInvocationReply,
    content_to_text,
)


class ToolCallingFake(GenericFakeChatModel):
    def bind_tools(self, tools, **kwargs):
        return self


class FailingModel(FakeListChatModel):
    async def ainvoke(self, *args, **kwargs):
        raise ConnectionError("provider unreachable")


def test_content_blocks_are_flattened():
    assert content_to_text([{"type": "text", "text": "a"}, {"type": "image_url"}, "b"]) == "ab"
    assert content_to_text("plain") == "plain"


@pytest.mark.asyncio
async def test_generate_returns_model_text():
    client = ChatModelClient(FakeListChatModel(responses=["Hi there"]))

    assert await client.generate([HumanMessage(content="hello")], "be nice") == "Hi there"


@pytest.mark.asyncio
async def test_failure_raises_model_query_error():
    client = ChatModelClient(FailingModel(responses=["unused"]))

    with pytest.raises(ModelQueryError):
        await client.generate([HumanMessage(content="hello")])


@pytest.mark.asyncio
async def test_text_reply_without_native_tools():
    client = ChatModelClient(FakeListChatModel(responses=["just text"]))

    reply = await client.generate_reply([HumanMessage(content="q")], tools=[{"type": "function"}])

    assert isinstance(reply, TextReply)
    assert reply.text == "just text"


@pytest.mark.asyncio
async def test_native_tool_call_becomes_tagged_reply():
    message = AIMessage(
        content="",
        tool_calls=[{"name": "math__add", "args": {"a": 1, "b": 2}, "id": "call_1"}]
    )
    client = ChatModelClient(ToolCallingFake(messages=iter([message])), native_tools=True)

    reply = await client.generate_reply([HumanMessage(content="1+2?")], tools=[{"type": "function"}])

    assert isinstance(reply, ToolInvocationReply)
    assert reply.tool_call.provider_name == "math"
    assert reply.tool_call.tool_name == "add"
    assert reply.tool_call.arguments == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_stream_yields_chunks():
    client = ChatModelClient(FakeListChatModel(responses=["abc"]))

    chunks = [chunk async for chunk in client.stream([HumanMessage(content="q")])]

    assert "".join(chunks) == "abc"
