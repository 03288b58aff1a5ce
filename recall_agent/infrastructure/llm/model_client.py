"""
Model client boundary.

The turn engine only sees ``ModelClient``. ``ChatModelClient`` adapts any
LangChain chat model to it; inference failures surface as ``ModelQueryError``.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Union, Annotated

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage
from pydantic import BaseModel, Field

from recall_agent.domain.errors import ModelQueryError
from recall_agent.domain.models.turn_state import PendingToolCall

logger = structlog.get_logger(__name__)


NATIVE_TOOL_SEPARATOR = "__"


class TextReply(BaseModel):
    """Plain assistant text"""
    kind: Literal["text"] = "text"
    text: str


class ToolInvocationReply(BaseModel):
    """Structured tool call returned by the model"""
    kind: Literal["tool_invocation"] = "tool_invocation"
    text: str = ""
    tool_call: PendingToolCall


ModelReply = Annotated[Union[TextReply, ToolInvocationReply], Field(discriminator="kind")]


def content_to_text(content: Any) -> str:
    """Flatten LangChain message content (str or content blocks) to text"""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")


class ModelClient(ABC):
    """Text generation backend used by the turn engine"""

    @property
    def supports_native_tools(self) -> bool:
        return False

    @abstractmethod
    async def generate(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> str:
        """Generate a reply; raise ModelQueryError on failure"""
        pass

    async def generate_reply(
        self,
        messages: List[BaseMessage],
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> ModelReply:
        """Generate a tagged reply. Clients without native tools return text."""

        return TextReply(text=await self.generate(messages, system_prompt))

    async def stream(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> AsyncIterator[str]:
        """Yield reply chunks. Defaults to a single chunk."""

        yield await self.generate(messages, system_prompt)


class ChatModelClient(ModelClient):
    """ModelClient over a LangChain chat model"""

    def __init__(self, model: BaseChatModel, native_tools: bool = False):
        self.model = model
        self.native_tools = native_tools

    @property
    def supports_native_tools(self) -> bool:
        return self.native_tools

    @staticmethod
    def _prepare(messages: List[BaseMessage], system_prompt: Optional[str]) -> List[BaseMessage]:
        prepared = [message for message in messages if not isinstance(message, SystemMessage)]
        if system_prompt:
            prepared.insert(0, SystemMessage(content=system_prompt))
        return prepared

    async def generate(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> str:
        try:
            response = await self.model.ainvoke(self._prepare(messages, system_prompt))
        except Exception as e:
            logger.error("Model invocation failed", error=str(e), exc_info=True)
            raise ModelQueryError(f"Model invocation failed: {e}") from e

        return content_to_text(response.content)

    async def generate_reply(
        self,
        messages: List[BaseMessage],
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> ModelReply:
        if not (self.native_tools and tools):
            return await super().generate_reply(messages, system_prompt, tools)

        try:
            bound = self.model.bind_tools(tools)
            response = await bound.ainvoke(self._prepare(messages, system_prompt))
        except Exception as e:
            logger.error("Model invocation with tools failed", error=str(e), exc_info=True)
            raise ModelQueryError(f"Model invocation failed: {e}") from e

        text = content_to_text(response.content)
        tool_calls = getattr(response, "tool_calls", None) or []
        if not tool_calls:
            return TextReply(text=text)

        if len(tool_calls) > 1:
            logger.warning("Model requested several tools; only the first runs", count=len(tool_calls))

        first = tool_calls[0]
        provider, _, tool = first["name"].partition(NATIVE_TOOL_SEPARATOR)
        if not tool:
            logger.warning("Native tool call without provider prefix", name=first["name"])
            return TextReply(text=text)

        return ToolInvocationReply(
            text=text,
            tool_call=PendingToolCall(provider_name=provider, tool_name=tool, arguments=first.get("args") or {})
        )

    async def stream(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> AsyncIterator[str]:
        try:
            async for chunk in self.model.astream(self._prepare(messages, system_prompt)):
                text = content_to_text(chunk.content)
                if text:
                    yield text
        except Exception as e:
            logger.error("Model stream failed", error=str(e), exc_info=True)
            raise ModelQueryError(f"Model stream failed: {e}") from e

