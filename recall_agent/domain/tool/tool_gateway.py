from typing import Dict, List, Any, Optional
from datetime import datetime, timezone
import json

import structlog
from pydantic import BaseModel, Field

from recall_agent.domain.errors import ToolExecutionError, ToolNotFoundError
from recall_agent.domain.models.turn_state import PendingToolCall, ToolExecutionRecord
from recall_agent.infrastructure.llm.model_client import NATIVE_TOOL_SEPARATOR
from recall_agent.infrastructure.observability.logging import metrics, turn_events
from .tool_provider import ToolDescriptor, ToolProvider
from .tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)


TEXT_PROTOCOL_INSTRUCTIONS = (
    "\nTo use a tool, respond with JSON in the following format:\n"
    '```json\n{"provider": "providerName", "tool": "toolName", "args": {"arg1": "value1"}}\n```\n'
    "If you don't need to use a tool, just respond normally."
)


def to_json_safe(value: Any) -> Any:
    """Plain JSON form of a tool result; objects JSON cannot encode become strings"""
    return json.loads(json.dumps(value, default=str))


class ProviderTools(BaseModel):
    """Tool listing for a single provider"""
    provider: str
    tools: List[ToolDescriptor] = Field(default_factory=list)


class ToolGateway:
    """Registry of tool providers and the single entry point for running tools"""

    def __init__(self, validate_arguments: bool = True):
        self.providers: Dict[str, ToolProvider] = {}
        self.validate_arguments = validate_arguments

    def register_provider(self, provider: ToolProvider):
        """Register a provider under its name, replacing any previous one"""

        if provider.name in self.providers:
            logger.warning("Replacing tool provider", provider=provider.name)
        self.providers[provider.name] = provider
        logger.info("Tool provider registered", provider=provider.name)

    def unregister_provider(self, name: str) -> bool:
        return self.providers.pop(name, None) is not None

    def get_provider(self, name: str) -> Optional[ToolProvider]:
        return self.providers.get(name)

    def describe_providers(self) -> List[Dict[str, Any]]:
        """Provider info, sorted by name"""
        return [self.providers[name].get_info() for name in sorted(self.providers)]

    async def list_all_tools(self) -> List[ProviderTools]:
        """Collect tool descriptors from every provider.

        A provider that fails to list its tools is logged and left out.
        """

        listings = []
        for name, provider in self.providers.items():
            try:
                tools = await provider.list_tools()
            except Exception as e:
                logger.error("Error listing tools", provider=name, error=str(e), exc_info=True)
                continue
            listings.append(ProviderTools(provider=name, tools=tools))
        return listings

    def build_capability_prompt(self, listings: List[ProviderTools], include_text_protocol: bool = True) -> str:
        """Describe available tools for the system prompt ("" when there are none)"""

        listings = [listing for listing in listings if listing.tools]
        if not listings:
            return ""

        prompt = "You have access to the following tools:\n"
        for listing in listings:
            prompt += f"\n## {listing.provider} provider:\n"
            for tool in listing.tools:
                prompt += f"- {tool.name}: {tool.description or 'No description'}\n"

        if include_text_protocol:
            prompt += TEXT_PROTOCOL_INSTRUCTIONS
        else:
            prompt += "\nUse these tools when they would be helpful to answer the user's question."
        return prompt

    def to_native_tool_specs(self, listings: List[ProviderTools]) -> List[Dict[str, Any]]:
        """OpenAI-style function specs, named ``provider__tool``"""

        specs = []
        for listing in listings:
            for tool in listing.tools:
                specs.append({
                    "type": "function",
                    "function": {
                        "name": f"{listing.provider}{NATIVE_TOOL_SEPARATOR}{tool.name}",
                        "description": tool.description,
                        "parameters": tool.input_schema or {"type": "object", "properties": {}},
                    },
                })
        return specs

    async def _find_descriptor(self, provider: ToolProvider, tool_name: str) -> Optional[ToolDescriptor]:
        for tool in await provider.list_tools():
            if tool.name == tool_name:
                return tool
        return None

    async def execute(self, call: PendingToolCall, session_id: Optional[str] = None) -> ToolExecutionRecord:
        """Invoke a tool. Never raises; failures come back as a diagnostic."""

        record = ToolExecutionRecord(
            provider=call.provider_name,
            tool=call.tool_name,
            args=dict(call.arguments),
            started_at=datetime.now(timezone.utc)
        )

        try:
            provider = self.get_provider(call.provider_name)
            if provider is None:
                raise ToolNotFoundError(
                    f"No tool provider named '{call.provider_name}'",
                    provider=call.provider_name,
                    tool=call.tool_name
                )

            if self.validate_arguments:
                descriptor = await self._find_descriptor(provider, call.tool_name)
                if descriptor is None:
                    raise ToolNotFoundError(
                        f"Provider '{call.provider_name}' has no tool '{call.tool_name}'",
                        provider=call.provider_name,
                        tool=call.tool_name
                    )
                ToolParameterValidator.validate_tool_call(provider.name, descriptor, call.arguments)

            result = await provider.invoke(call.tool_name, dict(call.arguments))
            record.result = to_json_safe(result)
        except ToolExecutionError as e:
            record.error = self.format_diagnostic(call, str(e))
        except Exception as e:
            logger.error(
                "Tool invocation raised",
                provider=call.provider_name,
                tool=call.tool_name,
                error=str(e),
                exc_info=True
            )
            record.error = self.format_diagnostic(call, f"{type(e).__name__}: {e}")
        finally:
            record.finished_at = datetime.now(timezone.utc)

        turn_events.tool_call(record, session_id)
        metrics.record_latency("tool_invoke", record.duration_ms or 0.0, tags={"tool": record.tool})
        metrics.increment_counter("tool_calls_succeeded" if record.success else "tool_calls_failed")

        return record

    @staticmethod
    def format_diagnostic(call: PendingToolCall, error: str) -> str:
        args = json.dumps(call.arguments, default=str)
        return (
            f"Error calling tool {call.tool_name} from {call.provider_name} "
            f"with arguments {args}: {error}"
        )
