from .conscious_memory_tools import ConsciousMemoryToolProvider
from .tool_call_parser import extract_tool_call, find_tool_call, strip_tool_call
from .tool_gateway import ProviderTools, ToolGateway
from .tool_provider import LocalToolProvider, ToolDescriptor, ToolProvider

__all__ = [
    "ConsciousMemoryToolProvider",
    "extract_tool_call",
    "find_tool_call",
    "strip_tool_call",
    "ProviderTools",
    "ToolGateway",
    "LocalToolProvider",
    "ToolDescriptor",
    "ToolProvider",
]
