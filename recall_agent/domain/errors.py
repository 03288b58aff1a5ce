from typing import Optional


class AgentError(Exception):
    """Base class for turn engine errors"""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class ModelQueryError(AgentError):
    """Model inference failed. Aborts the turn."""

    def __init__(self, message: str):
        super().__init__(message, stage="model_query")


class MemoryStoreError(AgentError):
    """Memory store rejected a read or write"""


class ToolExecutionError(AgentError):
    """A tool provider failed while invoking a tool"""

    def __init__(self, message: str, provider: str, tool: str):
        super().__init__(message, stage="tool_execution")
        self.provider = provider
        self.tool = tool


class ToolNotFoundError(ToolExecutionError):
    """Unknown provider or tool"""


class ToolValidationError(ToolExecutionError):
    """Tool arguments do not satisfy the tool's input schema"""


class ReflectionError(AgentError):
    """Reflection strategy could not produce an evaluation"""

    def __init__(self, message: str):
        super().__init__(message, stage="self_reflection")
