from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from datetime import datetime, timezone
import asyncio
import inspect

from pydantic import BaseModel, Field

from recall_agent.domain.errors import ToolNotFoundError


class ToolDescriptor(BaseModel):
    """Capability advertised by a provider"""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolProvider(ABC):
    """Base class for named tool providers"""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self.created_at = datetime.now(timezone.utc)
        self.last_active: Optional[datetime] = None

    @abstractmethod
    async def list_tools(self) -> List[ToolDescriptor]:
        """List the tools this provider exposes"""
        pass

    @abstractmethod
    async def invoke(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Run a tool and return its result; raise on failure"""
        pass

    def update_activity(self):
        self.last_active = datetime.now(timezone.utc)

    def get_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat() if self.last_active else None
        }


ToolFunction = Callable[..., Union[Any, Awaitable[Any]]]


class LocalToolProvider(ToolProvider):
    """Provider backed by in-process Python callables.

    Callables receive the tool arguments as keyword arguments and may be
    plain functions or coroutines. Plain functions run in a worker thread.
    """

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._tools: Dict[str, ToolDescriptor] = {}
        self._functions: Dict[str, ToolFunction] = {}

    def register_tool(
        self,
        name: str,
        func: ToolFunction,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None
    ):
        """Register a callable under ``name``"""

        descriptor = ToolDescriptor(
            name=name,
            description=description or (inspect.getdoc(func) or "").split("\n")[0],
        )
        if input_schema is not None:
            descriptor.input_schema = input_schema
        self._tools[name] = descriptor
        self._functions[name] = func

    def tool(self, name: Optional[str] = None, description: str = "", input_schema: Optional[Dict[str, Any]] = None):
        """Decorator form of :meth:`register_tool`"""

        def decorator(func: ToolFunction) -> ToolFunction:
            self.register_tool(name or func.__name__, func, description, input_schema)
            return func
        return decorator

    async def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    async def invoke(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        func = self._functions.get(tool_name)
        if func is None:
            raise ToolNotFoundError(
                f"Tool '{tool_name}' is not provided by '{self.name}'",
                provider=self.name,
                tool=tool_name
            )

        self.update_activity()
        if inspect.iscoroutinefunction(func):
            return await func(**arguments)
        return await asyncio.to_thread(func, **arguments)
