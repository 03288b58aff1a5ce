from typing import Any, Dict

import jsonschema

from recall_agent.domain.errors import ToolValidationError
from .tool_provider import ToolDescriptor


class ToolParameterValidator:
    """Checks tool arguments against the tool's JSON schema"""

    @staticmethod
    def validate_tool_call(provider: str, tool: ToolDescriptor, parameters: Dict[str, Any]) -> None:
        schema = tool.input_schema or {}
        if not schema:
            return

        try:
            jsonschema.validate(parameters, schema)
        except jsonschema.ValidationError as e:
            raise ToolValidationError(
                f"Schema validation failed: {e.message}",
                provider=provider,
                tool=tool.name
            ) from e
        except jsonschema.SchemaError as e:
            raise ToolValidationError(
                f"Tool declares an invalid input schema: {e.message}",
                provider=provider,
                tool=tool.name
            ) from e
