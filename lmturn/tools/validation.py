import json
from typing import Any

import jsonschema

from lmturn.errors import InvalidArgumentsError
from lmturn.llm.types import ToolCallRecord
from lmturn.tools.base import Tool, normalize_schema


class ToolValidator:
    @staticmethod
    def parse_arguments(call: ToolCallRecord) -> dict[str, Any]:
        try:
            arguments = call.arguments()
        except json.JSONDecodeError as e:
            raise InvalidArgumentsError(
                f"arguments for {call.name!r} are not valid JSON: {e.msg}",
                tool_name=call.name,
                tool_call_id=call.id,
            ) from e
        if not isinstance(arguments, dict):
            raise InvalidArgumentsError(
                f"arguments for {call.name!r} must be a JSON object",
                tool_name=call.name,
                tool_call_id=call.id,
            )
        return arguments

    @staticmethod
    def validate(tool: Tool, arguments: dict[str, Any], tool_call_id: str | None = None) -> None:
        missing = [p for p in tool.required if p not in arguments]
        if missing:
            raise InvalidArgumentsError(
                f"missing required parameter(s) for {tool.name!r}: {', '.join(missing)}",
                tool_name=tool.name,
                tool_call_id=tool_call_id,
            )
        try:
            jsonschema.validate(instance=arguments, schema=normalize_schema(tool.parameters))
        except jsonschema.ValidationError as e:
            raise InvalidArgumentsError(
                f"invalid arguments for {tool.name!r}: {e.message}",
                tool_name=tool.name,
                tool_call_id=tool_call_id,
            ) from e
