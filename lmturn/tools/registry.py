from __future__ import annotations

import inspect
import logging
import threading
from importlib.metadata import entry_points
from typing import Any, Callable

from lmturn.errors import ToolExecutionError, UnknownToolError
from lmturn.llm.types import ToolCallRecord
from lmturn.tools.base import FunctionTool, ProgressReporter, Tool, stringify_result
from lmturn.tools.validation import ToolValidator

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Maps tool names to ``Tool`` capabilities.

    Re-registering a name replaces the previous tool.  Lookups and
    ``execute`` are safe to call from several worker threads at once; only
    registration takes the lock.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()

    def register(self, tool: Tool) -> Tool:
        with self._lock:
            if tool.name in self._tools:
                logger.debug("replacing tool %s", tool.name)
            # Copy-on-write so concurrent readers never see a dict mid-update.
            tools = dict(self._tools)
            tools[tool.name] = tool
            self._tools = tools
        return tool

    def register_function(
        self,
        name: str,
        handler: Callable[..., Any],
        parameters: dict | None = None,
        description: str = "",
    ) -> Tool:
        return self.register(FunctionTool(name, handler, parameters, description))

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str, tool_call_id: str | None = None) -> Tool:
        t = self.get(name)
        if not t:
            raise UnknownToolError(
                f"Tool {name!r} is not registered", tool_name=name, tool_call_id=tool_call_id
            )
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def names(self) -> list[str]:
        return [t.name for t in self.list()]

    def clear(self) -> None:
        with self._lock:
            self._tools = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def resolve(self, call: ToolCallRecord) -> tuple[Tool, dict[str, Any]]:
        """
        Look up the tool and parse + validate its arguments.

        Raises ``UnknownToolError`` or ``InvalidArgumentsError``.
        """
        tool = self.require(call.name, tool_call_id=call.id)
        arguments = ToolValidator.parse_arguments(call)
        ToolValidator.validate(tool, arguments, tool_call_id=call.id)
        return tool, arguments

    def execute(self, call: ToolCallRecord, progress: ProgressReporter | None = None) -> str:
        """Resolve *call* and run its handler, returning the result as text."""
        tool, arguments = self.resolve(call)
        return self._run(tool, arguments, call.id, progress)

    def invoke(
        self,
        name: str,
        arguments: dict[str, Any],
        tool_call_id: str | None = None,
        progress: ProgressReporter | None = None,
    ) -> str:
        """Run an already-parsed call.  Used by deferred executors."""
        tool = self.require(name, tool_call_id=tool_call_id)
        return self._run(tool, arguments, tool_call_id, progress)

    def _run(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        tool_call_id: str | None,
        progress: ProgressReporter | None,
    ) -> str:
        try:
            result = tool.invoke(arguments, progress=progress)
        except Exception as e:
            raise ToolExecutionError(
                f"{type(e).__name__}: {e}", tool_name=tool.name, tool_call_id=tool_call_id
            ) from e
        return stringify_result(result)

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def load_plugins(
        self,
        *,
        group: str = "lmturn.tools",
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools published under the *group* entry point.

        An entry point may name a ``Tool`` subclass (constructed with no
        arguments) or an already-built ``Tool`` instance.
        """
        loaded = 0
        for ep in entry_points(group=group):
            if allow_tools and ep.name not in allow_tools:
                continue
            obj = ep.load()
            tool = obj() if inspect.isclass(obj) else obj
            if not isinstance(tool, Tool):
                raise TypeError(f"entry point {ep.name!r} does not provide a Tool")
            self.register(tool)
            loaded += 1
        return loaded
