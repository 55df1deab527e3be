"""Tools -- registry, validation and inline/deferred execution."""

from lmturn.tools.base import FunctionTool, Tool
from lmturn.tools.deferred import DeferredExecutor, ThreadPoolDeferredExecutor
from lmturn.tools.registry import ToolRegistry
from lmturn.tools.strategy import ToolExecutionStrategy

__all__ = [
    "DeferredExecutor",
    "FunctionTool",
    "ThreadPoolDeferredExecutor",
    "Tool",
    "ToolExecutionStrategy",
    "ToolRegistry",
]
