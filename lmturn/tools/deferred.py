"""
Deferred tool execution.

A ``DeferredExecutor`` accepts a tool invocation and reports back exactly once
through ``on_success(result)`` or ``on_error(error)``.  Where and when the work
runs is up to the executor; callbacks may fire from any thread.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from lmturn.errors import ToolError, ToolExecutionError
from lmturn.tools.base import ProgressReporter
from lmturn.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str], None]
ErrorCallback = Callable[[BaseException], None]


class DeferredExecutor(ABC):
    @abstractmethod
    def submit(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        tool_call_id: str,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        on_progress: ProgressReporter | None = None,
    ) -> None:
        """Hand the call off and return immediately."""
        ...

    def shutdown(self, wait: bool = True) -> None:
        return None

    def __enter__(self) -> DeferredExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)


class ThreadPoolDeferredExecutor(DeferredExecutor):
    """Runs deferred calls against a ``ToolRegistry`` on worker threads."""

    def __init__(self, registry: ToolRegistry, max_workers: int = 4) -> None:
        self.registry = registry
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lmturn-tool")

    def submit(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        tool_call_id: str,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        on_progress: ProgressReporter | None = None,
    ) -> None:
        logger.debug("submitting %s (%s) to worker pool", tool_name, tool_call_id)
        future = self._pool.submit(
            self.registry.invoke, tool_name, arguments, tool_call_id, on_progress
        )
        future.add_done_callback(
            lambda f: self._deliver(f, tool_name, tool_call_id, on_success, on_error)
        )

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    @staticmethod
    def _deliver(
        future: Future,
        tool_name: str,
        tool_call_id: str,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> None:
        if future.cancelled():
            on_error(ToolExecutionError("execution cancelled", tool_name, tool_call_id))
            return
        exc = future.exception()
        if exc is None:
            on_success(future.result())
        elif isinstance(exc, ToolError):
            on_error(exc)
        else:
            on_error(ToolExecutionError(str(exc), tool_name, tool_call_id))
