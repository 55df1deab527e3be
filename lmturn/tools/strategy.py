"""
Per-tool choice between inline and deferred execution.

``ToolExecutionStrategy.on_tool_call_requested`` is the single entry point the
turn engine uses.  Inline calls run before it returns and yield a terminal
``ToolOutcome``; deferred calls are handed to a ``DeferredExecutor`` and yield
``None`` -- their outcome arrives later through the ``on_executed`` /
``on_error`` callbacks.

Resolution failures (unknown tool, bad arguments) are raised in both modes
before anything runs; only handler failures become error outcomes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

from lmturn.errors import ConfigurationError, ToolExecutionError
from lmturn.llm.types import ToolCallRecord
from lmturn.tools.base import ProgressReporter
from lmturn.tools.deferred import DeferredExecutor
from lmturn.tools.registry import ToolRegistry
from lmturn.types import ToolOutcome

logger = logging.getLogger(__name__)

QueuedCallback = Callable[[ToolCallRecord], None]
ExecutingCallback = Callable[[ToolCallRecord], None]
ExecutedCallback = Callable[[ToolCallRecord, str], None]
ErrorCallback = Callable[[ToolCallRecord, BaseException], None]
ProgressCallback = Callable[[ToolCallRecord, ToolOutcome], None]


class ToolExecution(ABC):
    """How a resolved call is run."""

    deferred: bool = False

    def __init__(self, strategy: ToolExecutionStrategy) -> None:
        self.strategy = strategy

    @abstractmethod
    def dispatch(self, call: ToolCallRecord, arguments: dict[str, Any]) -> ToolOutcome | None: ...


class InlineExecution(ToolExecution):
    def dispatch(self, call: ToolCallRecord, arguments: dict[str, Any]) -> ToolOutcome:
        s = self.strategy
        s.notify_executing(call)
        try:
            result = s.registry.invoke(call.name, arguments, call.id, s.progress_reporter(call))
        except ToolExecutionError as e:
            s.notify_error(call, e)
            return ToolOutcome.failure(call.id, call.name, str(e))
        s.notify_executed(call, result)
        return ToolOutcome.success(call.id, call.name, result)


class DeferredExecution(ToolExecution):
    deferred = True

    def dispatch(self, call: ToolCallRecord, arguments: dict[str, Any]) -> None:
        s = self.strategy
        if s.executor is None:
            raise ConfigurationError(
                f"tool {call.name!r} is deferred but no DeferredExecutor is configured"
            )
        s.executor.submit(
            call.name,
            arguments,
            call.id,
            on_success=lambda result: s.notify_executed(call, result),
            on_error=lambda error: s.notify_error(call, error),
            on_progress=s.progress_reporter(call),
        )
        s.notify_queued(call)
        return None


class ToolExecutionStrategy:
    """
    Parameters
    ----------
    registry : ToolRegistry
        Tools available to the model.
    executor : DeferredExecutor, optional
        Where deferred calls are sent.  Required as soon as any tool defers.
    defer_by_default : bool
        Mode for tools without an explicit ``set_deferred`` entry.
    deferred_tools : iterable of str, optional
        Tool names to defer regardless of the default.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executor: DeferredExecutor | None = None,
        defer_by_default: bool = False,
        deferred_tools: list[str] | None = None,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.defer_by_default = defer_by_default
        self._overrides: dict[str, bool] = {name: True for name in deferred_tools or []}
        self._inline = InlineExecution(self)
        self._deferred = DeferredExecution(self)
        self._queued_cbs: list[QueuedCallback] = []
        self._executing_cbs: list[ExecutingCallback] = []
        self._executed_cbs: list[ExecutedCallback] = []
        self._error_cbs: list[ErrorCallback] = []
        self._progress_cbs: list[ProgressCallback] = []

    # ------------------------------------------------------------------
    # Mode selection
    # ------------------------------------------------------------------

    def set_deferred(self, name: str, deferred: bool = True) -> None:
        self._overrides[name] = deferred

    def should_defer(self, name: str) -> bool:
        return self._overrides.get(name, self.defer_by_default)

    def execution_for(self, name: str) -> ToolExecution:
        return self._deferred if self.should_defer(name) else self._inline

    # ------------------------------------------------------------------
    # Callback registration
    # ------------------------------------------------------------------

    def on_queued(self, callback: QueuedCallback) -> None:
        self._queued_cbs.append(callback)

    def on_executing(self, callback: ExecutingCallback) -> None:
        """Called on the dispatching thread just before an inline handler runs."""
        self._executing_cbs.append(callback)

    def on_executed(self, callback: ExecutedCallback) -> None:
        self._executed_cbs.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_cbs.append(callback)

    def on_progress(self, callback: ProgressCallback) -> None:
        self._progress_cbs.append(callback)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def on_tool_call_requested(
        self, call: ToolCallRecord, execution: ToolExecution | None = None
    ) -> ToolOutcome | None:
        """
        Run or hand off *call*.

        Returns the terminal outcome for inline tools, ``None`` for deferred
        ones.  Raises ``UnknownToolError`` / ``InvalidArgumentsError`` before
        any execution happens.  Callers that already picked a mode pass it
        as *execution* so a concurrent ``set_deferred`` cannot change it.
        """
        _tool, arguments = self.registry.resolve(call)
        if execution is None:
            execution = self.execution_for(call.name)
        logger.debug(
            "dispatching %s (%s) %s",
            call.name,
            call.id,
            "deferred" if execution.deferred else "inline",
        )
        return execution.dispatch(call, arguments)

    # ------------------------------------------------------------------
    # Notifications (may run on executor threads)
    # ------------------------------------------------------------------

    def progress_reporter(self, call: ToolCallRecord) -> ProgressReporter:
        def report(percent: int, content: str = "") -> None:
            outcome = ToolOutcome.in_progress(call.id, call.name, int(percent), content)
            for cb in list(self._progress_cbs):
                cb(call, outcome)

        return report

    def notify_queued(self, call: ToolCallRecord) -> None:
        for cb in list(self._queued_cbs):
            cb(call)

    def notify_executing(self, call: ToolCallRecord) -> None:
        for cb in list(self._executing_cbs):
            cb(call)

    def notify_executed(self, call: ToolCallRecord, result: str) -> None:
        for cb in list(self._executed_cbs):
            cb(call, result)

    def notify_error(self, call: ToolCallRecord, error: BaseException) -> None:
        logger.warning("tool %s (%s) failed: %s", call.name, call.id, error)
        for cb in list(self._error_cbs):
            cb(call, error)
