"""
Named-event publish/subscribe with per-cycle "triggered" tracking.

Every event name has one frozen payload dataclass; handlers receive that
payload as their single argument.  ``EventBus`` itself is payload-agnostic and
simply forwards whatever ``trigger`` was given.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from lmturn.llm.types import Chunk, Message, ToolCallRecord
    from lmturn.types import ToolOutcome


Handler = Callable[..., Any]


# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

STREAM_START = "stream_start"
STREAM_CONTENT = "stream_content"
STREAM_TOOL_CALL = "stream_tool_call"
STREAM_END = "stream_end"
STREAM_ERROR = "stream_error"

TURN_START = "turn_start"
MODEL_RESPONSE = "model_response"
TOOL_QUEUED = "tool_queued"
TOOL_EXECUTING = "tool_executing"
TOOL_EXECUTED = "tool_executed"
TOOL_ERROR = "tool_error"
TOOL_PROGRESS = "tool_progress"
TURN_COMPLETE = "turn_complete"
TURN_ERROR = "turn_error"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreamStart:
    chunk: Chunk


@dataclass(frozen=True)
class StreamContent:
    delta: str
    chunk: Chunk


@dataclass(frozen=True)
class StreamToolCall:
    record: ToolCallRecord
    index: int


@dataclass(frozen=True)
class StreamEnd:
    finish_reason: str
    tool_calls: list[ToolCallRecord]


@dataclass(frozen=True)
class StreamError:
    error: BaseException


@dataclass(frozen=True)
class TurnStart:
    model: str
    streaming: bool


@dataclass(frozen=True)
class ModelResponse:
    round: int
    message: Message


@dataclass(frozen=True)
class ToolQueued:
    call: ToolCallRecord


@dataclass(frozen=True)
class ToolExecuting:
    call: ToolCallRecord


@dataclass(frozen=True)
class ToolEvent:
    """Payload for ``tool_executed``, ``tool_error`` and ``tool_progress``."""

    call: ToolCallRecord
    outcome: ToolOutcome


@dataclass(frozen=True)
class TurnComplete:
    text: str
    rounds: int


@dataclass(frozen=True)
class TurnFailed:
    error: BaseException


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------


class EventBus:
    """
    Ordered handlers per event name.

    ``trigger`` runs handlers synchronously in registration order and lets
    their exceptions propagate.  The triggered markers live until ``reset``;
    handlers survive it.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._triggered: set[str] = set()

    def on(self, event: str, handler: Handler) -> EventBus:
        self._handlers[event].append(handler)
        return self

    def off(self, event: str, handler: Handler | None = None) -> EventBus:
        """Remove *handler* from *event*, or every handler when it is ``None``."""
        if handler is None:
            self._handlers.pop(event, None)
        elif handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)
        return self

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def trigger(self, event: str, *args: Any) -> None:
        self._triggered.add(event)
        # Copy so a handler may register further handlers without affecting
        # the current dispatch.
        for handler in list(self._handlers.get(event, ())):
            handler(*args)

    def has_triggered(self, event: str) -> bool:
        return event in self._triggered

    def reset(self) -> None:
        """Forget which events fired; registered handlers are kept."""
        self._triggered.clear()
