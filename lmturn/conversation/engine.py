"""
Turn engine -- the loop that drives one conversation turn.

The engine:
1. Sends the conversation state to the model (streamed or not)
2. Assembles the assistant message, including any tool calls
3. Runs each tool call inline or hands it to a deferred executor
4. Waits for deferred results, appending them in the order they arrive
5. Loops until the model answers with plain text
6. Enforces an optional wall-clock deadline over the whole turn
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import aclosing
from enum import Enum

from lmturn.config import TurnConfig
from lmturn.conversation.state import ConversationState
from lmturn.errors import MalformedChunkError, TurnError, TurnLimitError, TurnTimeoutError
from lmturn.events import (
    MODEL_RESPONSE,
    STREAM_CONTENT,
    STREAM_END,
    TOOL_ERROR,
    TOOL_EXECUTED,
    TOOL_EXECUTING,
    TOOL_PROGRESS,
    TOOL_QUEUED,
    TURN_COMPLETE,
    TURN_ERROR,
    TURN_START,
    EventBus,
    ModelResponse,
    StreamContent,
    StreamEnd,
    ToolEvent,
    ToolExecuting,
    ToolQueued,
    TurnComplete,
    TurnFailed,
    TurnStart,
)
from lmturn.llm.providers.base import ModelClient
from lmturn.llm.stream_aggregator import StreamAggregator
from lmturn.llm.types import Message, ToolCallRecord
from lmturn.tools.registry import ToolRegistry
from lmturn.tools.strategy import ToolExecutionStrategy
from lmturn.types import ToolOutcome, ToolStatus

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    RESOLVING_TOOL_CALLS = "resolving_tool_calls"
    AWAITING_DEFERRED_RESULTS = "awaiting_deferred_results"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class TurnEngine:
    """
    Orchestrates model calls and tool execution for a single turn.

    Parameters
    ----------
    client : ModelClient
        The model call boundary.
    registry : ToolRegistry
        Tools offered to the model.
    strategy : ToolExecutionStrategy, optional
        Inline/deferred selection.  Defaults to running every tool inline.
    config : TurnConfig, optional
        Streaming flag, default timeout and round limit.
    aggregator : StreamAggregator, optional
        Receives streamed chunks.  Observers may subscribe to its events.
    events : EventBus, optional
        Bus for turn-level events (``tool_queued``, ``tool_executed``, ...).
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        strategy: ToolExecutionStrategy | None = None,
        config: TurnConfig | None = None,
        aggregator: StreamAggregator | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.strategy = strategy or ToolExecutionStrategy(registry)
        self.config = config or TurnConfig()
        self.aggregator = aggregator or StreamAggregator()
        self.events = events or EventBus()
        self.phase = TurnPhase.IDLE

        self._busy = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None
        self._turn = 0
        self._timeout: float | None = None
        self._deadline: float | None = None
        # Deferred calls owed to the current turn, keyed by (turn, call id).
        self._pending: dict[tuple[int, str], ToolCallRecord] = {}
        self._inline_call: ToolCallRecord | None = None
        self._results: asyncio.Queue[ToolOutcome] | None = None
        self._content_parts: list[str] = []
        self._stream_calls: list[ToolCallRecord] | None = None

        self.aggregator.on(STREAM_CONTENT, self._on_stream_content)
        self.aggregator.on(STREAM_END, self._on_stream_end)
        self.strategy.on_executing(self._on_tool_executing)
        self.strategy.on_executed(self._on_tool_executed)
        self.strategy.on_error(self._on_tool_failed)
        self.strategy.on_progress(self._on_tool_progress)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def on(self, event: str, handler) -> TurnEngine:
        """Shortcut for ``self.events.on``."""
        self.events.on(event, handler)
        return self

    async def handle(self, state: ConversationState, timeout: float | None = None) -> str:
        """
        Run one turn against *state* and return the model's final text.

        *timeout* bounds the whole turn in seconds; it falls back to
        ``config.timeout_seconds`` and then to the state's ``stream_timeout``
        option.  Raises ``TurnTimeoutError`` on expiry and re-raises any
        transport, stream or tool resolution error unchanged.
        """
        if self._busy:
            raise TurnError("TurnEngine.handle is already running")
        self._busy = True

        if timeout is None:
            timeout = self.config.timeout_seconds
        if timeout is None:
            timeout = state.stream_timeout

        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._results = asyncio.Queue()
        self.phase = TurnPhase.IDLE
        self._turn += 1
        self._timeout = timeout
        started = time.monotonic()
        self._deadline = None if timeout is None else started + timeout

        try:
            self.events.trigger(TURN_START, TurnStart(state.model, self.config.streaming))
            if timeout is None:
                text, rounds = await self._run(state)
            elif timeout <= 0:
                raise self._timeout_error()
            else:
                text, rounds = await asyncio.wait_for(self._run(state), timeout=timeout)
        except asyncio.TimeoutError as exc:
            err = self._timeout_error()
            self._fail(TurnPhase.TIMED_OUT, err)
            raise err from exc
        except TurnTimeoutError as exc:
            self._fail(TurnPhase.TIMED_OUT, exc)
            raise
        except Exception as exc:
            self._fail(TurnPhase.FAILED, exc)
            raise
        finally:
            self._busy = False
            if self._pending:
                logger.info("abandoning %d outstanding deferred tool call(s)", len(self._pending))
                self._pending.clear()
            self.aggregator.reset()

        self.phase = TurnPhase.COMPLETE
        logger.info(
            "turn complete model=%s rounds=%d elapsed=%.2fs",
            state.model,
            rounds,
            time.monotonic() - started,
        )
        self.events.trigger(TURN_COMPLETE, TurnComplete(text, rounds))
        return text

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self, state: ConversationState) -> tuple[str, int]:
        for round_no in range(1, self.config.max_rounds + 1):
            self._check_deadline()
            self.phase = TurnPhase.AWAITING_MODEL_RESPONSE
            message = await self._call_model(state)
            self.events.trigger(MODEL_RESPONSE, ModelResponse(round_no, message))

            state.add_message(message)
            if not message.tool_calls:
                return message.content, round_no

            self.phase = TurnPhase.RESOLVING_TOOL_CALLS
            outstanding = self._dispatch(state, list(message.tool_calls))

            if outstanding:
                self.phase = TurnPhase.AWAITING_DEFERRED_RESULTS
                await self._await_deferred(state, outstanding)

        raise TurnLimitError(
            f"Model still requesting tools after {self.config.max_rounds} rounds."
        )

    def _dispatch(self, state: ConversationState, calls: list[ToolCallRecord]) -> int:
        """
        Run or hand off every call.  Inline results are appended right away;
        returns how many deferred results are still owed.
        """
        # Resolve everything first so a bad call aborts before any tool runs.
        for call in calls:
            self.registry.resolve(call)

        outstanding = 0
        for call in calls:
            self._check_deadline()
            # The mode is fixed here; callbacks never look it up again.
            execution = self.strategy.execution_for(call.name)
            key = (self._turn, call.id)
            if execution.deferred:
                self._pending[key] = call
            else:
                self._inline_call = call
            try:
                outcome = self.strategy.on_tool_call_requested(call, execution)
            except Exception:
                self._pending.pop(key, None)
                raise
            finally:
                self._inline_call = None

            if outcome is None:
                outstanding += 1
                self.events.trigger(TOOL_QUEUED, ToolQueued(call))
                continue

            self._emit_outcome(call, outcome)
            self._append_outcome(state, outcome)
        return outstanding

    async def _await_deferred(self, state: ConversationState, outstanding: int) -> None:
        assert self._results is not None
        while outstanding:
            outcome = await self._results.get()
            self._append_outcome(state, outcome)
            outstanding -= 1

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    async def _call_model(self, state: ConversationState) -> Message:
        tools = self.registry.to_openai_schema() or None
        if not self.config.streaming:
            completion = await self.client.complete(
                state.model, state.messages, tools, state.request_options(stream=False)
            )
            return completion.to_message()

        self.aggregator.reset()
        self._content_parts = []
        self._stream_calls = None
        stream = self.client.stream(
            state.model, state.messages, tools, state.request_options(stream=True)
        )
        async with aclosing(stream):
            async for raw in stream:
                self.aggregator.handle_chunk(raw)
                if self._stream_calls is not None:
                    break

        if self._stream_calls is None:
            raise MalformedChunkError("stream ended without a finish reason")
        return Message.assistant("".join(self._content_parts), self._stream_calls)

    def _on_stream_content(self, event: StreamContent) -> None:
        self._content_parts.append(event.delta)

    def _on_stream_end(self, event: StreamEnd) -> None:
        self._stream_calls = list(event.tool_calls)

    # ------------------------------------------------------------------
    # Tool outcomes
    # ------------------------------------------------------------------

    def _append_outcome(self, state: ConversationState, outcome: ToolOutcome) -> None:
        state.add_tool_message(outcome.tool_call_id, outcome.to_json())

    def _emit_outcome(self, call: ToolCallRecord, outcome: ToolOutcome) -> None:
        event = TOOL_ERROR if outcome.status is ToolStatus.ERROR else TOOL_EXECUTED
        self.events.trigger(event, ToolEvent(call, outcome))

    # Strategy callbacks.  Deferred ones may arrive on executor threads and
    # are always marshalled onto the loop, never applied in place.  Inline
    # outcomes come back as the return value of on_tool_call_requested.

    def _on_tool_executing(self, call: ToolCallRecord) -> None:
        self.events.trigger(TOOL_EXECUTING, ToolExecuting(call))

    def _on_tool_executed(self, call: ToolCallRecord, result: str) -> None:
        if call is not self._inline_call:
            self._deliver(call, ToolOutcome.success(call.id, call.name, result))

    def _on_tool_failed(self, call: ToolCallRecord, error: BaseException) -> None:
        if call is not self._inline_call:
            self._deliver(call, ToolOutcome.failure(call.id, call.name, str(error)))

    def _on_tool_progress(self, call: ToolCallRecord, outcome: ToolOutcome) -> None:
        if not self.events.has_handlers(TOOL_PROGRESS):
            return
        if threading.get_ident() == self._loop_thread:
            self._emit_progress(call, outcome)
        else:
            self._call_on_loop(call, self._emit_progress, outcome)

    def _is_current(self, call: ToolCallRecord) -> bool:
        """True when *call* is a deferred call this turn is still waiting on."""
        return self._pending.get((self._turn, call.id)) is call

    def _deliver(self, call: ToolCallRecord, outcome: ToolOutcome) -> None:
        self._call_on_loop(call, self._resolve_deferred, outcome)

    def _call_on_loop(self, call: ToolCallRecord, fn, outcome: ToolOutcome) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("dropping result for %s (%s): no running turn", call.name, call.id)
            return
        try:
            loop.call_soon_threadsafe(fn, call, outcome)
        except RuntimeError:
            logger.debug("dropping result for %s (%s): loop closed", call.name, call.id)

    def _resolve_deferred(self, call: ToolCallRecord, outcome: ToolOutcome) -> None:
        if not self._is_current(call) or self._results is None:
            logger.warning(
                "ignoring late deferred result for %s (%s)", call.name, call.id
            )
            return
        del self._pending[(self._turn, call.id)]
        self._emit_outcome(call, outcome)
        self._results.put_nowait(outcome)

    def _emit_progress(self, call: ToolCallRecord, outcome: ToolOutcome) -> None:
        if call is not self._inline_call and not self._is_current(call):
            return
        self.events.trigger(TOOL_PROGRESS, ToolEvent(call, outcome))

    # ------------------------------------------------------------------
    # Deadline
    # ------------------------------------------------------------------

    def _timeout_error(self) -> TurnTimeoutError:
        return TurnTimeoutError(
            f"Turn timed out after {self._timeout} seconds.", timeout=self._timeout
        )

    def _check_deadline(self) -> None:
        # Inline tools block the loop, so wait_for alone cannot stop the
        # next model call or tool from starting once the deadline has passed.
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise self._timeout_error()

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    def _fail(self, phase: TurnPhase, exc: BaseException) -> None:
        failed_in = self.phase
        self.phase = phase
        logger.warning("turn %s during %s: %s", phase.value, failed_in.value, exc)
        self.events.trigger(TURN_ERROR, TurnFailed(exc))
