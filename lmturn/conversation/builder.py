"""
Fluent wiring for a ``Conversation``.

The builder collects a model, request options, tools, execution settings and
event handlers, then creates the registry, strategy, aggregator, engine and
state in one ``build`` call.  Stream handlers go on the aggregator's bus; turn
and tool handlers go on the engine's bus.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable

from lmturn.config import TurnConfig
from lmturn.conversation.conversation import Conversation
from lmturn.conversation.engine import TurnEngine
from lmturn.conversation.state import ConversationState
from lmturn.events import (
    MODEL_RESPONSE,
    STREAM_CONTENT,
    STREAM_END,
    STREAM_ERROR,
    STREAM_START,
    STREAM_TOOL_CALL,
    TOOL_ERROR,
    TOOL_EXECUTED,
    TOOL_EXECUTING,
    TOOL_PROGRESS,
    TOOL_QUEUED,
    TURN_ERROR,
    Handler,
)
from lmturn.llm.providers.base import ModelClient
from lmturn.llm.stream_aggregator import StreamAggregator
from lmturn.tools.base import Tool
from lmturn.tools.deferred import DeferredExecutor
from lmturn.tools.registry import ToolRegistry
from lmturn.tools.strategy import ToolExecutionStrategy


class ConversationBuilder:
    """
    Usage::

        convo = (
            ConversationBuilder(client, "qwen2.5-7b-instruct")
            .with_system_message("You are terse.")
            .with_tool("get_weather", get_weather, WEATHER_PARAMETERS, "Current weather")
            .on_stream_content(lambda e: print(e.delta, end=""))
            .on_tool_executed(lambda e: print(f"[{e.call.name}]"))
            .build()
        )
        text = await convo.send("What's the weather in Paris?")

    Streaming is off until ``with_streaming`` is called; registering any
    ``on_stream_*`` handler turns it on.
    """

    def __init__(
        self,
        client: ModelClient,
        model: str,
        registry: ToolRegistry | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.registry = registry or ToolRegistry()
        self.options: dict[str, Any] = {}
        self.streaming = False
        self.timeout: float | None = None
        self.max_rounds = TurnConfig().max_rounds
        self.executor: DeferredExecutor | None = None
        self.defer_by_default = False
        self.deferred_tools: list[str] = []
        self._system_messages: list[str] = []
        self._stream_handlers: list[tuple[str, Handler]] = []
        self._turn_handlers: list[tuple[str, Handler]] = []

    # ------------------------------------------------------------------
    # Model and request
    # ------------------------------------------------------------------

    def with_model(self, model: str) -> ConversationBuilder:
        self.model = model
        return self

    def with_options(self, options: Mapping[str, Any]) -> ConversationBuilder:
        """Merge request options; a ``stream`` key sets the streaming flag."""
        options = dict(options)
        if "stream" in options:
            self.with_streaming(bool(options.pop("stream")))
        self.options.update(options)
        return self

    def with_response_format(self, response_format: Mapping[str, Any]) -> ConversationBuilder:
        """Send ``response_format`` (e.g. a ``json_schema`` spec) with every request."""
        self.options["response_format"] = dict(response_format)
        return self

    def with_streaming(self, streaming: bool = True) -> ConversationBuilder:
        self.streaming = streaming
        return self

    def with_timeout(self, seconds: float | None) -> ConversationBuilder:
        self.timeout = seconds
        return self

    def with_max_rounds(self, rounds: int) -> ConversationBuilder:
        self.max_rounds = rounds
        return self

    def with_system_message(self, content: str) -> ConversationBuilder:
        self._system_messages.append(content)
        return self

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def with_tool(
        self,
        name: str | Tool,
        handler: Callable[..., Any] | None = None,
        parameters: dict | None = None,
        description: str = "",
    ) -> ConversationBuilder:
        """Register a ``Tool`` instance, or a plain function under *name*."""
        if isinstance(name, Tool):
            self.registry.register(name)
        else:
            if handler is None:
                raise TypeError(f"with_tool({name!r}) needs a handler")
            self.registry.register_function(name, handler, parameters, description)
        return self

    def with_tool_registry(self, registry: ToolRegistry) -> ConversationBuilder:
        self.registry = registry
        return self

    def with_deferred_executor(
        self,
        executor: DeferredExecutor,
        deferred_tools: list[str] | None = None,
        defer_by_default: bool = False,
    ) -> ConversationBuilder:
        self.executor = executor
        self.deferred_tools = list(deferred_tools or [])
        self.defer_by_default = defer_by_default
        return self

    # ------------------------------------------------------------------
    # Turn and tool events
    # ------------------------------------------------------------------

    def on_tool_call(self, handler: Handler) -> ConversationBuilder:
        """Called with ``ToolExecuting`` just before an inline tool runs."""
        return self._on_turn(TOOL_EXECUTING, handler)

    def on_tool_queued(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(TOOL_QUEUED, handler)

    def on_tool_executed(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(TOOL_EXECUTED, handler)

    def on_tool_error(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(TOOL_ERROR, handler)

    def on_tool_progress(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(TOOL_PROGRESS, handler)

    def on_response(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(MODEL_RESPONSE, handler)

    def on_error(self, handler: Handler) -> ConversationBuilder:
        return self._on_turn(TURN_ERROR, handler)

    # ------------------------------------------------------------------
    # Stream events
    # ------------------------------------------------------------------

    def on_stream_start(self, handler: Handler) -> ConversationBuilder:
        return self._on_stream(STREAM_START, handler)

    def on_stream_content(self, handler: Handler) -> ConversationBuilder:
        return self._on_stream(STREAM_CONTENT, handler)

    def on_stream_tool_call(self, handler: Handler) -> ConversationBuilder:
        return self._on_stream(STREAM_TOOL_CALL, handler)

    def on_stream_end(self, handler: Handler) -> ConversationBuilder:
        return self._on_stream(STREAM_END, handler)

    def on_stream_error(self, handler: Handler) -> ConversationBuilder:
        return self._on_stream(STREAM_ERROR, handler)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> Conversation:
        config = TurnConfig(
            model=self.model,
            streaming=self.streaming,
            timeout_seconds=self.timeout,
            max_rounds=self.max_rounds,
            options=dict(self.options),
        )
        strategy = ToolExecutionStrategy(
            self.registry,
            executor=self.executor,
            defer_by_default=self.defer_by_default,
            deferred_tools=self.deferred_tools,
        )
        aggregator = StreamAggregator()
        for event, handler in self._stream_handlers:
            aggregator.on(event, handler)

        engine = TurnEngine(self.client, self.registry, strategy, config, aggregator)
        for event, handler in self._turn_handlers:
            engine.on(event, handler)

        state = ConversationState(self.model, self.options)
        for content in self._system_messages:
            state.add_system_message(content)
        return Conversation(engine, state)

    def _on_turn(self, event: str, handler: Handler) -> ConversationBuilder:
        self._turn_handlers.append((event, handler))
        return self

    def _on_stream(self, event: str, handler: Handler) -> ConversationBuilder:
        self._stream_handlers.append((event, handler))
        self.streaming = True
        return self
