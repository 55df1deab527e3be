"""
Aggregates streamed response fragments into text and tool-call records.

Design goals:
  - Accumulate ``ToolCallDelta`` fragments keyed by their ``index``; name and
    argument text for the same index are concatenated in arrival order.
  - Publish progress on an ``EventBus`` as fragments resolve: ``stream_start``
    once per response, ``stream_content`` and ``stream_tool_call`` per chunk,
    ``stream_end`` on the chunk that carries a finish reason.
  - Any failure while handling a chunk fires ``stream_error`` and is then
    re-raised -- listeners get to observe it, the caller still sees it.

Argument JSON is *not* parsed here; that is the tool registry's job once the
stream has ended.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from lmturn.events import (
    STREAM_CONTENT,
    STREAM_END,
    STREAM_ERROR,
    STREAM_START,
    STREAM_TOOL_CALL,
    EventBus,
    StreamContent,
    StreamEnd,
    StreamError,
    StreamStart,
    StreamToolCall,
)
from lmturn.llm.types import Chunk, ToolCallDelta, ToolCallRecord

logger = logging.getLogger(__name__)


class StreamAggregator:
    """Buffers streamed fragments for a single model call and emits events."""

    def __init__(self, events: EventBus | None = None) -> None:
        self.events = events or EventBus()
        self._buf: dict[int, ToolCallRecord] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def on(self, event: str, handler) -> StreamAggregator:
        """Shortcut for ``self.events.on``."""
        self.events.on(event, handler)
        return self

    def handle_chunk(self, raw: Chunk | str | bytes | Mapping[str, Any]) -> None:
        """
        Feed one fragment, in arrival order.

        *raw* may be an already-decoded ``Chunk`` or an SSE ``data`` payload;
        decoding failures surface as ``MalformedChunkError``.  Not reentrant.
        """
        try:
            chunk = Chunk.decode(raw)

            if not self.events.has_triggered(STREAM_START):
                self.events.trigger(STREAM_START, StreamStart(chunk))

            if chunk.content:
                self.events.trigger(STREAM_CONTENT, StreamContent(chunk.content, chunk))

            if chunk.tool_calls:
                for delta in chunk.tool_calls:
                    record = self._merge(delta)
                    self.events.trigger(STREAM_TOOL_CALL, StreamToolCall(record, delta.index))

            if chunk.finish_reason is not None:
                calls = self.resolved_tool_calls()
                logger.debug(
                    "stream finished reason=%s tool_calls=%d",
                    chunk.finish_reason,
                    len(calls),
                )
                self.events.trigger(STREAM_END, StreamEnd(chunk.finish_reason, calls))
                self.reset()
        except Exception as exc:
            logger.debug("stream chunk failed: %s", exc)
            self.events.trigger(STREAM_ERROR, StreamError(exc))
            self.reset()
            raise

    def current_tool_calls(self) -> dict[int, ToolCallRecord]:
        """The in-progress, possibly incomplete, records keyed by index."""
        return dict(self._buf)

    def resolved_tool_calls(self) -> list[ToolCallRecord]:
        """Records ordered by index, with missing ids filled in."""
        calls: list[ToolCallRecord] = []
        for idx in sorted(self._buf):
            record = self._buf[idx]
            if not record.id:
                record.id = f"call_{idx}_{uuid.uuid4().hex[:8]}"
            calls.append(record)
        return calls

    def reset(self) -> None:
        """Discard accumulated state and triggered markers.  Idempotent."""
        self._buf = {}
        self.events.reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _merge(self, delta: ToolCallDelta) -> ToolCallRecord:
        record = self._buf.get(delta.index)
        if record is None:
            record = ToolCallRecord(
                id=delta.id or "",
                name=delta.name or "",
                arguments_raw=delta.arguments or "",
                type=delta.type or "function",
            )
            self._buf[delta.index] = record
            return record

        if delta.id and not record.id:
            record.id = delta.id
        if delta.name:
            record.name += delta.name
        if delta.arguments:
            record.arguments_raw += delta.arguments
        return record
