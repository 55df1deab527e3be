"""LLM subsystem -- model clients and streamed response aggregation."""

from lmturn.llm.types import (
    Chunk,
    Completion,
    Message,
    Role,
    ToolCallDelta,
    ToolCallRecord,
)
from lmturn.llm.stream_aggregator import StreamAggregator

__all__ = [
    "Chunk",
    "Completion",
    "Message",
    "Role",
    "StreamAggregator",
    "ToolCallDelta",
    "ToolCallRecord",
]
