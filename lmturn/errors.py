"""
Exception taxonomy for lmturn.

Engine-level failures (transport, malformed stream, timeout) surface to the
caller of ``TurnEngine.handle``.  Tool-level failures are split: resolution
errors (unknown tool, bad arguments) abort the turn, while a handler that
raises is folded into an ``error`` tool message so the model can react.
"""

from __future__ import annotations


class LMTurnError(Exception):
    """Base class for every error raised by lmturn."""


class ConfigurationError(LMTurnError):
    """The engine or one of its collaborators is mis-configured."""


class TransportError(LMTurnError):
    """The model server could not be reached or answered with an HTTP error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedChunkError(LMTurnError):
    """A streamed fragment could not be decoded."""


# ---------------------------------------------------------------------------
# Tool errors
# ---------------------------------------------------------------------------


class ToolError(LMTurnError):
    """Base class for tool resolution and execution failures."""

    def __init__(self, message: str, tool_name: str = "", tool_call_id: str | None = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id


class UnknownToolError(ToolError):
    """The model asked for a tool that is not registered."""


class InvalidArgumentsError(ToolError):
    """Tool arguments are not valid JSON or do not satisfy the tool schema."""


class ToolExecutionError(ToolError):
    """The tool handler raised while running."""


# ---------------------------------------------------------------------------
# Turn errors
# ---------------------------------------------------------------------------


class TurnError(LMTurnError):
    """A turn ended without producing final text."""


class TurnTimeoutError(TurnError):
    """The turn deadline passed before a final answer was produced."""

    def __init__(self, message: str = "The conversation turn timed out.", timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout


class TurnLimitError(TurnError):
    """The model kept requesting tools past the configured number of rounds."""
