"""Mutable record of one conversation: model, request options, message history."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from lmturn.llm.types import Message, Role, ToolCallRecord

# Options consumed by the engine rather than sent to the server.
CLIENT_OPTIONS = frozenset({"stream", "stream_timeout"})


class ConversationState:
    """
    Holds the model id, base request options and the ordered message history.

    History is append-only: nothing here removes or reorders a message.  The
    state is owned by one caller and is not safe to share between concurrent
    turns.

    ``options`` never contains ``stream``; the engine decides that per call.
    A ``stream_timeout`` option is kept and used as the default turn timeout.
    """

    def __init__(
        self,
        model: str,
        options: Mapping[str, Any] | None = None,
        messages: Iterable[Message] | None = None,
    ) -> None:
        self.model = model
        self.options: dict[str, Any] = {k: v for k, v in (options or {}).items() if k != "stream"}
        self._messages: list[Message] = []
        self._issued_call_ids: set[str] = set()
        for m in messages or []:
            self.add_message(m)

    def __repr__(self) -> str:
        return f"ConversationState(model={self.model!r}, messages={len(self._messages)})"

    def __len__(self) -> int:
        return len(self._messages)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last_message(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def add_message(self, message: Message) -> Message:
        if not isinstance(message, Message):
            raise TypeError(f"expected Message, got {type(message).__name__}")
        if message.role is Role.TOOL and message.tool_call_id not in self._issued_call_ids:
            raise ValueError(
                f"tool message references unknown tool call {message.tool_call_id!r}"
            )
        if message.tool_calls:
            self._issued_call_ids.update(tc.id for tc in message.tool_calls)
        self._messages.append(message)
        return message

    def add_system_message(self, content: str) -> Message:
        return self.add_message(Message.system(content))

    def add_user_message(self, content: str) -> Message:
        return self.add_message(Message.user(content))

    def add_assistant_message(
        self, content: str, tool_calls: list[ToolCallRecord] | None = None
    ) -> Message:
        return self.add_message(Message.assistant(content, tool_calls))

    def add_tool_message(self, tool_call_id: str, content: str) -> Message:
        return self.add_message(Message.tool(tool_call_id, content))

    # ------------------------------------------------------------------
    # Request options
    # ------------------------------------------------------------------

    @property
    def stream_timeout(self) -> float | None:
        value = self.options.get("stream_timeout")
        return float(value) if value is not None else None

    def request_options(self, stream: bool) -> dict[str, Any]:
        """Options to send to the server for one call."""
        opts = {k: v for k, v in self.options.items() if k not in CLIENT_OPTIONS}
        opts["stream"] = stream
        return opts
