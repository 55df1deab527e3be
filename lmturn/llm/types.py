"""Core types for the LLM subsystem."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lmturn.errors import MalformedChunkError


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCallRecord:
    """
    One model-requested tool invocation.

    While a stream is in flight ``name`` and ``arguments_raw`` grow as
    fragments arrive, so the record may hold incomplete JSON until the
    stream ends.
    """

    id: str
    name: str = ""
    arguments_raw: str = ""
    type: str = "function"

    def arguments(self) -> Any:
        """Parse ``arguments_raw``; raises ``json.JSONDecodeError``."""
        return json.loads(self.arguments_raw or "{}")

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments_raw},
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any], index: int = 0) -> ToolCallRecord:
        func = data.get("function") or {}
        arguments = func.get("arguments") or ""
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id") or f"call_{index}_{uuid.uuid4().hex[:8]}",
            name=func.get("name") or "",
            arguments_raw=arguments,
            type=data.get("type") or "function",
        )


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCallRecord, ...] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role is Role.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(Role.USER, content)

    @classmethod
    def assistant(
        cls, content: str = "", tool_calls: list[ToolCallRecord] | None = None
    ) -> Message:
        return cls(Role.ASSISTANT, content, tuple(tool_calls) if tool_calls else None)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(Role.TOOL, content, tool_call_id=tool_call_id)

    def to_wire(self) -> dict[str, Any]:
        m: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            m["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            m["tool_call_id"] = self.tool_call_id
        return m


@dataclass(frozen=True)
class ToolCallDelta:
    """A streamed fragment of one tool call, addressed by ``index``."""

    index: int
    id: str | None = None
    type: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class Chunk:
    """
    One decoded streaming fragment.

    *content* carries new text, *tool_calls* carries tool-call fragments and
    *finish_reason* stays ``None`` until the server ends the response.
    """

    content: str | None = None
    tool_calls: tuple[ToolCallDelta, ...] | None = None
    finish_reason: str | None = None

    @classmethod
    def decode(cls, raw: Chunk | str | bytes | Mapping[str, Any]) -> Chunk:
        """
        Build a ``Chunk`` from an SSE ``data`` payload (JSON text or the
        already-parsed dict).  Raises ``MalformedChunkError``.
        """
        if isinstance(raw, Chunk):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise MalformedChunkError(f"chunk is not valid JSON: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise MalformedChunkError(f"chunk must be a JSON object, got {type(raw).__name__}")

        choices = raw.get("choices")
        if not choices:
            # Usage-only and keep-alive payloads carry no choices.
            return cls()
        if not isinstance(choices, list):
            raise MalformedChunkError("choices must be a JSON array")
        choice = choices[0]
        if not isinstance(choice, Mapping):
            raise MalformedChunkError("choice must be a JSON object")
        delta = choice.get("delta") or {}
        if not isinstance(delta, Mapping):
            raise MalformedChunkError("delta must be a JSON object")

        tool_deltas: tuple[ToolCallDelta, ...] | None = None
        raw_tcs = delta.get("tool_calls")
        if raw_tcs and not isinstance(raw_tcs, list):
            raise MalformedChunkError("tool_calls must be a JSON array")
        if raw_tcs:
            parsed = []
            for pos, raw_tc in enumerate(raw_tcs):
                if not isinstance(raw_tc, Mapping):
                    raise MalformedChunkError("tool call fragment must be a JSON object")
                func = raw_tc.get("function") or {}
                if not isinstance(func, Mapping):
                    raise MalformedChunkError("tool call function must be a JSON object")
                index = raw_tc.get("index", pos)
                if not isinstance(index, int):
                    raise MalformedChunkError(f"tool call index must be an integer, got {index!r}")
                parsed.append(
                    ToolCallDelta(
                        index=index,
                        id=_optional_str(raw_tc, "id"),
                        type=_optional_str(raw_tc, "type"),
                        name=_optional_str(func, "name"),
                        arguments=_optional_str(func, "arguments"),
                    )
                )
            tool_deltas = tuple(parsed)

        return cls(
            content=_optional_str(delta, "content"),
            tool_calls=tool_deltas,
            finish_reason=_optional_str(choice, "finish_reason"),
        )


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedChunkError(f"{key} must be a string, got {type(value).__name__}")
    return value


@dataclass
class Completion:
    """A complete (non-streamed) assistant response."""

    content: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    finish_reason: str | None = None
    model: str | None = None
    usage: dict = field(default_factory=dict)

    def to_message(self) -> Message:
        return Message.assistant(self.content, self.tool_calls)

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> Completion:
        choices = data.get("choices") or []
        if not choices:
            return cls(model=data.get("model"), usage=data.get("usage") or {})
        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls = [
            ToolCallRecord.from_wire(raw_tc, idx)
            for idx, raw_tc in enumerate(message.get("tool_calls") or [])
        ]
        return cls(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            model=data.get("model"),
            usage=data.get("usage") or {},
        )
