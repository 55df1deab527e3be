"""
Mock model clients for testing.

Provides canned responses so tests can exercise the aggregator and turn
engine without hitting a real server.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from typing import Any, AsyncIterator

from lmturn.llm.providers.base import ModelClient
from lmturn.llm.types import Completion, Message, ToolCallRecord


def content_chunk(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def tool_chunk(index: int, id: str | None = None, name: str | None = None, args: str | None = None) -> dict:
    func: dict[str, Any] = {}
    if name is not None:
        func["name"] = name
    if args is not None:
        func["arguments"] = args
    tc: dict[str, Any] = {"index": index, "function": func}
    if id is not None:
        tc["id"] = id
        tc["type"] = "function"
    return {"choices": [{"index": 0, "delta": {"tool_calls": [tc]}, "finish_reason": None}]}


def finish_chunk(reason: str = "stop") -> dict:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


class MockClient(ModelClient):
    """
    A client that replays one scripted response per model call.

    Usage::

        client = MockClient([
            [tool_chunk(0, "call_1", "echo", '{"message": "hi"}'), finish_chunk("tool_calls")],
            [content_chunk("done"), finish_chunk()],
        ])

    Each script is the list of raw payloads yielded by ``stream`` for that
    call.  ``complete`` builds a ``Completion`` from the same script, so the
    engine's non-streaming path sees identical responses.

    Parameters
    ----------
    scripts:
        One payload list per expected call, consumed in order.
    delay:
        Seconds to sleep before each payload.
    """

    def __init__(self, scripts: list[list[Any]] | None = None, delay: float = 0.0) -> None:
        self._scripts = list(scripts or [[finish_chunk()]])
        self._delay = delay
        self.call_count = 0
        self.last_messages: list[Message] | None = None
        self.last_tools: list[dict] | None = None
        self.last_options: dict | None = None
        self.closed = False

    @property
    def name(self) -> str:
        return "mock"

    def _next_script(self, messages, tools, options) -> list[Any]:
        self.call_count += 1
        self.last_messages = list(messages)
        self.last_tools = tools
        self.last_options = dict(options or {})
        if not self._scripts:
            raise AssertionError(f"unexpected model call #{self.call_count}")
        return self._scripts.pop(0)

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[Any]:
        for payload in self._next_script(messages, tools, options):
            if self._delay:
                await asyncio.sleep(self._delay)
            yield payload

    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Completion:
        script = self._next_script(messages, tools, options)
        if self._delay:
            await asyncio.sleep(self._delay)
        return _completion_from_script(script)

    async def list_models(self) -> list[str]:
        return ["mock-model"]

    async def aclose(self) -> None:
        self.closed = True


def _completion_from_script(script: list[dict]) -> Completion:
    text = []
    calls: dict[int, ToolCallRecord] = {}
    finish = None
    for payload in script:
        choice = payload["choices"][0]
        delta = choice.get("delta") or {}
        if delta.get("content"):
            text.append(delta["content"])
        for tc in delta.get("tool_calls") or []:
            rec = calls.setdefault(tc["index"], ToolCallRecord(id=""))
            rec.id = rec.id or tc.get("id", "")
            rec.name += tc.get("function", {}).get("name") or ""
            rec.arguments_raw += tc.get("function", {}).get("arguments") or ""
        finish = choice.get("finish_reason") or finish
    return Completion("".join(text), [calls[i] for i in sorted(calls)], finish, "mock-model")


def text_script(text: str) -> list[dict]:
    """Stream *text* one word at a time."""
    words = text.split(" ")
    chunks = [
        content_chunk(word + (" " if i < len(words) - 1 else ""))
        for i, word in enumerate(words)
    ]
    chunks.append(finish_chunk("stop"))
    return chunks


def tool_call_script(
    tool_name: str,
    tool_args: dict,
    call_id: str = "call_abc123",
    index: int = 0,
) -> list[dict]:
    """
    Stream a single tool call with the name split in two and the arguments
    split in thirds.
    """
    args_json = json.dumps(tool_args)
    half = len(tool_name) // 2
    third = max(1, len(args_json) // 3)

    chunks = [
        tool_chunk(index, id=call_id, name=tool_name[:half]),
        tool_chunk(index, name=tool_name[half:]),
    ]
    for part in (args_json[:third], args_json[third : 2 * third], args_json[2 * third :]):
        if part:
            chunks.append(tool_chunk(index, args=part))
    chunks.append(finish_chunk("tool_calls"))
    return chunks


def multi_tool_call_script(calls: list[tuple[str, dict, str]]) -> list[dict]:
    """*calls* is a list of ``(tool_name, tool_args, call_id)`` tuples."""
    chunks = [
        tool_chunk(idx, id=call_id, name=name) for idx, (name, _, call_id) in enumerate(calls)
    ]
    chunks += [tool_chunk(idx, args=json.dumps(args)) for idx, (_, args, _) in enumerate(calls)]
    chunks.append(finish_chunk("tool_calls"))
    return chunks


def make_text_client(text: str) -> MockClient:
    return MockClient([text_script(text)])


def make_tool_call_client(tool_name: str, tool_args: dict, final_text: str = "done",
                          call_id: str = "call_abc123") -> MockClient:
    """A tool call on the first call, then *final_text*."""
    return MockClient([tool_call_script(tool_name, tool_args, call_id), text_script(final_text)])
