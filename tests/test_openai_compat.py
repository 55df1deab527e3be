"""Tests for OpenAICompatClient against an in-process httpx transport."""

import json

import httpx
import pytest

from lmturn.errors import TransportError
from lmturn.llm.providers.openai_compat import OpenAICompatClient
from lmturn.llm.stream_aggregator import StreamAggregator
from lmturn.events import STREAM_END
from lmturn.llm.types import Message
from tests.mock_providers import content_chunk, finish_chunk, tool_chunk


def sse(*payloads) -> bytes:
    lines = []
    for p in payloads:
        data = p if isinstance(p, str) else json.dumps(p)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def make_client(handler, **kwargs) -> OpenAICompatClient:
    kwargs.setdefault("api_key", "secret")
    return OpenAICompatClient(
        base_url="http://test/v1/", transport=httpx.MockTransport(handler), **kwargs
    )


async def collect(client, **kwargs):
    return [data async for data in client.stream("m", [Message.user("hi")], **kwargs)]


class TestStreaming:
    async def test_sse_payloads_yielded_until_done(self):
        body = (
            sse(content_chunk("a"))
            + b": keep-alive\n\nevent: ping\n\n"
            + sse(finish_chunk(), "[DONE]", content_chunk("ignored"))
        )
        client = make_client(lambda req: httpx.Response(200, content=body))
        out = await collect(client)
        assert [json.loads(d) for d in out] == [content_chunk("a"), finish_chunk()]

    async def test_request_body_and_headers(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse(finish_chunk()))

        client = make_client(handler, headers={"X-Extra": "1"})
        tools = [{"type": "function", "function": {"name": "echo", "parameters": {}}}]
        await collect(client, tools=tools, options={"temperature": 0.3, "stream_timeout": 9})

        assert seen["url"] == "http://test/v1/chat/completions"
        assert seen["headers"]["authorization"] == "Bearer secret"
        assert seen["headers"]["accept"] == "text/event-stream"
        assert seen["headers"]["x-extra"] == "1"
        body = seen["body"]
        assert body["model"] == "m"
        assert body["stream"] is True
        assert body["temperature"] == 0.3
        assert "stream_timeout" not in body
        assert body["tools"] == tools
        assert body["tool_choice"] == "auto"
        assert body["messages"] == [{"role": "user", "content": "hi"}]

    async def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, content=sse(finish_chunk()))

        await collect(make_client(handler, api_key=""))
        assert seen["auth"] is None

    async def test_retries_transient_status(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, content=sse(finish_chunk()))

        out = await collect(make_client(handler, max_retries=2))
        assert len(calls) == 2
        assert len(out) == 1

    async def test_gives_up_after_retries(self):
        client = make_client(lambda req: httpx.Response(429), max_retries=1)
        with pytest.raises(TransportError) as exc_info:
            await collect(client)
        assert exc_info.value.status_code == 429

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(400, text="bad model")

        with pytest.raises(TransportError, match="bad model") as exc_info:
            await collect(make_client(handler))
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    async def test_connection_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(TransportError, match="ConnectError"):
            await collect(make_client(handler, max_retries=1))

    async def test_stream_feeds_aggregator(self):
        body = sse(
            tool_chunk(0, id="c1", name="get_w"),
            tool_chunk(0, name="eather", args='{"loc"'),
            tool_chunk(0, args=':"SF"}'),
            finish_chunk("tool_calls"),
        )
        client = make_client(lambda req: httpx.Response(200, content=body))
        agg = StreamAggregator()
        ends = []
        agg.on(STREAM_END, ends.append)
        async for data in client.stream("m", [Message.user("hi")]):
            agg.handle_chunk(data)
        (call,) = ends[0].tool_calls
        assert call.name == "get_weather"
        assert call.arguments() == {"loc": "SF"}


class TestComplete:
    async def test_complete_parses_response(self):
        payload = {
            "model": "m",
            "choices": [{"message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}],
            "usage": {"total_tokens": 5},
        }
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=payload)

        completion = await make_client(handler).complete("m", [Message.user("hi")], options={"stream": True})
        assert completion.content == "hello"
        assert completion.usage == {"total_tokens": 5}
        assert seen["body"]["stream"] is False

    async def test_complete_retries_then_fails(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500)

        with pytest.raises(TransportError):
            await make_client(handler, max_retries=2).complete("m", [Message.user("hi")])
        assert len(calls) == 3

    async def test_invalid_json_body(self):
        client = make_client(lambda req: httpx.Response(200, text="not json"))
        with pytest.raises(TransportError, match="invalid JSON"):
            await client.complete("m", [Message.user("hi")])


class TestListModels:
    async def test_list_models(self):
        def handler(request):
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={"data": [{"id": "a"}, {"id": "b"}, {}]})

        assert await make_client(handler).list_models() == ["a", "b"]
