"""
OpenAI-compatible chat-completion client.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- LM Studio, llama.cpp server, vLLM, LocalAI, OpenAI itself.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, AsyncIterator

import httpx

from lmturn.errors import TransportError
from lmturn.llm.providers.base import ModelClient
from lmturn.llm.types import Completion, Message

logger = logging.getLogger(__name__)

# Keys that configure the client side of a turn and must never reach the server.
CLIENT_ONLY_OPTIONS = frozenset({"stream", "stream_timeout"})


class OpenAICompatClient(ModelClient):
    """
    Stream-capable client for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    base_url:
        Base URL of the API, e.g. ``"http://localhost:1234/v1"``.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Number of automatic retries on transient HTTP errors (5xx, 429) and
        connection failures.  Streams are only retried before the first
        byte has been read.
    headers:
        Extra headers sent with every request.
    transport:
        Optional ``httpx`` transport, mainly for tests
        (``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:1234/v1",
        api_key: str = "",
        timeout: float = 30.0,
        max_retries: int = 2,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._extra_headers = dict(headers or {})
        self._transport = transport

    # ------------------------------------------------------------------
    # ModelClient interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "openai-compat"

    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Completion:
        body = self._build_body(model, messages, tools, options, stream=False)
        data = await self._post_json("/chat/completions", body)
        return Completion.from_response(data)

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        body = self._build_body(model, messages, tools, options, stream=True)
        url = f"{self._url}/chat/completions"

        last_error: TransportError | None = None
        started = False
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client() as client:
                    async with client.stream(
                        "POST", url, json=body, headers=self._build_headers(stream=True)
                    ) as response:
                        if _is_retryable(response.status_code):
                            # Read the body so the connection is released.
                            await response.aread()
                            last_error = TransportError(
                                f"HTTP {response.status_code} from {url}",
                                status_code=response.status_code,
                            )
                            logger.warning(
                                "stream attempt %d failed: HTTP %d",
                                attempt + 1,
                                response.status_code,
                            )
                            continue

                        if response.is_error:
                            await response.aread()
                            raise TransportError(
                                f"HTTP {response.status_code} from {url}: {response.text[:200]}",
                                status_code=response.status_code,
                            )

                        async for data in _iter_sse_data(response):
                            started = True
                            yield data
                        return
            except httpx.HTTPError as exc:
                last_error = TransportError(f"{type(exc).__name__}: {exc}")
                if started or attempt >= self._max_retries:
                    raise last_error from exc
                logger.warning("stream attempt %d failed: %s", attempt + 1, exc)

        if last_error is not None:
            raise last_error

    async def list_models(self) -> list[str]:
        data = await self._get_json("/models")
        return [m.get("id", "") for m in data.get("data", []) if m.get("id")]

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _build_headers(self, stream: bool = False) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self._extra_headers)
        return headers

    def _build_body(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None,
        options: Mapping[str, Any] | None,
        stream: bool,
    ) -> dict:
        body: dict[str, Any] = {
            k: v for k, v in (options or {}).items() if k not in CLIENT_ONLY_OPTIONS
        }
        body.update(
            model=model,
            messages=[m.to_wire() for m in messages],
            stream=stream,
        )
        if tools:
            body["tools"] = tools
            body.setdefault("tool_choice", "auto")
        logger.info(
            "REQUEST: model=%s stream=%s tools=%d messages=%d",
            model,
            stream,
            len(tools) if tools else 0,
            len(body["messages"]),
        )
        return body

    # ------------------------------------------------------------------
    # Non-streaming requests
    # ------------------------------------------------------------------

    async def _post_json(self, path: str, body: dict) -> dict:
        return await self._request("POST", path, json=body)

    async def _get_json(self, path: str) -> dict:
        return await self._request("GET", path)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        url = f"{self._url}{path}"

        last_error: TransportError | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client() as client:
                    resp = await client.request(
                        method, url, headers=self._build_headers(), **kwargs
                    )
            except httpx.HTTPError as exc:
                last_error = TransportError(f"{type(exc).__name__}: {exc}")
                if attempt < self._max_retries:
                    logger.warning("%s %s attempt %d failed: %s", method, path, attempt + 1, exc)
                    continue
                raise last_error from exc

            if _is_retryable(resp.status_code):
                last_error = TransportError(
                    f"HTTP {resp.status_code} from {url}", status_code=resp.status_code
                )
                logger.warning(
                    "%s %s attempt %d failed: HTTP %d", method, path, attempt + 1, resp.status_code
                )
                continue

            if resp.is_error:
                raise TransportError(
                    f"HTTP {resp.status_code} from {url}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
            try:
                return resp.json()
            except ValueError as exc:
                raise TransportError(f"invalid JSON from {url}: {exc}") from exc

        assert last_error is not None
        raise last_error


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def _iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """
    Yield the ``data`` payloads of a Server-Sent Events response.

    Each SSE event has the form::

        data: {json}\\n\\n

    The sentinel ``data: [DONE]`` terminates the stream.  Comment lines and
    other fields (``event:``, ``id:``) are ignored.
    """
    async for line in response.aiter_lines():
        line = line.rstrip("\r")
        if not line or not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return
        yield data
