"""Abstract base class for model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, AsyncIterator

from lmturn.llm.types import Chunk, Completion, Message


class ModelClient(ABC):
    """
    A client encapsulates access to one OpenAI-compatible completion endpoint.

    Implementations must support:
      - Complete (non-streamed) chat completions (``complete``).
      - Streamed chat completions (``stream``).
      - Listing the models the server can serve (``list_models``).

    Failures reaching the server are reported as ``TransportError``.
    """

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Completion:
        """Request a full response and return it parsed."""
        ...

    @abstractmethod
    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[Chunk | str | Mapping[str, Any]]:
        """
        Start a streamed completion.

        Yields raw chunk payloads in arrival order.  Decoding is left to
        ``StreamAggregator.handle_chunk`` so that malformed fragments are
        reported through its ``stream_error`` event.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield Chunk()  # type: ignore[misc]

    async def list_models(self) -> list[str]:
        """Identifiers of the models the server can serve."""
        return []

    async def aclose(self) -> None:
        """Release any pooled connections."""
        return None

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable client name (e.g. ``"openai-compat"``)."""
        ...
