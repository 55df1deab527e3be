from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol


class ProgressReporter(Protocol):
    def __call__(self, percent: int, content: str = "") -> None: ...


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


def stringify_result(result: Any) -> str:
    """Tool message content is always text; anything else is JSON-encoded."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class Tool(ABC):
    """
    An opaque capability the model can call: a name, a JSON-schema parameter
    description, and ``invoke`` mapping an argument dict to a result.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    @property
    def reports_progress(self) -> bool:
        return False

    @abstractmethod
    def invoke(self, arguments: dict[str, Any], progress: ProgressReporter | None = None) -> Any: ...

    def to_openai_schema(self) -> dict:
        function: dict[str, Any] = {
            "name": self.name,
            "parameters": normalize_schema(self.parameters),
        }
        if self.description:
            function["description"] = self.description
        return {"type": "function", "function": function}


class FunctionTool(Tool):
    """
    Adapts a plain callable ``handler(arguments) -> result`` to ``Tool``.

    If the handler declares a ``progress`` parameter, a reporter is passed to
    it by keyword so long-running tools can publish intermediate outcomes.
    """

    def __init__(
        self,
        name: str,
        handler: Callable[..., Any],
        parameters: dict | None = None,
        description: str = "",
    ) -> None:
        if not callable(handler):
            raise TypeError(f"handler for tool {name!r} is not callable")
        self._name = name
        self._handler = handler
        self._parameters = normalize_schema(parameters)
        self._description = description
        try:
            sig = inspect.signature(handler)
        except (TypeError, ValueError):
            self._accepts_progress = False
        else:
            self._accepts_progress = "progress" in sig.parameters

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    @property
    def reports_progress(self) -> bool:
        return self._accepts_progress

    def invoke(self, arguments: dict[str, Any], progress: ProgressReporter | None = None) -> Any:
        if self._accepts_progress:
            return self._handler(arguments, progress=progress or _ignore_progress)
        return self._handler(arguments)

    def __repr__(self) -> str:
        return f"FunctionTool(name={self._name!r})"


def _ignore_progress(percent: int, content: str = "") -> None:
    return None
