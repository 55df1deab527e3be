from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ToolStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class ToolOutcome:
    """
    Normalized result of one tool call.

    ``SUCCESS`` and ``ERROR`` are terminal and become a ``tool`` message in the
    conversation history.  ``IN_PROGRESS`` may be reported any number of times
    before the terminal outcome and is only surfaced through events.
    """

    tool_call_id: str
    tool_name: str
    content: str
    status: ToolStatus = ToolStatus.SUCCESS
    progress: int | None = None
    error: str | None = None

    @classmethod
    def success(cls, tool_call_id: str, tool_name: str, content: str) -> ToolOutcome:
        return cls(tool_call_id=tool_call_id, tool_name=tool_name, content=content)

    @classmethod
    def failure(cls, tool_call_id: str, tool_name: str, error: str) -> ToolOutcome:
        return cls(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            content=f"Error: {error}",
            status=ToolStatus.ERROR,
            error=error,
        )

    @classmethod
    def in_progress(
        cls, tool_call_id: str, tool_name: str, progress: int, content: str = ""
    ) -> ToolOutcome:
        return cls(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            content=content,
            status=ToolStatus.IN_PROGRESS,
            progress=progress,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not ToolStatus.IN_PROGRESS

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "content": self.content,
            "status": self.status.value,
        }
        if self.progress is not None:
            d["progress"] = self.progress
        if self.error is not None:
            d["error"] = self.error
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
