from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from tool_bridge.types import ToolCallRequest


@dataclass
class ChatResponse:
    """Unified view of one LLM response, whatever provider produced it.

    ``structured`` holds an already-structured directive when the caller's
    payload carried one (e.g. an ``mcp_instructions`` field).
    """

    content: str
    tool_calls: list[ToolCallRequest] | None = None
    structured: Optional[dict[str, Any]] = None
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
