from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

__all__ = ["ToolResult"]


@dataclass
class ToolResult:
    """Outcome of one dispatched instruction, shaped for display."""

    backend: str
    tool: str
    success: bool
    payload: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    elapsed: float = 0.0
    summary: str = ""
    entries: list[str] = field(default_factory=list)

    def as_text(self) -> str:
        """Summary and detail entries joined into one chat-visible message."""
        if not self.success:
            return f"Error executing {self.backend} tool {self.tool}: {self.error}"
        return "\n\n".join(part for part in (self.summary, *self.entries) if part)
