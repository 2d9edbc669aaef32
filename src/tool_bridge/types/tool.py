"""
Provider-neutral dataclasses describing tool calls.

They are intentionally minimal: everything provider-specific lives in adapters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = ["ToolCallRequest", "Instruction", "ToolSpec"]


@dataclass(slots=True)
class ToolCallRequest:
    """A model-agnostic tool call emitted natively by an LLM provider."""
    id: str
    name: str
    arguments: dict[str, Any]
    target: str = ""            # only set when the provider payload names one


@dataclass(slots=True)
class Instruction:
    """A parsed ``{target, tool, params}`` directive.

    ``target`` may still be an alias (``"es"``) or empty; the dispatcher
    normalizes it and looks an empty one up in the tool catalogs.
    """
    target: str
    tool: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ToolSpec:
    """One catalog entry as advertised by a backend's ``tools/list``."""
    backend: str
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
