"""Anthropic adapter: decode messages into the unified ChatResponse."""

from __future__ import annotations

from typing import Any, Mapping

from anthropic.types import Message

from tool_bridge.response import ChatResponse
from tool_bridge.types import ToolCallRequest

from .common import tool_call_from_parts


class AnthropicResponseAdapter:
    """Adapter for Anthropic ``Message`` responses."""

    def from_provider(self, raw: Message) -> ChatResponse:
        """Convert an Anthropic ``Message`` to a ChatResponse."""
        text_parts: list[str] = []
        tool_calls: list[ToolCallRequest] = []

        for block in raw.content or []:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                call = tool_call_from_parts(block.id, block.name, block.input)
                if call is not None:
                    tool_calls.append(call)

        return ChatResponse(
            content="".join(text_parts), tool_calls=tool_calls or None, raw=raw
        )

    def from_dict(self, data: Mapping[str, Any]) -> ChatResponse:
        """Convert the JSON (dict) form of a message."""
        text_parts: list[str] = []
        tool_calls: list[ToolCallRequest] = []

        for block in data.get("content") or []:
            if not isinstance(block, Mapping):
                continue
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                text_parts.append(block["text"])
            elif block.get("type") == "tool_use":
                call = tool_call_from_parts(block.get("id"), block.get("name"), block.get("input"))
                if call is not None:
                    tool_calls.append(call)

        return ChatResponse(
            content="".join(text_parts), tool_calls=tool_calls or None, raw=data
        )
