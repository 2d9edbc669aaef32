"""OpenAI adapter: decode chat completions into the unified ChatResponse."""

from __future__ import annotations

from typing import Any, Mapping

from openai.types.chat import ChatCompletion

from tool_bridge.response import ChatResponse
from tool_bridge.types import ToolCallRequest

from .common import tool_call_from_parts


class OpenAIResponseAdapter:
    """Adapter for OpenAI (and OpenAI-compatible) chat completion responses."""

    def from_provider(self, raw: ChatCompletion) -> ChatResponse:
        """Convert an OpenAI ``ChatCompletion`` to a ChatResponse."""
        content = ""
        tool_calls: list[ToolCallRequest] = []

        if raw.choices and raw.choices[0].message:
            message = raw.choices[0].message
            content = message.content or ""

            for tc in message.tool_calls or []:
                function = getattr(tc, "function", None)
                if function is None:  # custom tool calls carry no function
                    continue
                call = tool_call_from_parts(tc.id, function.name, function.arguments)
                if call is not None:
                    tool_calls.append(call)

            # Legacy single function call, still emitted by some compatible servers
            legacy = getattr(message, "function_call", None)
            if legacy is not None and not tool_calls:
                call = tool_call_from_parts("", legacy.name, legacy.arguments)
                if call is not None:
                    tool_calls.append(call)

        return ChatResponse(content=content, tool_calls=tool_calls or None, raw=raw)

    def from_dict(self, data: Mapping[str, Any]) -> ChatResponse:
        """Convert the JSON (dict) form of a chat completion."""
        choices = data.get("choices") or []
        first = choices[0] if choices and isinstance(choices[0], Mapping) else {}
        message = first.get("message") or {}
        if not isinstance(message, Mapping):
            message = {}

        content = message.get("content") or first.get("text") or ""
        tool_calls = tool_calls_from_dicts(message.get("tool_calls"))
        if not tool_calls and isinstance(message.get("function_call"), Mapping):
            tool_calls = tool_calls_from_dicts([{"function": message["function_call"]}])

        return ChatResponse(
            content=content if isinstance(content, str) else "",
            tool_calls=tool_calls or None,
            raw=data,
        )


def tool_calls_from_dicts(items: Any) -> list[ToolCallRequest]:
    """Decode ``[{"id", "function": {"name", "arguments"}}]`` style lists."""
    calls: list[ToolCallRequest] = []
    if not isinstance(items, list):
        return calls
    for item in items:
        if not isinstance(item, Mapping):
            continue
        function = item.get("function")
        if isinstance(function, Mapping):
            name, arguments = function.get("name"), function.get("arguments")
        else:
            name, arguments = item.get("name"), item.get("arguments", item.get("input"))
        call = tool_call_from_parts(item.get("id"), name, arguments, item.get("target"))
        if call is not None:
            calls.append(call)
    return calls
