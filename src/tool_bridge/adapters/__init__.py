"""Decode raw LLM responses of any supported shape into a ChatResponse, once."""

from __future__ import annotations

from typing import Any, Mapping

from anthropic.types import Message
from openai.types.chat import ChatCompletion

from tool_bridge.response import ChatResponse

from .anthropic import AnthropicResponseAdapter
from .common import parse_arguments, split_tool_name
from .openai import OpenAIResponseAdapter, tool_calls_from_dicts

__all__ = [
    "OpenAIResponseAdapter",
    "AnthropicResponseAdapter",
    "to_chat_response",
    "STRUCTURED_KEYS",
    "TEXT_KEYS",
    "parse_arguments",
    "split_tool_name",
]

# Keys under which a directive may already be structured
STRUCTURED_KEYS: tuple[str, ...] = ("mcp_instructions", "instructions")
# Keys under which plain-text completions carry their text
TEXT_KEYS: tuple[str, ...] = ("answer", "responseText", "content", "text", "response", "completion")

_openai = OpenAIResponseAdapter()
_anthropic = AnthropicResponseAdapter()


def to_chat_response(response: Any) -> ChatResponse:
    """
    Normalize a model response to a ChatResponse.

    Accepts a ChatResponse, an OpenAI ``ChatCompletion``, an Anthropic
    ``Message``, their JSON (dict) forms, a plain completion dict such as
    ``{"answer": "..."}``, a pydantic model, or a bare string.
    """
    if isinstance(response, ChatResponse):
        return response
    if isinstance(response, ChatCompletion):
        return _openai.from_provider(response)
    if isinstance(response, Message):
        return _anthropic.from_provider(response)
    if isinstance(response, str):
        return ChatResponse(content=response, raw=response)
    if isinstance(response, (bytes, bytearray)):
        return ChatResponse(content=response.decode("utf-8", errors="replace"), raw=response)
    if hasattr(response, "model_dump"):
        dumped = response.model_dump()
        if isinstance(dumped, Mapping):
            decoded = _from_mapping(dumped)
            decoded.raw = response
            return decoded
    if isinstance(response, Mapping):
        return _from_mapping(response)
    return ChatResponse(content="", raw=response)


def _from_mapping(data: Mapping[str, Any]) -> ChatResponse:
    if isinstance(data.get("choices"), list):
        decoded = _openai.from_dict(data)
    elif isinstance(data.get("content"), list):
        decoded = _anthropic.from_dict(data)
    else:
        decoded = ChatResponse(content=_first_text(data), raw=data)
        calls = tool_calls_from_dicts(data.get("tool_calls"))
        if not calls and isinstance(data.get("function_call"), Mapping):
            calls = tool_calls_from_dicts([{"function": data["function_call"]}])
        decoded.tool_calls = calls or None

    decoded.structured = _structured(data)
    return decoded


def _structured(data: Mapping[str, Any]) -> dict[str, Any] | None:
    for key in STRUCTURED_KEYS:
        value = data.get(key)
        if isinstance(value, Mapping):
            return dict(value)
    if "target" in data and "tool" in data:
        return dict(data)
    return None


def _first_text(data: Mapping[str, Any]) -> str:
    for key in TEXT_KEYS:
        value = data.get(key)
        if isinstance(value, str):
            return value
    return ""
