"""
Find a ``{target, tool, params}`` directive in an LLM response.

Strategies run in priority order and the first hit wins:

1. ``from_structured``  - a directive the payload already carries as data
2. ``from_tool_calls``  - a provider-native tool/function call
3. ``from_fenced_json`` - a fenced JSON block inside the text
4. ``from_raw_json``    - a bare JSON object anywhere in the text

Every strategy is a pure function returning an Instruction or None.
``extract_instruction`` never raises; most turns simply carry no directive.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Final, Mapping, Optional

from tool_bridge.adapters import STRUCTURED_KEYS, parse_arguments, to_chat_response
from tool_bridge.response import ChatResponse
from tool_bridge.types import Instruction

__all__ = [
    "STRATEGIES",
    "instruction_from_mapping",
    "from_structured",
    "from_tool_calls",
    "from_fenced_json",
    "from_raw_json",
    "extract_instruction",
    "response_text",
    "clean_response_text",
]

logger = logging.getLogger(__name__)

FENCE_RE: Final = re.compile(r"```[ \t]*(?P<lang>[\w+-]*)[^\n`]*\n?(?P<body>.*?)```", re.DOTALL)
# Cheap precheck before trying to decode JSON out of free text
DIRECTIVE_HINT_RE: Final = re.compile(r'"(?:target|tool|mcp_instructions|instructions)"\s*:')
EXCESS_NEWLINES_RE: Final = re.compile(r"\n{3,}")
PARAM_KEYS: Final[tuple[str, ...]] = ("params", "parameters", "arguments")

_decoder = json.JSONDecoder()

Strategy = Callable[[ChatResponse], Optional[Instruction]]


def instruction_from_mapping(data: Any, *, require_target: bool = True) -> Optional[Instruction]:
    """
    Build an Instruction from a decoded directive.

    A ``{"mcp_instructions": {...}}`` or ``{"instructions": {...}}`` wrapper
    is unwrapped first. Parameters that fail to decode count as absent.
    """
    if not isinstance(data, Mapping):
        return None
    for key in STRUCTURED_KEYS:
        if isinstance(data.get(key), Mapping):
            data = data[key]
            break

    tool = data.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None
    if require_target and "target" not in data:
        return None
    target = data.get("target")

    params: dict[str, Any] = {}
    for key in PARAM_KEYS:
        if key in data:
            params = parse_arguments(data[key])
            break

    return Instruction(
        target=target.strip() if isinstance(target, str) else "",
        tool=tool.strip(),
        params=params,
    )


# --- strategies ------------------------------------------------------------
def from_structured(response: ChatResponse) -> Optional[Instruction]:
    if response.structured is None:
        return None
    return instruction_from_mapping(response.structured, require_target=False)


def from_tool_calls(response: ChatResponse) -> Optional[Instruction]:
    if not response.has_tool_calls:
        return None
    for call in response.tool_calls or ():
        if call.name:
            return Instruction(target=call.target, tool=call.name, params=dict(call.arguments))
    return None


def from_fenced_json(response: ChatResponse | str) -> Optional[Instruction]:
    """The first ```json fence whose body decodes to a directive."""
    text = _text_of(response)
    if "```" not in text:
        return None
    for match in FENCE_RE.finditer(text):
        if match.group("lang").lower() not in ("json", "jsonc", "json5"):
            continue
        body = match.group("body").strip()
        try:
            data = json.loads(body)
        except ValueError:
            if DIRECTIVE_HINT_RE.search(body):
                logger.warning("Ignoring malformed directive in JSON block: %.200s", body)
            continue
        instruction = instruction_from_mapping(data)
        if instruction is not None:
            return instruction
    return None


def from_raw_json(response: ChatResponse | str) -> Optional[Instruction]:
    """The first bare JSON object in the text that decodes to a directive."""
    text = _text_of(response)
    for _, _, data in _json_objects(text):
        instruction = instruction_from_mapping(data)
        if instruction is not None:
            return instruction
    return None


STRATEGIES: Final[tuple[Strategy, ...]] = (
    from_structured,
    from_tool_calls,
    from_fenced_json,
    from_raw_json,
)


def extract_instruction(response: Any) -> Optional[Instruction]:
    """
    Recover a directive from ``response`` or return None.

    ``response`` may be anything ``to_chat_response`` accepts: a
    ChatResponse, an OpenAI or Anthropic response object, their dict forms,
    a plain ``{"answer": ...}`` payload or a bare string.
    """
    try:
        chat = to_chat_response(response)
    except Exception as exc:
        logger.warning("Could not decode response for instruction extraction: %s", exc)
        return None

    for strategy in STRATEGIES:
        try:
            instruction = strategy(chat)
        except Exception as exc:
            logger.debug("Strategy %s failed: %s", strategy.__name__, exc)
            continue
        if instruction is not None:
            logger.debug("Strategy %s found %s", strategy.__name__, instruction)
            return instruction
    return None


def response_text(response: Any) -> str:
    """The human-visible text of a response, or "" when it has none."""
    try:
        return to_chat_response(response).content or ""
    except Exception as exc:
        logger.warning("Could not decode response text: %s", exc)
        return ""


def clean_response_text(text: str) -> str:
    """
    Remove directive-bearing JSON fences and bare directive objects from text.

    Text without a directive is returned unchanged. Text that is nothing but
    a directive cleans to "".
    """
    if not text:
        return text

    removed = False

    def strip_fence(match: re.Match[str]) -> str:
        nonlocal removed
        if match.group("lang").lower() in ("json", "jsonc", "json5", "") and DIRECTIVE_HINT_RE.search(
            match.group("body")
        ):
            removed = True
            return ""
        return match.group(0)

    cleaned = FENCE_RE.sub(strip_fence, text) if "```" in text else text

    spans = [
        (start, end)
        for start, end, data in _json_objects(cleaned)
        if instruction_from_mapping(data) is not None
    ]
    if spans:
        removed = True
        parts, position = [], 0
        for start, end in spans:
            parts.append(cleaned[position:start])
            position = end
        parts.append(cleaned[position:])
        cleaned = "".join(parts)

    if not removed:
        return text
    return EXCESS_NEWLINES_RE.sub("\n\n", cleaned).strip()


# --- helpers ---------------------------------------------------------------
def _text_of(response: ChatResponse | str) -> str:
    if isinstance(response, str):
        return response
    return response.content or ""


def _json_objects(text: str):
    """Yield ``(start, end, value)`` for every top-level JSON object in ``text``."""
    if not text or not DIRECTIVE_HINT_RE.search(text):
        return
    position = text.find("{")
    while position != -1:
        try:
            value, end = _decoder.raw_decode(text, position)
        except ValueError:
            position = text.find("{", position + 1)
            continue
        yield position, end, value
        position = text.find("{", end)
