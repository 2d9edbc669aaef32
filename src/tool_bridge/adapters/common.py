"""Helpers shared by the provider adapters and the instruction extractor."""

from __future__ import annotations

import json
import logging
from typing import Any

from tool_bridge.types import ToolCallRequest

_logger = logging.getLogger(__name__)

# Separators accepted between backend and tool in provider-native call names
NAME_SEPARATORS: tuple[str, ...] = ("__", ".")


def parse_arguments(raw: Any) -> dict[str, Any]:
    """
    Turn tool-call arguments into a dict.

    Arguments may arrive as a dict or as a JSON-encoded string. Anything that
    does not decode to a JSON object is treated as absent and yields ``{}``.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if hasattr(raw, "items"):
        return dict(raw)
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            _logger.warning("Bad JSON in tool call arguments: %.200r", raw)
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def split_tool_name(name: str) -> tuple[str, str]:
    """
    Split ``"mongodb__find_documents"`` or ``"mongodb.find_documents"`` into
    ``("mongodb", "find_documents")``. Unprefixed names get an empty target.
    """
    for separator in NAME_SEPARATORS:
        prefix, found, rest = name.partition(separator)
        if found and prefix and rest:
            return prefix, rest
    return "", name


def tool_call_from_parts(
    call_id: Any, name: Any, arguments: Any, target: Any = None
) -> ToolCallRequest | None:
    if not isinstance(name, str) or not name.strip():
        return None
    prefix, tool = split_tool_name(name.strip())
    explicit = target.strip() if isinstance(target, str) else ""
    return ToolCallRequest(
        id=str(call_id or ""),
        name=tool,
        arguments=parse_arguments(arguments),
        target=explicit or prefix,
    )
