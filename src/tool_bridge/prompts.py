"""System prompt telling the model which tools exist and how to request one."""

from __future__ import annotations

import json
from typing import Any, Final, Mapping

from tool_bridge.registry import ToolRegistry
from tool_bridge.types import ToolSpec

__all__ = ["build_tool_prompt"]

PROMPT_HEADER: Final = """\
You have access to external tools. If the user's request needs data from one \
of them, answer the user normally first, then add exactly one tool \
instruction in this format:

```json
{
  "mcp_instructions": {
    "target": "<backend>",
    "tool": "<tool name>",
    "params": { }
  }
}
```

Instructions are executed automatically; do not ask the user to run them."""

NO_TOOLS: Final = "No tools are currently available; answer from your own knowledge."


def _describe_params(schema: Mapping[str, Any]) -> str:
    properties = schema.get("properties")
    if not isinstance(properties, Mapping) or not properties:
        return ""
    required = set(schema.get("required") or ())
    parts = []
    for name, spec in properties.items():
        kind = spec.get("type", "any") if isinstance(spec, Mapping) else "any"
        if isinstance(kind, list):
            kind = " or ".join(str(k) for k in kind)
        optional = "" if name in required else ", optional"
        parts.append(f"{name} ({kind}{optional})")
    return ", ".join(parts)


def _describe_tool(spec: ToolSpec) -> str:
    line = f"- {spec.name}"
    if spec.description:
        line += f": {spec.description.strip().splitlines()[0]}"
    params = _describe_params(spec.input_schema)
    if params:
        line += f"\n  Params: {params}"
    return line


def build_tool_prompt(registry: ToolRegistry, *, header: str = PROMPT_HEADER) -> str:
    """
    Render ``header`` followed by the tools each backend currently lists.

    Backends with an empty catalog are left out.
    """
    sections = []
    for backend in registry.backends:
        tools = sorted(registry.catalog(backend).values(), key=lambda spec: spec.name)
        if not tools:
            continue
        body = "\n".join(_describe_tool(spec) for spec in tools)
        sections.append(f"Available {backend} tools (target {json.dumps(backend)}):\n{body}")

    if not sections:
        return f"{header}\n\n{NO_TOOLS}"
    return "\n\n".join([header, *sections])
