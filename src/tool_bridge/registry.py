"""
Per-backend catalog of tools and their parameter schemas.

The registry is advisory. Catalogs can lag behind what a backend actually
offers, so a missing tool is a hint for the caller, never a reason on its
own to refuse a call.
"""

from __future__ import annotations

import logging
from typing import Any, Final, Iterable, Mapping, Optional, Protocol

from tool_bridge.types import ToolSpec

__all__ = ["DEFAULT_ALIASES", "ToolSource", "ToolRegistry"]

DEFAULT_ALIASES: Final[dict[str, str]] = {
    "es": "elasticsearch",
    "elastic": "elasticsearch",
    "mongo": "mongodb",
    "db": "mongodb",
    "medical": "fhir",
}

# Separator used when tools are exported under provider-native names
EXPORT_SEPARATOR: Final = "__"


class ToolSource(Protocol):
    """Anything that can list tools for one backend (e.g. a ConnectionSupervisor)."""

    @property
    def is_ready(self) -> bool: ...

    async def list_tools(self) -> list[dict[str, Any]]: ...


class ToolRegistry:
    def __init__(
        self,
        *,
        aliases: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._aliases = {k.lower(): v.lower() for k, v in {**DEFAULT_ALIASES, **(aliases or {})}.items()}
        self._catalogs: dict[str, dict[str, ToolSpec]] = {}
        self._sources: dict[str, ToolSource] = {}

    # --- names -------------------------------------------------------------
    def canonical_name(self, name: str) -> str:
        """Lower-case a backend name and resolve aliases (``"ES"`` -> ``"elasticsearch"``)."""
        key = (name or "").strip().lower()
        return self._aliases.get(key, key)

    def bind(self, backend: str, source: ToolSource) -> None:
        name = self.canonical_name(backend)
        self._sources[name] = source
        self._catalogs.setdefault(name, {})

    @property
    def backends(self) -> list[str]:
        return list(self._sources)

    def has_backend(self, backend: str) -> bool:
        return self.canonical_name(backend) in self._sources

    # --- catalogs ----------------------------------------------------------
    def store(self, backend: str, tools: Iterable[Mapping[str, Any]]) -> dict[str, ToolSpec]:
        """Replace a backend's catalog with the entries from a ``tools/list`` result."""
        name = self.canonical_name(backend)
        catalog: dict[str, ToolSpec] = {}
        for entry in tools:
            tool_name = entry.get("name")
            if not isinstance(tool_name, str) or not tool_name:
                continue
            schema = entry.get("inputSchema") or entry.get("input_schema") or entry.get("parameters") or {}
            catalog[tool_name] = ToolSpec(
                backend=name,
                name=tool_name,
                description=str(entry.get("description") or ""),
                input_schema=dict(schema) if isinstance(schema, Mapping) else {},
            )
        self._catalogs[name] = catalog
        self.logger.info("Catalog for %s holds %d tool(s)", name, len(catalog))
        return catalog

    async def refresh(self, backend: str) -> dict[str, ToolSpec]:
        """
        Re-query a backend's ``tools/list``.

        A backend that is unknown, not ready or fails to answer leaves an empty
        catalog and a warning; the rest of the bridge stays usable.
        """
        name = self.canonical_name(backend)
        source = self._sources.get(name)
        if source is None or not source.is_ready:
            self.logger.warning("Cannot refresh tools for %s: backend is not ready", name)
            self._catalogs[name] = {}
            return {}
        try:
            tools = await source.list_tools()
        except Exception as exc:
            self.logger.warning("Listing tools for %s failed: %s", name, exc)
            self._catalogs[name] = {}
            return {}
        return self.store(name, tools)

    async def refresh_all(self) -> dict[str, dict[str, ToolSpec]]:
        return {name: await self.refresh(name) for name in self.backends}

    def catalog(self, backend: str) -> dict[str, ToolSpec]:
        return dict(self._catalogs.get(self.canonical_name(backend), {}))

    def resolve(self, backend: str, tool: str) -> ToolSpec | None:
        """Look a tool up in a backend's catalog; None when it is not listed."""
        return self._catalogs.get(self.canonical_name(backend), {}).get(tool)

    def backends_for_tool(self, tool: str) -> list[str]:
        """Every backend whose catalog lists ``tool``."""
        return [name for name, catalog in self._catalogs.items() if tool in catalog]

    def all_tools(self) -> list[ToolSpec]:
        return [spec for catalog in self._catalogs.values() for spec in catalog.values()]

    # --- provider exports --------------------------------------------------
    def as_openai_tools(self) -> list[dict[str, Any]]:
        """The catalog as OpenAI function tools named ``<backend>__<tool>``."""
        return [
            {
                "type": "function",
                "function": {
                    "name": f"{spec.backend}{EXPORT_SEPARATOR}{spec.name}",
                    "description": spec.description,
                    "parameters": spec.input_schema or {"type": "object", "properties": {}},
                },
            }
            for spec in self.all_tools()
        ]

    def as_anthropic_tools(self) -> list[dict[str, Any]]:
        """The catalog as Anthropic tools named ``<backend>__<tool>``."""
        return [
            {
                "name": f"{spec.backend}{EXPORT_SEPARATOR}{spec.name}",
                "description": spec.description,
                "input_schema": spec.input_schema or {"type": "object", "properties": {}},
            }
            for spec in self.all_tools()
        ]
