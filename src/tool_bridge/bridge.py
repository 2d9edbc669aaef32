"""
The top-level context owning every backend connection.

Build one ``ToolBridge`` at process start, pass it to whatever turns model
output into tool calls, and close it at shutdown::

    async with ToolBridge.from_env() as bridge:
        outcome = await bridge.handle_response(completion)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Self

from tool_bridge.config import BackendConfig, BridgeSettings, backends_from_env
from tool_bridge.dispatcher import DispatchOutcome, Dispatcher, ToolResultCallback, ToolStartCallback
from tool_bridge.errors import InvalidInstruction, ToolBridgeError, UnknownBackend, classify_error
from tool_bridge.prompts import build_tool_prompt
from tool_bridge.registry import ToolRegistry
from tool_bridge.supervisor import ConnectionSupervisor, PeerFactory
from tool_bridge.types import Instruction, ToolResult, ToolSpec

__all__ = ["ToolBridge"]


class ToolBridge:
    def __init__(
        self,
        backends: Iterable[BackendConfig],
        *,
        settings: Optional[BridgeSettings] = None,
        aliases: Optional[Mapping[str, str]] = None,
        on_tool_start: Optional[ToolStartCallback] = None,
        on_tool_result: Optional[ToolResultCallback] = None,
        peer_factory: Optional[PeerFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Args:
            backends: Static backend configuration, one entry per backend.
            settings: Timeouts, retry budget and result limits.
            aliases: Extra backend aliases on top of the built-in ones.
            on_tool_start: Called with ``(backend, tool)`` before a call.
            on_tool_result: Called with ``(backend, tool, ToolResult)`` after it.
            peer_factory: Builds the transport peer for a backend; mainly for tests.
            logger: Optional logger instance. If None, a logger named after
                    this module will be used.
        """
        self.settings = settings or BridgeSettings()
        self.logger = logger or logging.getLogger(__name__)
        self.registry = ToolRegistry(aliases=aliases, logger=self.logger)
        self._supervisors: dict[str, ConnectionSupervisor] = {}
        for backend in backends:
            key = self.registry.canonical_name(backend.name)
            if key in self._supervisors:
                raise ValueError(f"Backend {backend.name!r} is configured twice")
            self._supervisors[key] = ConnectionSupervisor(
                backend,
                settings=self.settings,
                registry=self.registry,
                peer_factory=peer_factory,
                logger=self.logger,
                name=key,
            )
        self.dispatcher = Dispatcher(
            self._supervisors,
            self.registry,
            settings=self.settings,
            on_tool_start=on_tool_start,
            on_tool_result=on_tool_result,
            logger=self.logger,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> Self:
        """Build a bridge from ``TOOL_BRIDGE_*`` and ``<NAME>_MCP_SERVER_*`` variables."""
        kwargs.setdefault("settings", BridgeSettings.from_env())
        return cls(backends_from_env(), **kwargs)

    # --- backends ----------------------------------------------------------
    @property
    def backends(self) -> list[str]:
        return list(self._supervisors)

    def supervisor(self, name: str) -> ConnectionSupervisor:
        key = self.registry.canonical_name(name)
        try:
            return self._supervisors[key]
        except KeyError:
            raise UnknownBackend(f"Unknown backend {name!r}", backend=key) from None

    async def start(self, *, eager: Optional[bool] = None) -> dict[str, Optional[ToolBridgeError]]:
        """
        Connect every backend up front when eager startup is enabled.

        Backends are otherwise started lazily on their first call. A backend
        that fails to start is reported in the returned mapping and never
        prevents the others from starting.
        """
        if not (self.settings.eager_start if eager is None else eager):
            return {}
        names = list(self._supervisors)
        outcomes = await asyncio.gather(
            *(self._supervisors[name].connect() for name in names), return_exceptions=True
        )
        report: dict[str, Optional[ToolBridgeError]] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                report[name] = classify_error(outcome, self.logger, backend=name)
                self.logger.warning("Backend %s did not start: %s", name, report[name])
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report[name] = None
        return report

    async def aclose(self) -> None:
        """Stop every backend. Pending requests fail with PeerClosed first."""
        await asyncio.gather(
            *(supervisor.stop() for supervisor in self._supervisors.values()),
            return_exceptions=True,
        )

    # --- tools -------------------------------------------------------------
    async def dispatch(self, instruction: Optional[Instruction]) -> Optional[ToolResult]:
        return await self.dispatcher.dispatch(instruction)

    async def handle_response(self, response: Any) -> DispatchOutcome:
        return await self.dispatcher.handle_response(response)

    async def call_tool(
        self,
        backend: str,
        tool: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ToolResult:
        """
        Call a tool directly, through the same path extracted instructions take.

        Raises:
            InvalidInstruction: ``tool`` is empty or ``backend`` cannot be resolved.
        """
        instruction = Instruction(target=backend, tool=tool, params=dict(params or {}))
        result = await self.dispatcher.dispatch(instruction)
        if result is None:
            raise InvalidInstruction(f"Cannot route {tool!r} to backend {backend!r}", backend=backend)
        return result

    async def discover_tools(self) -> dict[str, list[ToolSpec]]:
        """Re-list tools on every ready backend and return the catalogs."""
        catalogs = await self.registry.refresh_all()
        return {name: list(catalog.values()) for name, catalog in catalogs.items()}

    def tool_prompt(self) -> str:
        return build_tool_prompt(self.registry)

    def openai_tools(self) -> list[dict[str, Any]]:
        return self.registry.as_openai_tools()

    def anthropic_tools(self) -> list[dict[str, Any]]:
        return self.registry.as_anthropic_tools()

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "state": str(supervisor.state),
                "attempts": supervisor.attempts,
                "last_error": str(supervisor.last_error) if supervisor.last_error else None,
                "transport": str(supervisor.backend.transport),
                "endpoint": supervisor.backend.endpoint,
                "tools": len(self.registry.catalog(name)),
            }
            for name, supervisor in self._supervisors.items()
        }

    # --- lifecycle ---------------------------------------------------------
    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
