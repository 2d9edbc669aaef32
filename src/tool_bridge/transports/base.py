"""Base class for transport peers: one live channel to one named backend."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Self

from tool_bridge.config import BackendConfig, BridgeSettings, TransportKind

__all__ = ["BasePeer"]


class BasePeer(ABC):
    """
    Frames requests to a backend and hands back their results.

    Concrete peers implement ``start``, ``send``, ``stop`` and ``is_alive``.
    The MCP-level helpers (``handshake``, ``list_tools``, ``call_tool``) are
    expressed in terms of ``send`` and may be overridden where a transport
    speaks a different dialect.
    """

    transport: ClassVar[TransportKind]

    def __init__(
        self,
        backend: BackendConfig,
        *,
        settings: Optional[BridgeSettings] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        """
        Args:
            backend: Static description of the backend to talk to.
            settings: Shared timeouts; defaults are used when omitted.
            logger: Optional logger instance. If None, a logger named after
                    this module will be used.
            name: Optional name used in log lines; defaults to the backend name.
        """
        self.backend = backend
        self.settings = settings or BridgeSettings()
        self.logger = logger or logging.getLogger(__name__)
        self.name = name if name is not None else backend.name
        self._closed = asyncio.Event()

    @abstractmethod
    async def start(self) -> None:
        """Open the channel. Raises SpawnError if the backend cannot be started."""
        ...

    @abstractmethod
    async def send(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send one request and wait for its result.

        Raises:
            RpcError: the backend answered with an error.
            RequestTimeout: no answer before the deadline.
            PeerClosed: the channel is gone or went away mid-flight.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Fail everything in flight, then tear the channel down."""
        ...

    @property
    @abstractmethod
    def is_alive(self) -> bool: ...

    async def wait_ready(self) -> None:
        """Wait until the backend signals it can take requests."""
        return None

    async def wait_closed(self) -> None:
        """Return once the channel has gone away on its own or been stopped."""
        await self._closed.wait()

    async def handshake(self, *, timeout: Optional[float] = None) -> dict[str, Any] | None:
        """Run the protocol ``initialize`` exchange and return the server info."""
        result = await self.send(
            "initialize",
            {
                "protocolVersion": self.settings.protocol_version,
                "capabilities": {},
                "clientInfo": self.settings.client_info,
            },
            timeout=timeout or self.settings.handshake_timeout,
        )
        return result if isinstance(result, dict) else {}

    async def list_tools(self, *, timeout: Optional[float] = None) -> list[dict[str, Any]]:
        result = await self.send("tools/list", {}, timeout=timeout)
        if isinstance(result, dict):
            result = result.get("tools")
        if not isinstance(result, list):
            return []
        return [tool for tool in result if isinstance(tool, dict)]

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        return await self.send(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout
        )

    def request_timeout(self, timeout: Optional[float] = None) -> float:
        if timeout is not None:
            return timeout
        if self.backend.request_timeout is not None:
            return self.backend.request_timeout
        return self.settings.request_timeout

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

    # --- lifecycle ---------------------------------------------------------
    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
