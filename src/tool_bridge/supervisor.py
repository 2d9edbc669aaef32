"""
Connection lifecycle for one backend.

    DISCONNECTED --connect()--> CONNECTING --ready signal--> INITIALIZING
        --initialize + tools/list--> READY

Any failure drops back to DISCONNECTED and counts one attempt; once
``max_connect_attempts`` consecutive attempts have failed the supervisor
parks in FAILED and refuses to spawn again until ``reset()`` or ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tool_bridge.config import BackendConfig, BridgeSettings
from tool_bridge.errors import (
    ConnectTimeout,
    MaxAttemptsExceeded,
    PeerClosed,
    RpcError,
    ToolBridgeError,
    UnknownTool,
    classify_error,
)
from tool_bridge.registry import ToolRegistry
from tool_bridge.results import content_text
from tool_bridge.transports import BasePeer, create_peer
from tool_bridge.types import ConnectionState

__all__ = ["Connection", "ConnectionSupervisor", "PeerFactory"]

PeerFactory = Callable[[BackendConfig, BridgeSettings, logging.Logger], BasePeer]

# JSON-RPC codes backends use when rejecting a tools/call for a tool they lack
UNKNOWN_TOOL_CODES = frozenset({-32601, -32602})


def _is_unknown_tool(error: RpcError) -> bool:
    if error.code == 404:
        return True
    return error.code in UNKNOWN_TOOL_CODES and "unknown tool" in error.message.lower()


def _default_peer_factory(
    backend: BackendConfig, settings: BridgeSettings, logger: logging.Logger
) -> BasePeer:
    return create_peer(backend, settings=settings, logger=logger)


@dataclass(slots=True)
class Connection:
    """One live binding to a backend. Replaced, never reused, on reconnect."""

    peer: BasePeer
    created_at: float
    server_info: dict[str, Any] | None = None


class ConnectionSupervisor:
    """
    Drives one backend's peer through the connection state machine.

    ``connection`` is swapped atomically: senders see either a fully live
    connection or none at all, never one that is being torn down.
    """

    def __init__(
        self,
        backend: BackendConfig,
        *,
        settings: Optional[BridgeSettings] = None,
        registry: Optional[ToolRegistry] = None,
        peer_factory: Optional[PeerFactory] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or BridgeSettings()
        self.registry = registry
        self.logger = logger or logging.getLogger(__name__)
        self.name = name if name is not None else backend.name
        self._peer_factory = peer_factory or _default_peer_factory
        self._state = ConnectionState.DISCONNECTED
        self._connection: Optional[Connection] = None
        self._connect_task: Optional[asyncio.Task[Connection]] = None
        self._watch_task: Optional[asyncio.Task[None]] = None
        self._cleanup: set[asyncio.Task[None]] = set()
        self._attempts = 0
        self._last_error: Optional[ToolBridgeError] = None
        if registry is not None:
            registry.bind(backend.name, self)

    # --- introspection -----------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY and self._connection is not None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_error(self) -> Optional[ToolBridgeError]:
        return self._last_error

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    # --- lifecycle ---------------------------------------------------------
    async def connect(self) -> None:
        """
        Bring the backend to READY.

        Idempotent: returns at once when already READY and joins the attempt
        in progress when CONNECTING or INITIALIZING.

        Raises:
            MaxAttemptsExceeded: the retry budget is spent (no spawn attempted).
            ConnectTimeout: no readiness/handshake within ``connect_timeout``.
            SpawnError, PeerClosed, RpcError: the attempt failed.
            PeerClosed: ``stop()`` was called while the attempt was running.
        """
        if self.is_ready:
            return
        if self._connect_task is None:
            if self._state is ConnectionState.FAILED or self._attempts >= self.settings.max_connect_attempts:
                self._set_state(ConnectionState.FAILED)
                raise MaxAttemptsExceeded(
                    f"{self.name}: giving up after {self._attempts} failed connection attempt(s)",
                    backend=self.backend.name,
                    original_exc=self._last_error,
                )
            self._connect_task = asyncio.create_task(
                self._establish(), name=f"{self.name}-connect"
            )
            self._connect_task.add_done_callback(self._clear_connect_task)
        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            # the shared attempt was cancelled by stop(), not this caller
            if task.cancelled() and (current is None or current.cancelling() == 0):
                raise PeerClosed(
                    f"{self.name} was stopped while connecting", backend=self.backend.name
                ) from None
            raise

    async def ensure_ready(self) -> None:
        await self.connect()

    async def stop(self) -> None:
        """Fail pending requests, tear the transport down and reset the counter."""
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        connection, self._connection = self._connection, None
        if connection is not None:
            self._log("Stopping")
            await connection.peer.stop()

        watcher, self._watch_task = self._watch_task, None
        if watcher is not None:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
        if self._cleanup:
            await asyncio.gather(*self._cleanup, return_exceptions=True)

        self._attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)

    def reset(self) -> None:
        """Clear the attempt counter so a FAILED backend may be retried."""
        self._attempts = 0
        if self._state is ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)

    # --- requests ----------------------------------------------------------
    async def request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        connection = self._connection
        if connection is None or not self.is_ready:
            raise PeerClosed(f"{self.name} is not connected", backend=self.backend.name)
        try:
            return await connection.peer.send(method, params, timeout=timeout)
        except PeerClosed as exc:
            self._connection_lost(connection, exc)
            raise

    async def list_tools(self) -> list[dict[str, Any]]:
        connection = self._connection
        if connection is None or not self.is_ready:
            raise PeerClosed(f"{self.name} is not connected", backend=self.backend.name)
        try:
            return await connection.peer.list_tools()
        except PeerClosed as exc:
            self._connection_lost(connection, exc)
            raise

    async def call_tool(
        self,
        tool: str,
        arguments: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke one tool, connecting on demand, and return its raw result."""
        await self.ensure_ready()
        connection = self._connection
        if connection is None:
            raise PeerClosed(f"{self.name} is not connected", backend=self.backend.name)
        try:
            result = await connection.peer.call_tool(tool, arguments, timeout=timeout)
        except PeerClosed as exc:
            self._connection_lost(connection, exc)
            raise
        except RpcError as exc:
            if _is_unknown_tool(exc):
                raise UnknownTool(exc.message, backend=self.backend.name, original_exc=exc) from exc
            raise
        if isinstance(result, dict) and result.get("isError"):
            raise RpcError(
                content_text(result) or f"Tool {tool} failed",
                data=result,
                backend=self.backend.name,
            )
        return result

    # --- internals ---------------------------------------------------------
    async def _establish(self) -> Connection:
        self._set_state(ConnectionState.CONNECTING)
        peer = self._peer_factory(self.backend, self.settings, self.logger)
        try:
            async with asyncio.timeout(self.settings.connect_timeout):
                await peer.start()
                await peer.wait_ready()
                self._set_state(ConnectionState.INITIALIZING)
                server_info = await peer.handshake(timeout=self.settings.handshake_timeout)
                tools = await peer.list_tools(timeout=self.settings.handshake_timeout)
        except asyncio.CancelledError:
            await peer.stop()
            raise
        except TimeoutError as exc:
            await peer.stop()
            if isinstance(exc, ToolBridgeError):
                message = f"{self.name} did not answer the handshake: {exc}"
            else:
                message = f"{self.name} did not become ready within {self.settings.connect_timeout:.1f}s"
            error = ConnectTimeout(
                message,
                backend=self.backend.name,
                original_exc=exc,
            )
            self._record_failure(error)
            raise error from exc
        except Exception as exc:
            await peer.stop()
            error = classify_error(exc, self.logger, backend=self.backend.name)
            self._record_failure(error)
            if error is exc:
                raise
            raise error from exc

        connection = Connection(peer=peer, created_at=time.time(), server_info=server_info)
        self._connection = connection
        self._attempts = 0
        self._last_error = None
        if self.registry is not None:
            self.registry.store(self.backend.name, tools)
        self._set_state(ConnectionState.READY)
        self._watch_task = asyncio.create_task(
            self._watch(connection), name=f"{self.name}-watch"
        )
        return connection

    async def _watch(self, connection: Connection) -> None:
        await connection.peer.wait_closed()
        if self._connection is connection:
            self._connection_lost(
                connection,
                PeerClosed(f"{self.name} exited", backend=self.backend.name),
            )

    def _connection_lost(self, connection: Connection, error: ToolBridgeError) -> None:
        if self._connection is not connection:
            return
        self._connection = None
        self._log(f"Connection lost: {error}", logging.WARNING)
        self._record_failure(error)
        # release the process and pipes; pending requests were already failed
        task = asyncio.get_running_loop().create_task(connection.peer.stop())
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    def _record_failure(self, error: ToolBridgeError) -> None:
        self._attempts += 1
        self._last_error = error
        exhausted = self._attempts >= self.settings.max_connect_attempts
        self._log(
            f"Attempt {self._attempts}/{self.settings.max_connect_attempts} failed: {error}",
            logging.WARNING,
        )
        self._set_state(ConnectionState.FAILED if exhausted else ConnectionState.DISCONNECTED)

    def _clear_connect_task(self, task: asyncio.Task[Connection]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            task.exception()  # retrieved here; awaiting callers re-raise it

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._log(f"{self._state} -> {state}", logging.INFO)
            self._state = state

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

