"""
Translate transport, protocol and dispatch failures into a unified
`ToolBridgeError`, while preserving the original exception for full
tracebacks.
"""

from __future__ import annotations

import logging
from typing import Any, Final, Optional, Type

import httpx

__all__: tuple[str, ...] = (
    "ToolBridgeError",
    "SpawnError",
    "ConnectTimeout",
    "RequestTimeout",
    "PeerClosed",
    "RpcError",
    "InvalidInstruction",
    "UnknownBackend",
    "UnknownTool",
    "MaxAttemptsExceeded",
    "classify_error",
)


class ToolBridgeError(RuntimeError):
    """Public bridge-level exception.

    Attributes:
        kind: Stable taxonomy name, safe to show to users and to branch on.
        backend: Name of the backend involved, when known.
        original_exc: The underlying exception, if this one wraps another.
    """

    kind: str = "ToolBridgeError"

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        original_exc: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.original_exc = original_exc
        if original_exc is not None:
            self.__cause__ = original_exc


class SpawnError(ToolBridgeError):
    """The backend process could not be started."""

    kind = "SpawnError"


class ConnectTimeout(ToolBridgeError, TimeoutError):
    """No readiness signal or handshake response within the connection window."""

    kind = "ConnectTimeout"


class RequestTimeout(ToolBridgeError, TimeoutError):
    """A tracked request passed its deadline without a response."""

    kind = "RequestTimeout"


class PeerClosed(ToolBridgeError, ConnectionError):
    """The peer went away (or was never there) while a request was in flight."""

    kind = "PeerClosed"


class RpcError(ToolBridgeError):
    """The backend answered with a structured protocol error."""

    kind = "RpcError"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
        backend: Optional[str] = None,
        original_exc: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, backend=backend, original_exc=original_exc)
        self.code = code
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (code {self.code})"


class InvalidInstruction(ToolBridgeError):
    """An extracted directive is missing its target or tool."""

    kind = "InvalidInstruction"


class UnknownBackend(ToolBridgeError):
    kind = "UnknownBackend"


class UnknownTool(ToolBridgeError):
    """The backend does not offer the requested tool."""

    kind = "UnknownTool"


class MaxAttemptsExceeded(ToolBridgeError):
    """The reconnection budget is spent; the backend stays failed until reset."""

    kind = "Failed"


# Patterns in foreign exception class names that still tell us what happened
ERROR_TYPE_PATTERNS: Final[dict[str, Type[ToolBridgeError]]] = {
    "Timeout": RequestTimeout,
    "ConnectionError": PeerClosed,
    "BrokenPipe": PeerClosed,
}


def classify_error(
    exc: BaseException,
    logger: Optional[logging.Logger] = None,
    *,
    backend: Optional[str] = None,
) -> ToolBridgeError:
    """Wrap any exception in a ToolBridgeError with a concise message."""
    log = logger or logging.getLogger("tool_bridge.errors")

    if isinstance(exc, ToolBridgeError):
        if exc.backend is None:
            exc.backend = backend
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeout(
            f"Request timed out: {exc}", backend=backend, original_exc=exc
        )
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return RpcError(
            f"HTTP {status} from backend",
            code=status,
            backend=backend,
            original_exc=exc,
        )
    if isinstance(exc, httpx.TransportError):
        return PeerClosed(
            f"Connection problem - unable to reach the backend: {exc}",
            backend=backend,
            original_exc=exc,
        )
    if isinstance(exc, TimeoutError):
        return RequestTimeout("Request timed out", backend=backend, original_exc=exc)
    if isinstance(exc, (ConnectionError, OSError)):
        return PeerClosed(
            f"Connection problem: {exc}", backend=backend, original_exc=exc
        )

    error_type = type(exc).__name__
    for pattern, error_cls in ERROR_TYPE_PATTERNS.items():
        if pattern in error_type:
            log.warning("Wrapping %s as %s", error_type, error_cls.kind)
            return error_cls(f"{error_type}: {exc}", backend=backend, original_exc=exc)

    # Fallback for everything else, with a stack trace since we did not expect it
    log.error(
        "Unexpected %s while talking to backend %s", error_type, backend, exc_info=exc
    )
    return ToolBridgeError(f"{error_type}: {exc}", backend=backend, original_exc=exc)
