"""
Static configuration for the bridge.

Backends are named once at startup, either directly in code or from the
environment:

  TOOL_BRIDGE_CONFIG            path to a JSON file ``{"backends": {...}}``
  TOOL_BRIDGE_BACKENDS          the same JSON, inline
  <NAME>_MCP_SERVER_URL         an HTTP backend called ``<name>``
  <NAME>_MCP_SERVER_COMMAND     a subprocess backend called ``<name>``

Each backend entry is either ``{"command": "node", "args": ["server.js"]}``
or ``{"url": "http://localhost:3001/mcp"}``.
"""

from __future__ import annotations

import json
import os
import re
import shlex
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, Mapping, Optional, Self

from dotenv import load_dotenv

__all__ = [
    "TransportKind",
    "BackendConfig",
    "BridgeSettings",
    "DEFAULT_READY_MARKERS",
    "load_backends",
    "backends_from_env",
]


class TransportKind(StrEnum):
    STDIO = "stdio"
    HTTP = "http"


# Case-insensitive patterns searched in each stderr line
DEFAULT_READY_MARKERS: Final[tuple[str, ...]] = (
    r"running on stdio",
    r"listening on stdio",
    r"\bserver\b(?!.*\b(?:fail|error))\W.*\bstarted\s*$",
)

_URL_ENV: Final = re.compile(r"^(?P<name>[A-Z0-9_]+)_MCP_SERVER_URL$")
_COMMAND_ENV: Final = re.compile(r"^(?P<name>[A-Z0-9_]+)_MCP_SERVER_COMMAND$")


@dataclass(slots=True)
class BackendConfig:
    """Where one named backend lives and how to reach it."""

    name: str
    transport: TransportKind
    command: Optional[str] = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    url: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    ready_markers: tuple[str, ...] = DEFAULT_READY_MARKERS
    request_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        self.name = self.name.strip().lower()
        if not self.name:
            raise ValueError("Backend name must not be empty")
        self.transport = TransportKind(self.transport)
        if self.transport is TransportKind.STDIO and not self.command:
            raise ValueError(f"Backend {self.name!r}: stdio transport needs a command")
        if self.transport is TransportKind.HTTP and not self.url:
            raise ValueError(f"Backend {self.name!r}: http transport needs a url")
        self.ready_markers = tuple(self.ready_markers)
        for marker in self.ready_markers:
            try:
                re.compile(marker)
            except re.error as exc:
                raise ValueError(f"Backend {self.name!r}: bad ready marker {marker!r}: {exc}") from None

    @classmethod
    def stdio(
        cls,
        name: str,
        command: str,
        args: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> Self:
        return cls(name, TransportKind.STDIO, command=command, args=list(args or []), **kwargs)

    @classmethod
    def http(cls, name: str, url: str, **kwargs: Any) -> Self:
        return cls(name, TransportKind.HTTP, url=url.rstrip("/"), **kwargs)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> Self:
        """
        Build a backend from a config entry.

        The transport is taken from ``data["transport"]`` when present and
        otherwise inferred from whether a ``url`` or a ``command`` is given.
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"Backend {name!r} config must be a mapping, got {type(data).__name__}")

        transport = data.get("transport") or ("http" if data.get("url") else "stdio")
        command = data.get("command")
        args = data.get("args") or []
        if isinstance(command, str) and not args and " " in command.strip():
            command, *args = shlex.split(command)

        markers = data.get("ready_markers")
        return cls(
            name,
            TransportKind(transport),
            command=command,
            args=[str(a) for a in args],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            cwd=data.get("cwd"),
            url=data["url"].rstrip("/") if data.get("url") else None,
            headers=dict(data.get("headers") or {}),
            ready_markers=DEFAULT_READY_MARKERS if markers is None else tuple(markers),
            request_timeout=data.get("request_timeout"),
        )

    def signals_ready(self, line: str) -> bool:
        """True when a stderr line matches one of the readiness markers."""
        return any(re.search(marker, line, re.IGNORECASE) for marker in self.ready_markers)

    @property
    def endpoint(self) -> str:
        if self.transport is TransportKind.HTTP:
            return self.url or ""
        return " ".join([self.command or "", *self.args]).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class BridgeSettings:
    """Timeouts, retry budget and display limits shared by every backend."""

    connect_timeout: float = 10.0
    request_timeout: float = 15.0
    handshake_timeout: float = 5.0
    max_connect_attempts: int = 3
    shutdown_grace: float = 2.0
    terminate_grace: float = 1.0
    eager_start: bool = False
    max_result_entries: int = 3
    max_text_chars: int = 300
    stream_limit: int = 8 * 1024 * 1024
    protocol_version: str = "2025-06-18"
    client_name: str = "tool-bridge"
    client_version: str = "0.1.0"

    def __post_init__(self) -> None:
        if self.max_connect_attempts < 1:
            raise ValueError("max_connect_attempts must be at least 1")

    @property
    def client_info(self) -> dict[str, str]:
        return {"name": self.client_name, "version": self.client_version}

    @classmethod
    def from_env(cls) -> Self:
        """Read ``TOOL_BRIDGE_*`` overrides, falling back to the defaults."""
        load_dotenv()
        defaults = cls()
        return cls(
            connect_timeout=_env_float("TOOL_BRIDGE_CONNECT_TIMEOUT", defaults.connect_timeout),
            request_timeout=_env_float("TOOL_BRIDGE_REQUEST_TIMEOUT", defaults.request_timeout),
            handshake_timeout=_env_float("TOOL_BRIDGE_HANDSHAKE_TIMEOUT", defaults.handshake_timeout),
            max_connect_attempts=_env_int("TOOL_BRIDGE_MAX_CONNECT_ATTEMPTS", defaults.max_connect_attempts),
            eager_start=_env_flag("TOOL_BRIDGE_EAGER_START", defaults.eager_start),
            max_result_entries=_env_int("TOOL_BRIDGE_MAX_RESULT_ENTRIES", defaults.max_result_entries),
            max_text_chars=_env_int("TOOL_BRIDGE_MAX_TEXT_CHARS", defaults.max_text_chars),
        )


def load_backends(source: Mapping[str, Any] | str | Path) -> list[BackendConfig]:
    """
    Load backend definitions from a mapping, a JSON string or a JSON file.

    Both ``{"backends": {name: entry}}`` and a bare ``{name: entry}`` are
    accepted.
    """
    if isinstance(source, Path):
        data = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, str):
        data = json.loads(source)
    else:
        data = source

    if not isinstance(data, Mapping):
        raise TypeError(f"Backend config must be a JSON object, got {type(data).__name__}")
    entries = data.get("backends", data)
    return [BackendConfig.from_mapping(name, entry) for name, entry in entries.items()]


def backends_from_env() -> list[BackendConfig]:
    """Collect backends from ``.env`` and the process environment."""
    load_dotenv()
    backends: dict[str, BackendConfig] = {}

    config_path = os.getenv("TOOL_BRIDGE_CONFIG")
    if config_path:
        for backend in load_backends(Path(config_path)):
            backends[backend.name] = backend

    inline = os.getenv("TOOL_BRIDGE_BACKENDS")
    if inline:
        for backend in load_backends(inline):
            backends[backend.name] = backend

    for key, value in sorted(os.environ.items()):
        if not value.strip():
            continue
        if match := _URL_ENV.match(key):
            name = match["name"].lower()
            backends.setdefault(name, BackendConfig.http(name, value.strip()))
        elif match := _COMMAND_ENV.match(key):
            name = match["name"].lower()
            command, *args = shlex.split(value)
            backends.setdefault(name, BackendConfig.stdio(name, command, args))

    return list(backends.values())
