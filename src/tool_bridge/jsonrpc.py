"""
JSON-RPC 2.0 framing for line-delimited peers.

Outbound messages are serialized as one compact JSON object followed by
``\\n``. Inbound lines are decoded once into one of the tagged message kinds
below; anything that is not a JSON-RPC message decodes to ``None`` so the
caller can drop it without failing the connection.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Final, Optional, Union

__all__ = [
    "JSONRPC_VERSION",
    "METHOD_NOT_FOUND",
    "RpcResponse",
    "RpcErrorResponse",
    "RpcNotification",
    "RpcServerRequest",
    "InboundMessage",
    "encode_request",
    "encode_notification",
    "encode_result",
    "encode_error",
    "decode_message",
]

JSONRPC_VERSION: Final = "2.0"
METHOD_NOT_FOUND: Final = -32601


@dataclass(slots=True)
class RpcResponse:
    id: Any
    result: Any


@dataclass(slots=True)
class RpcErrorResponse:
    id: Any
    code: Optional[int]
    message: str
    data: Any = None


@dataclass(slots=True)
class RpcNotification:
    method: str
    params: Any = None


@dataclass(slots=True)
class RpcServerRequest:
    """A request initiated by the peer (e.g. ``ping``)."""
    id: Any
    method: str
    params: Any = None


InboundMessage = Union[RpcResponse, RpcErrorResponse, RpcNotification, RpcServerRequest]


def _dump(payload: dict[str, Any]) -> bytes:
    return (json.dumps(payload, separators=(",", ":"), default=str) + "\n").encode("utf-8")


def encode_request(request_id: Any, method: str, params: Any = None) -> bytes:
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return _dump(payload)


def encode_notification(method: str, params: Any = None) -> bytes:
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return _dump(payload)


def encode_result(request_id: Any, result: Any) -> bytes:
    return _dump({"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result})


def encode_error(request_id: Any, code: int, message: str) -> bytes:
    return _dump(
        {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}
    )


def decode_message(line: bytes | str) -> InboundMessage | None:
    """Decode one inbound line, or return None if it is not a protocol message."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    return decode_object(obj)


def decode_object(obj: Any) -> InboundMessage | None:
    if not isinstance(obj, dict):
        return None

    method = obj.get("method")
    if isinstance(method, str):
        if "id" in obj and obj["id"] is not None:
            return RpcServerRequest(id=obj["id"], method=method, params=obj.get("params"))
        return RpcNotification(method=method, params=obj.get("params"))

    if "error" in obj and obj["error"] is not None:
        error = obj["error"]
        if isinstance(error, dict):
            code = error.get("code")
            return RpcErrorResponse(
                id=obj.get("id"),
                code=code if isinstance(code, int) else None,
                message=str(error.get("message") or "Unknown error"),
                data=error.get("data"),
            )
        return RpcErrorResponse(id=obj.get("id"), code=None, message=str(error))

    if "result" in obj:
        return RpcResponse(id=obj.get("id"), result=obj["result"])

    return None
