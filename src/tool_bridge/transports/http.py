"""HTTP peer: tool backends exposed as ``GET /tools`` and ``POST /tools/{name}``."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional
from urllib.parse import quote

import httpx

from tool_bridge.config import TransportKind
from tool_bridge.errors import PeerClosed, RequestTimeout, RpcError
from tool_bridge.jsonrpc import JSONRPC_VERSION, RpcErrorResponse, RpcResponse, decode_object

from .base import BasePeer

__all__ = ["HttpPeer"]


class HttpPeer(BasePeer):
    """
    Talks to one HTTP tool server.

    There is no persistent connection to correlate against, so every request
    stands alone: ``tools/list`` and ``tools/call`` map onto the REST routes,
    any other method is posted to the base URL as a JSON-RPC envelope with a
    request-scoped random id.
    """

    transport = TransportKind.HTTP

    def __init__(
        self,
        *args: Any,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._client = client
        self._owns_client = client is None
        self._started = False

    @property
    def is_alive(self) -> bool:
        return self._started and not self._closed.is_set()

    async def start(self) -> None:
        if self._client is None:
            # Caller must close via ``stop()``
            self._client = httpx.AsyncClient(
                base_url=self.backend.url or "",
                timeout=self.request_timeout(),
                headers={"Accept": "application/json", **self.backend.headers},
            )
        self._started = True
        self._closed.clear()
        self._log(f"Using HTTP endpoint {self.backend.url}", logging.DEBUG)

    async def handshake(self, *, timeout: Optional[float] = None) -> dict[str, Any] | None:
        # No session to initialize; GET /tools during startup proves reachability
        return None

    async def send(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        if not self.is_alive or self._client is None:
            raise PeerClosed(f"{self.name} is not connected", backend=self.backend.name)

        request_timeout = self.request_timeout(timeout)
        try:
            if method == "tools/list":
                response = await self._client.get("/tools", timeout=request_timeout)
                return self._decode_json(response)
            if method == "tools/call":
                name = str((params or {}).get("name") or "")
                arguments = (params or {}).get("arguments") or {}
                response = await self._client.post(
                    f"/tools/{quote(name, safe='')}", json=arguments, timeout=request_timeout
                )
                return self._unwrap_tool_result(response)

            envelope = {
                "jsonrpc": JSONRPC_VERSION,
                "id": uuid.uuid4().hex,
                "method": method,
                "params": params if params is not None else {},
            }
            response = await self._client.post("", json=envelope, timeout=request_timeout)
            return self._unwrap_rpc(response)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(
                f"No response to {method} from {self.name} after {request_timeout:.1f}s",
                backend=self.backend.name,
                original_exc=exc,
            ) from exc
        except httpx.TransportError as exc:
            raise PeerClosed(
                f"Unable to reach {self.name} at {self.backend.url}: {exc}",
                backend=self.backend.name,
                original_exc=exc,
            ) from exc

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._started = False
        self._closed.set()

    # --- decoding ----------------------------------------------------------
    def _decode_json(self, response: httpx.Response) -> Any:
        try:
            data = response.json()
        except ValueError as exc:
            if response.is_error:
                raise RpcError(
                    f"HTTP {response.status_code} from {self.name}",
                    code=response.status_code,
                    backend=self.backend.name,
                ) from exc
            raise RpcError(
                f"{self.name} returned a non-JSON body",
                backend=self.backend.name,
                original_exc=exc,
            ) from exc
        if response.is_error and not isinstance(data, dict):
            raise RpcError(
                f"HTTP {response.status_code} from {self.name}",
                code=response.status_code,
                backend=self.backend.name,
            )
        return data

    def _unwrap_tool_result(self, response: httpx.Response) -> Any:
        data = self._decode_json(response)
        if isinstance(data, dict) and "success" in data:
            if data.get("success"):
                return data.get("result")
            raise RpcError(
                str(data.get("error") or "Tool execution failed"),
                code=response.status_code if response.is_error else None,
                data=data,
                backend=self.backend.name,
            )
        if response.is_error:
            raise RpcError(
                f"HTTP {response.status_code} from {self.name}",
                code=response.status_code,
                data=data,
                backend=self.backend.name,
            )
        return data

    def _unwrap_rpc(self, response: httpx.Response) -> Any:
        data = self._decode_json(response)
        message = decode_object(data)
        if isinstance(message, RpcResponse):
            return message.result
        if isinstance(message, RpcErrorResponse):
            raise RpcError(
                message.message,
                code=message.code,
                data=message.data,
                backend=self.backend.name,
            )
        if response.is_error:
            raise RpcError(
                f"HTTP {response.status_code} from {self.name}",
                code=response.status_code,
                backend=self.backend.name,
            )
        return data
