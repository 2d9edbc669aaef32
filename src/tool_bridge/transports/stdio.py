"""Subprocess peer speaking newline-delimited JSON-RPC over stdin/stdout."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from typing import Any, Optional

from tool_bridge.config import TransportKind
from tool_bridge.correlator import RequestCorrelator
from tool_bridge.errors import PeerClosed, RpcError, SpawnError, ToolBridgeError
from tool_bridge.jsonrpc import (
    METHOD_NOT_FOUND,
    InboundMessage,
    RpcErrorResponse,
    RpcNotification,
    RpcResponse,
    RpcServerRequest,
    decode_message,
    encode_error,
    encode_notification,
    encode_request,
    encode_result,
)

from .base import BasePeer

__all__ = ["StdioPeer"]

STDERR_TAIL_LINES = 20


class StdioPeer(BasePeer):
    """
    Owns one child process.

    Only stdout is fed to the protocol parser; stderr is logged, scanned for
    the backend's readiness marker and otherwise ignored.
    """

    transport = TransportKind.STDIO

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.correlator = RequestCorrelator(name=self.name, logger=self.logger)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._ready = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self._stdout_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stopping = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def is_alive(self) -> bool:
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._closed.is_set()
        )

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    async def start(self) -> None:
        if self._process is not None:
            raise RuntimeError(f"{self.name} peer was already started")

        command = self.backend.command or ""
        env = {**os.environ, **self.backend.env} if self.backend.env else None
        self._log(f"Spawning {self.backend.endpoint}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                command,
                *self.backend.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.backend.cwd,
                limit=self.settings.stream_limit,
            )
        except OSError as exc:
            raise SpawnError(
                f"Could not start {command!r}: {exc}",
                backend=self.backend.name,
                original_exc=exc,
            ) from exc

        if not self.backend.ready_markers:
            self._ready.set()
        self._stdout_task = asyncio.create_task(
            self._read_stdout(), name=f"{self.name}-stdout"
        )
        self._stderr_task = asyncio.create_task(
            self._read_stderr(), name=f"{self.name}-stderr"
        )
        self._log(f"Started with pid {self._process.pid}", logging.DEBUG)

    async def wait_ready(self) -> None:
        """Wait for the readiness marker on stderr or the first protocol message."""
        if self._ready.is_set():
            return
        ready = asyncio.create_task(self._ready.wait())
        closed = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({ready, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
            closed.cancel()
        if not self._ready.is_set():
            raise self._closed_error("exited before signalling readiness")

    async def handshake(self, *, timeout: Optional[float] = None) -> dict[str, Any] | None:
        info = await super().handshake(timeout=timeout)
        await self.notify("notifications/initialized")
        return info

    async def send(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        if not self.is_alive:
            raise self._closed_error("is not running")

        request_id = self.correlator.next_id()
        # registered before the write so the reader can always match the reply
        future = self.correlator.track(
            request_id, self.request_timeout(timeout), method=method
        )
        try:
            await self._write(encode_request(request_id, method, params))
        except ToolBridgeError as exc:
            self.correlator.reject(request_id, exc)
        except BaseException:
            self.correlator.cancel(request_id)
            raise
        return await future

    async def notify(self, method: str, params: Any = None) -> None:
        await self._write(encode_notification(method, params))

    async def stop(self) -> None:
        process = self._process
        if process is None or self._stopping:
            return
        self._stopping = True
        failed = self.correlator.reject_all(
            lambda pending: PeerClosed(
                f"{self.name} is shutting down", backend=self.backend.name
            )
        )
        if failed:
            self._log(f"Rejected {failed} pending request(s) on shutdown", logging.DEBUG)

        if process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if not await self._wait_exit(process, self.settings.shutdown_grace):
                self._log("Still running after stdin closed; terminating", logging.WARNING)
                self._signal(process.terminate)
                if not await self._wait_exit(process, self.settings.terminate_grace):
                    self._log("Did not terminate; killing", logging.WARNING)
                    self._signal(process.kill)
                    await process.wait()

        tasks = [t for t in (self._stdout_task, self._stderr_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._closed.set()
        self._log(f"Stopped (exit code {process.returncode})")

    # --- inbound -----------------------------------------------------------
    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stream = self._process.stdout
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError as exc:
                    self._log(f"Dropping oversized stdout line: {exc}", logging.WARNING)
                    continue
                if not line:
                    break
                message = decode_message(line)
                if message is None:
                    self._log(f"Ignoring non-protocol output: {line[:200]!r}", logging.DEBUG)
                    continue
                self._ready.set()
                self._dispatch(message)
        finally:
            self._on_stdout_closed()

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            self._stderr_tail.append(text)
            self._log(f"stderr: {text}", logging.DEBUG)
            if not self._ready.is_set() and self.backend.signals_ready(text):
                self._log("Readiness signal received", logging.DEBUG)
                self._ready.set()

    def _dispatch(self, message: InboundMessage) -> None:
        match message:
            case RpcResponse(id=request_id, result=result):
                self.correlator.resolve(request_id, result)
            case RpcErrorResponse(id=request_id, code=code, message=text, data=data):
                error = RpcError(text, code=code, data=data, backend=self.backend.name)
                if not self.correlator.reject(request_id, error):
                    self._log(f"Error without a pending request: {error}", logging.WARNING)
            case RpcServerRequest(id=request_id, method="ping"):
                self._write_nowait(encode_result(request_id, {}))
            case RpcServerRequest(id=request_id, method=method):
                self._write_nowait(
                    encode_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
                )
            case RpcNotification(method=method):
                self._log(f"Notification: {method}", logging.DEBUG)

    def _on_stdout_closed(self) -> None:
        if not self._stopping:
            self._log(
                f"Output closed unexpectedly (exit code {self.returncode})", logging.WARNING
            )
        self.correlator.reject_all(lambda pending: self._closed_error("closed its output"))
        self._closed.set()

    # --- outbound ----------------------------------------------------------
    async def _write(self, payload: bytes) -> None:
        stdin = self._process.stdin if self._process else None
        if stdin is None or stdin.is_closing():
            raise self._closed_error("is not accepting input")
        async with self._write_lock:
            try:
                stdin.write(payload)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise PeerClosed(
                    f"{self.name} closed its input: {exc}",
                    backend=self.backend.name,
                    original_exc=exc,
                ) from exc

    def _write_nowait(self, payload: bytes) -> None:
        stdin = self._process.stdin if self._process else None
        if stdin is not None and not stdin.is_closing():
            stdin.write(payload)

    # --- helpers -----------------------------------------------------------
    def _closed_error(self, what: str) -> PeerClosed:
        message = f"{self.name} {what}"
        if self.returncode is not None:
            message += f" (exit code {self.returncode})"
        if self._stderr_tail:
            message += f": {self._stderr_tail[-1]}"
        return PeerClosed(message, backend=self.backend.name)

    @staticmethod
    async def _wait_exit(process: asyncio.subprocess.Process, grace: float) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except TimeoutError:
            return False
        return True

    @staticmethod
    def _signal(send_signal: Any) -> None:
        try:
            send_signal()
        except ProcessLookupError:
            pass
