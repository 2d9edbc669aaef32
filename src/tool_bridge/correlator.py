"""Match responses to in-flight requests by id, with per-request deadlines."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tool_bridge.errors import PeerClosed, RequestTimeout, ToolBridgeError

__all__ = ["PendingRequest", "RequestCorrelator"]


def _closed_error(pending: "PendingRequest") -> BaseException:
    return PeerClosed(f"Connection closed while waiting for {pending.method or 'response'}")


@dataclass(slots=True)
class PendingRequest:
    id: int
    method: str
    issued_at: float
    deadline: float
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle


class RequestCorrelator:
    """
    Issues request ids for one connection and tracks the requests in flight.

    All methods are synchronous and must be called from the event loop that
    owns the connection; the loop serializes them against the read loop, so
    ``track`` followed by the transport write can never race a response.
    """

    def __init__(
        self,
        *,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name or self.__class__.__name__
        self.logger = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}

    def next_id(self) -> int:
        return next(self._ids)

    def track(
        self,
        request_id: int,
        timeout: float,
        *,
        method: str = "",
    ) -> asyncio.Future[Any]:
        """
        Register a request and arm its deadline.

        The returned future resolves with the response result, or fails with
        RequestTimeout once ``timeout`` seconds pass without one.
        """
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id} is already outstanding")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(max(timeout, 0.0), self._expire, request_id)
        now = time.monotonic()
        self._pending[request_id] = PendingRequest(
            id=request_id,
            method=method,
            issued_at=now,
            deadline=now + timeout,
            future=future,
            timer=timer,
        )
        # a caller that stops waiting releases the slot
        future.add_done_callback(lambda _: self._discard(request_id, future))
        return future

    def resolve(self, request_id: Any, result: Any) -> bool:
        """Complete a request successfully. Unknown or finished ids are ignored."""
        pending = self._pop(request_id)
        if pending is None:
            self.logger.debug("[%s] Dropping response for unknown id %r", self.name, request_id)
            return False
        pending.future.set_result(result)
        return True

    def reject(self, request_id: Any, error: BaseException) -> bool:
        """Fail a request. Unknown or finished ids are ignored."""
        pending = self._pop(request_id)
        if pending is None:
            self.logger.debug("[%s] Dropping error for unknown id %r", self.name, request_id)
            return False
        pending.future.set_exception(error)
        return True

    def cancel(self, request_id: Any) -> bool:
        """Withdraw a request nobody will wait for, releasing its slot at once."""
        pending = self._pop(request_id)
        if pending is None:
            return False
        pending.future.cancel()
        return True

    def reject_all(self, make_error: Callable[[PendingRequest], BaseException] | None = None) -> int:
        """Fail every outstanding request, by default with PeerClosed."""
        make_error = make_error or _closed_error
        count = 0
        for request_id in list(self._pending):
            pending = self._pending.get(request_id)
            if pending is not None and self.reject(request_id, make_error(pending)):
                count += 1
        return count

    @property
    def outstanding(self) -> int:
        return len(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def _pop(self, request_id: Any) -> PendingRequest | None:
        try:
            pending = self._pending.pop(request_id)
        except (KeyError, TypeError):
            return None
        pending.timer.cancel()
        if pending.future.done():
            return None
        return pending

    def _discard(self, request_id: int, future: asyncio.Future[Any]) -> None:
        pending = self._pending.get(request_id)
        if pending is not None and pending.future is future:
            self._pending.pop(request_id, None)
            pending.timer.cancel()

    def _expire(self, request_id: int) -> None:
        pending = self._pending.get(request_id)
        if pending is None:
            return
        elapsed = time.monotonic() - pending.issued_at
        error: ToolBridgeError = RequestTimeout(
            f"No response to {pending.method or 'request'} (id {request_id}) after {elapsed:.2f}s"
        )
        if self.reject(request_id, error):
            self.logger.warning("[%s] %s", self.name, error)
