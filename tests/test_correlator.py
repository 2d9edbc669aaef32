"""Tests for request/response correlation and deadlines."""

import asyncio

import pytest

from tool_bridge.correlator import RequestCorrelator
from tool_bridge.errors import PeerClosed, RequestTimeout, RpcError


@pytest.fixture
def correlator():
    return RequestCorrelator(name="test")


class TestIds:
    def test_ids_are_monotonic(self, correlator):
        ids = [correlator.next_id() for _ in range(5)]
        assert ids == [1, 2, 3, 4, 5]

    async def test_duplicate_outstanding_id_is_rejected(self, correlator):
        future = correlator.track(7, 1.0)
        with pytest.raises(ValueError):
            correlator.track(7, 1.0)
        correlator.resolve(7, None)
        await future


class TestResolution:
    async def test_resolve_completes_future_and_forgets_it(self, correlator):
        future = correlator.track(1, 1.0, method="tools/list")
        assert 1 in correlator

        assert correlator.resolve(1, {"tools": []}) is True
        assert await future == {"tools": []}
        assert correlator.outstanding == 0

    async def test_reject_fails_future(self, correlator):
        future = correlator.track(1, 1.0)
        correlator.reject(1, RpcError("nope", code=-32602))

        with pytest.raises(RpcError) as excinfo:
            await future
        assert excinfo.value.code == -32602

    async def test_unknown_and_duplicate_responses_are_ignored(self, correlator):
        assert correlator.resolve(99, "late") is False

        future = correlator.track(1, 1.0)
        assert correlator.resolve(1, "first") is True
        assert correlator.resolve(1, "second") is False
        assert correlator.reject(1, RuntimeError("again")) is False
        assert await future == "first"

    async def test_out_of_order_responses_reach_their_callers(self, correlator):
        first = correlator.track(correlator.next_id(), 1.0)
        second = correlator.track(correlator.next_id(), 1.0)

        correlator.resolve(2, "two")
        correlator.resolve(1, "one")

        assert await asyncio.gather(first, second) == ["one", "two"]


class TestDeadlines:
    async def test_expired_request_fails_with_timeout(self, correlator):
        future = correlator.track(1, 0.05, method="tools/call")

        with pytest.raises(RequestTimeout) as excinfo:
            await future
        assert isinstance(excinfo.value, TimeoutError)
        assert "tools/call" in str(excinfo.value)
        assert correlator.outstanding == 0

    async def test_late_response_after_timeout_is_discarded(self, correlator):
        future = correlator.track(1, 0.01)
        with pytest.raises(RequestTimeout):
            await future

        assert correlator.resolve(1, "too late") is False

    async def test_cancelled_waiter_releases_slot(self, correlator):
        future = correlator.track(1, 5.0)
        future.cancel()
        await asyncio.sleep(0)

        assert correlator.outstanding == 0
        assert correlator.resolve(1, "ignored") is False


class TestRejectAll:
    async def test_reject_all_fails_everything_with_peer_closed(self, correlator):
        futures = [correlator.track(correlator.next_id(), 5.0) for _ in range(3)]

        assert correlator.reject_all() == 3
        results = await asyncio.gather(*futures, return_exceptions=True)
        assert all(isinstance(r, PeerClosed) for r in results)
        assert len(correlator) == 0

    async def test_reject_all_uses_custom_error(self, correlator):
        future = correlator.track(1, 5.0, method="initialize")
        correlator.reject_all(lambda pending: RuntimeError(f"gone: {pending.method}"))

        with pytest.raises(RuntimeError, match="gone: initialize"):
            await future


class TestCancel:
    async def test_cancel_releases_slot_immediately(self, correlator):
        future = correlator.track(1, 5.0, method="tools/call")

        assert correlator.cancel(1)
        assert correlator.outstanding == 0
        assert future.cancelled()
        assert not correlator.cancel(1)
        assert not correlator.resolve(1, {"late": True})

    def test_cancel_unknown_id(self, correlator):
        assert not correlator.cancel(99)
