"""Tests for cancel tokens and the request cancellation scope."""

import asyncio
from unittest.mock import Mock

import pytest

from regis_client.clients.cancellation import CancellationScope, CancelToken
from regis_client.exceptions import ErrorKind, RequestCancelled, RequestTimeout


class TestCancelToken:
    """Test CancelToken behavior."""

    def test_cancel_runs_callbacks_once(self):
        """Test that repeated cancel() calls run callbacks once."""
        token = CancelToken()
        callback = Mock()
        token.add_callback(callback)

        token.cancel()
        token.cancel()

        assert token.cancelled
        callback.assert_called_once_with()

    def test_callback_added_after_cancel_runs_immediately(self):
        """Test late registration on a cancelled token."""
        token = CancelToken()
        token.cancel()
        callback = Mock()
        token.add_callback(callback)
        callback.assert_called_once_with()

    def test_removed_callback_is_not_called(self):
        """Test remove_callback."""
        token = CancelToken()
        callback = Mock()
        token.add_callback(callback)
        token.remove_callback(callback)
        token.cancel()
        callback.assert_not_called()


class TestCancellationScope:
    """Test CancellationScope behavior."""

    @pytest.mark.asyncio
    async def test_returns_result_and_clears_timer(self):
        """Test that a completed call leaves no pending timer."""
        token = CancelToken()
        with CancellationScope(5.0, token) as scope:
            result = await scope.run(asyncio.sleep(0, result="ok"))
            assert scope._timer is not None

        assert result == "ok"
        assert scope._timer is None
        assert token._callbacks == []

    @pytest.mark.asyncio
    async def test_timer_cleared_when_call_raises(self):
        """Test cleanup on the error path."""

        async def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            with CancellationScope(5.0) as scope:
                await scope.run(fail())
        assert scope._timer is None

    @pytest.mark.asyncio
    async def test_timeout_raises_request_timeout(self):
        """Test that the timer firing aborts the call."""
        inner_cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        with pytest.raises(RequestTimeout) as exc_info:
            with CancellationScope(0.01) as scope:
                await scope.run(slow())

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert inner_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_external_cancel_raises_request_cancelled(self):
        """Test that cancelling the token aborts the call."""
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(RequestCancelled) as exc_info:
            with CancellationScope(5.0, token) as scope:
                await scope.run(asyncio.sleep(30))

        assert exc_info.value.kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_already_cancelled_token(self):
        """Test that a pre-cancelled token aborts before the call runs."""
        token = CancelToken()
        token.cancel()
        started = Mock()

        async def work():
            started()
            return "never"

        with pytest.raises(RequestCancelled):
            with CancellationScope(5.0, token) as scope:
                await scope.run(work())
        started.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_requires_open(self):
        """Test that run() outside the context manager is rejected."""
        scope = CancellationScope(1.0)
        coro = asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            await scope.run(coro)
        coro.close()

    @pytest.mark.asyncio
    async def test_outer_cancellation_cancels_inner_task(self):
        """Test that cancelling the awaiting task propagates inward."""
        inner_cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        async def call():
            with CancellationScope(5.0) as scope:
                await scope.run(slow())

        outer = asyncio.ensure_future(call())
        await asyncio.sleep(0.01)
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.wait_for(inner_cancelled.wait(), timeout=1.0)
