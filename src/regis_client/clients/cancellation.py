"""Cancellation tokens and timeout scopes for backend requests."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from regis_client.exceptions import RequestCancelled, RequestError, RequestTimeout
from regis_client.utils.logger import logger

T = TypeVar("T")


class CancelToken:
    """
    Caller-owned cancellation signal.

    Cancelling is idempotent; callbacks registered after cancellation run
    immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)


class CancellationScope:
    """
    Merges an optional external CancelToken with an internal timeout.

    Use as a context manager so the timer is cancelled and the token
    callback detached on every exit path:

        with CancellationScope(120.0, token) as scope:
            result = await scope.run(do_request())
    """

    def __init__(self, timeout: float, cancel_token: Optional[CancelToken] = None):
        self.timeout = timeout
        self.cancel_token = cancel_token
        self._signal: Optional[asyncio.Event] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def __enter__(self) -> "CancellationScope":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        loop = asyncio.get_running_loop()
        self._signal = asyncio.Event()
        self._timer = loop.call_later(self.timeout, self._on_timeout)
        if self.cancel_token is not None:
            self.cancel_token.add_callback(self._on_cancel)

    def close(self) -> None:
        """Cancel the pending timer and detach from the external token."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.cancel_token is not None:
            self.cancel_token.remove_callback(self._on_cancel)

    @property
    def fired(self) -> bool:
        return self._signal is not None and self._signal.is_set()

    def _on_timeout(self) -> None:
        self._timer = None
        logger.debug(f"Request budget of {self.timeout}s elapsed")
        if self._signal is not None:
            self._signal.set()

    def _on_cancel(self) -> None:
        if self._signal is not None:
            self._signal.set()

    def error(self) -> RequestError:
        """Classify why the signal fired."""
        if self.cancel_token is not None and self.cancel_token.cancelled:
            return RequestCancelled("Request cancelled")
        return RequestTimeout(f"Request exceeded {self.timeout}s")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the signal fires first.

        When the signal wins the inner task is cancelled and awaited, then
        RequestCancelled or RequestTimeout is raised.
        """
        if self._signal is None:
            raise RuntimeError("CancellationScope.run() called before open()")
        task: "asyncio.Future[Any]" = asyncio.ensure_future(awaitable)
        if self.fired:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise self.error()

        waiter = asyncio.ensure_future(self._signal.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self.error()
