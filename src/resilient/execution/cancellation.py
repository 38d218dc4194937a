"""Cancellation tokens and deadlines for protected calls.

A caller hands a ``CancellationToken`` to ``retry_with_backoff``,
``CircuitBreaker.execute`` or ``ResilientCall.execute`` to bound the whole
call. When the token fires (explicit ``cancel()`` or its deadline passes)
the in-flight wait or operation is abandoned and a CANCELLED
``StructuredError`` is raised.

Examples:
    Deadline for an async call:

    >>> token = CancellationToken(timeout=5.0)
    >>> result = await retry_with_backoff(fetch, policy, token=token)

    Cancel from another thread or task:

    >>> token = CancellationToken()
    >>> threading.Timer(1.0, token.cancel).start()
    >>> retry_with_backoff_sync(fetch, policy, token=token)

Guardrails:
    - Tokens are one-shot: once cancelled they stay cancelled
    - ``cancel()`` is thread-safe and may be called from any thread or loop
    - A breaker never sees an abandoned operation as success or failure

Tags:
    cancellation, deadline, timeout, resilience, execution
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from resilient.core.errors import cancelled_error, validation_error

T = TypeVar("T")


def _set_done(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


class CancellationToken:
    """One-shot cancellation signal with an optional deadline.

    Attributes:
        timeout: Seconds from creation until the token fires on its own
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if timeout is not None and timeout < 0:
            raise validation_error(
                f"timeout must be >= 0, got {timeout}", field="timeout"
            )
        self.timeout = timeout
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel(f"Deadline of {self.timeout}s exceeded")
            return True
        return False

    def cancel(self, reason: str = "Operation cancelled") -> None:
        """Fire the token. Later calls are ignored."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, fut in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_set_done, fut)

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise cancelled_error(self._reason or "Operation cancelled")

    def _bounded(self, seconds: float | None) -> float | None:
        remaining = self.remaining()
        if remaining is None:
            return seconds
        if seconds is None:
            return remaining
        return min(seconds, remaining)

    # ── sync ─────────────────────────────────────────────────────────

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; True if the token fired meanwhile."""
        if self.cancelled:
            return True
        limit = self._bounded(seconds)
        if self._event.wait(max(0.0, limit)):
            return True
        return self.cancelled

    # ── async ────────────────────────────────────────────────────────

    def _future(self) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        with self._lock:
            if self._event.is_set():
                fut.set_result(None)
            else:
                self._waiters.append((loop, fut))
        return fut

    def _discard(self, fut: asyncio.Future) -> None:
        with self._lock:
            self._waiters = [(lp, f) for lp, f in self._waiters if f is not fut]
        if not fut.done():
            fut.cancel()

    async def wait_async(self, seconds: float) -> bool:
        """Suspend up to ``seconds``; True if the token fired meanwhile."""
        if self.cancelled:
            return True
        fut = self._future()
        try:
            done, _ = await asyncio.wait({fut}, timeout=max(0.0, self._bounded(seconds)))
        finally:
            self._discard(fut)
        return bool(done) or self.cancelled

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            StructuredError: CANCELLED, after the awaitable was cancelled
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise cancelled_error(self._reason or "Operation cancelled")
        task = asyncio.ensure_future(awaitable)
        fut = self._future()
        try:
            done, _ = await asyncio.wait(
                {task, fut},
                timeout=self._bounded(None),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._discard(fut)

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if not self._event.is_set():
            self.cancel(f"Deadline of {self.timeout}s exceeded")
        raise cancelled_error(self._reason or "Operation cancelled")

    def __repr__(self) -> str:
        state = "cancelled" if self._event.is_set() else "active"
        return f"CancellationToken({state}, timeout={self.timeout})"


async def maybe_guard(token: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """``token.guard(awaitable)`` when a token is given, plain await otherwise."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)


async def invoke(operation: Callable[[], Any]) -> Any:
    """Call a zero-argument operation, awaiting its result when awaitable."""
    result = operation()
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = ["CancellationToken", "maybe_guard", "invoke"]
