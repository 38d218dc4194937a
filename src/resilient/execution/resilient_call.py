"""Resilient call: retry, circuit breaker and fallback composed.

Layering (outermost first)::

    fallback            catches whatever escapes, returns the alternate result
      └─ retry          re-attempts retryable failures with backoff
           └─ breaker   counts each single attempt, fails fast when open
                └─ operation

The breaker sits inside the retry loop so each attempt is one breaker
execution and its state transitions happen around exactly one operation
call. A CIRCUIT_OPEN rejection is not retryable, so an open circuit ends
the retry loop immediately and goes straight to the fallback.

Example:
    >>> breaker = CircuitBreaker("quotes", failure_threshold=3, open_duration=10)
    >>> quotes = ResilientCall(
    ...     breaker=breaker,
    ...     policy=RetryPolicy(max_attempts=3, base_delay=0.2),
    ...     fallback=lambda: cache.last_quotes(),
    ...     name="quotes",
    ... )
    >>> data = await quotes.execute(client.fetch_quotes)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from resilient.core.errors import ErrorKind, kind_of
from resilient.core.events import EventSink
from resilient.execution.cancellation import CancellationToken, invoke
from resilient.execution.circuit_breaker import CircuitBreaker
from resilient.execution.fallback import with_fallback, with_fallback_sync
from resilient.execution.retry import RetryPolicy, retry_with_backoff, retry_with_backoff_sync


@dataclass
class ResilientCall:
    """A protected call site.

    Every layer is optional; with none configured ``execute`` just runs
    the operation.

    Attributes:
        breaker: Breaker for the protected resource (shared by its callers)
        policy: Retry policy, None for a single attempt
        fallback: Alternate result provider, None to propagate failures
        sink: Receiver of retry and fallback events
        sleep: Async wait used between attempts (``asyncio.sleep`` when None)
        name: Label used in fallback events
    """

    breaker: CircuitBreaker | None = None
    policy: RetryPolicy | None = None
    fallback: Callable[[], Any] | None = None
    sink: EventSink | None = None
    sleep: Callable[[float], Awaitable[Any]] | None = None
    name: str | None = None

    async def execute(
        self,
        operation: Callable[[], Any],
        token: CancellationToken | None = None,
    ) -> Any:
        """Run ``operation`` through fallback, retry and breaker.

        A CANCELLED error caused by ``token`` bypasses the fallback.
        """
        if token is not None:
            token.raise_if_cancelled()

        # The token guards the outermost layer only
        breaker_token = token if self.policy is None else None

        async def attempt() -> Any:
            if self.breaker is None:
                if breaker_token is not None:
                    return await breaker_token.guard(invoke(operation))
                return await invoke(operation)
            return await self.breaker.execute(operation, breaker_token)

        async def protected() -> Any:
            if self.policy is None:
                return await attempt()
            return await retry_with_backoff(
                attempt, self.policy, sleep=self.sleep, token=token, sink=self.sink
            )

        if self.fallback is None:
            return await protected()
        return await with_fallback(
            protected,
            self.fallback,
            sink=self.sink,
            name=self.name,
            propagate=lambda exc: _cancelled_by(token, exc),
        )

    def call(
        self,
        operation: Callable[[], Any],
        token: CancellationToken | None = None,
    ) -> Any:
        """Blocking counterpart of :meth:`execute` for sync operations."""
        if token is not None:
            token.raise_if_cancelled()

        def attempt() -> Any:
            if self.breaker is None:
                return operation()
            return self.breaker.call(operation)

        def protected() -> Any:
            if self.policy is None:
                return attempt()
            return retry_with_backoff_sync(attempt, self.policy, token=token, sink=self.sink)

        if self.fallback is None:
            return protected()
        return with_fallback_sync(
            protected,
            self.fallback,
            sink=self.sink,
            name=self.name,
            propagate=lambda exc: _cancelled_by(token, exc),
        )


def _cancelled_by(token: CancellationToken | None, error: Exception) -> bool:
    return token is not None and token.cancelled and kind_of(error) is ErrorKind.CANCELLED


__all__ = ["ResilientCall"]
