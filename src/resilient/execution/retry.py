"""Retry with exponential backoff.

Attempts a fallible operation up to ``max_attempts`` times, waiting
``base_delay * multiplier ** (attempt - 1)`` seconds after each failed
attempt (attempt is 1-indexed). An error that says it is not retryable
ends the loop at once; running out of attempts raises a RETRY_EXHAUSTED
error whose cause is the last failure.

Example:
    >>> from resilient.execution.retry import RetryPolicy, retry_with_backoff
    >>>
    >>> policy = RetryPolicy(max_attempts=3, base_delay=0.1, multiplier=2)
    >>> [policy.delay_for(n) for n in (1, 2)]
    [0.1, 0.2]
    >>> result = await retry_with_backoff(fetch_quote, policy)
    >>> result = retry_with_backoff_sync(read_config, policy)

The async variant waits with ``asyncio.sleep``, so only the calling task
is suspended between attempts.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from resilient.core.errors import (
    ErrorKind,
    cancelled_error,
    is_retryable,
    kind_of,
    message_of,
    retry_exhausted_error,
    validation_error,
)
from resilient.core.events import EventSink, emit_event
from resilient.core.settings import ResilienceSettings, get_settings
from resilient.execution.cancellation import CancellationToken, invoke, maybe_guard

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    Attributes:
        max_attempts: Total attempts including the first (>= 1)
        base_delay: Seconds to wait after the first failure (>= 0)
        multiplier: Growth factor between waits (>= 1)
        max_delay: Optional cap on a single wait
        jitter: Fraction of the delay to randomize by (0 disables)
        retry_if: Extra predicate; returning False makes an error final
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None
    jitter: float = 0.0
    retry_if: Callable[[BaseException], bool] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise validation_error(
                f"max_attempts must be >= 1, got {self.max_attempts}", field="max_attempts"
            )
        if self.base_delay < 0:
            raise validation_error(
                f"base_delay must be >= 0, got {self.base_delay}", field="base_delay"
            )
        if self.multiplier < 1:
            raise validation_error(
                f"multiplier must be >= 1, got {self.multiplier}", field="multiplier"
            )
        if self.max_delay is not None and self.max_delay < 0:
            raise validation_error(
                f"max_delay must be >= 0, got {self.max_delay}", field="max_delay"
            )
        if not 0 <= self.jitter <= 1:
            raise validation_error(
                f"jitter must be within [0, 1], got {self.jitter}", field="jitter"
            )

    @classmethod
    def from_settings(
        cls, settings: ResilienceSettings | None = None, **overrides: Any
    ) -> RetryPolicy:
        settings = settings or get_settings()
        overrides.setdefault("max_attempts", settings.retry_max_attempts)
        overrides.setdefault("base_delay", settings.retry_base_delay)
        overrides.setdefault("multiplier", settings.retry_multiplier)
        return cls(**overrides)

    def delay_for(self, attempt: int) -> float:
        """Wait after the 1-indexed ``attempt`` failed."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, error: BaseException) -> bool:
        """False when the error is explicitly final or ``retry_if`` rejects it."""
        if not is_retryable(error):
            return False
        if self.retry_if is not None:
            return bool(self.retry_if(error))
        return True


def _next_delay(
    policy: RetryPolicy,
    attempt: int,
    error: Exception,
    sink: EventSink | None,
    on_retry: OnRetry | None,
) -> float | None:
    """Delay before the next attempt, None when attempts are used up.

    Re-raises ``error`` when it must not be retried.
    """
    if not policy.should_retry(error):
        raise error
    if attempt >= policy.max_attempts:
        emit_event(
            sink,
            "retry.exhausted",
            f"Failed after {attempt} attempts",
            attempts=attempt,
            error_kind=kind_of(error).value,
            error=message_of(error),
        )
        return None

    delay = policy.delay_for(attempt)
    emit_event(
        sink,
        "retry.attempt_failed",
        f"Attempt {attempt}/{policy.max_attempts} failed, retrying in {delay:.2f}s",
        attempt=attempt,
        max_attempts=policy.max_attempts,
        delay=delay,
        error_kind=kind_of(error).value,
        error=message_of(error),
    )
    if on_retry is not None:
        on_retry(attempt, error, delay)
    return delay


def _abandoned(token: CancellationToken | None, error: Exception) -> bool:
    return token is not None and token.cancelled and kind_of(error) is ErrorKind.CANCELLED


async def retry_with_backoff(
    operation: Callable[[], Any],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
    token: CancellationToken | None = None,
    on_retry: OnRetry | None = None,
    sink: EventSink | None = None,
) -> Any:
    """Run a sync or async operation with retries.

    Args:
        operation: Zero-argument callable, may return an awaitable
        policy: Retry configuration (default: ``RetryPolicy()``)
        sleep: Coroutine function used for the inter-attempt wait
        token: Cancels the in-flight attempt or wait when fired
        on_retry: Called before each wait with (attempt, error, delay)
        sink: Receiver of retry events (structlog when None)

    Raises:
        StructuredError: RETRY_EXHAUSTED (cause = last failure) or CANCELLED
        Exception: The first non-retryable error, unchanged
    """
    policy = policy or RetryPolicy()
    sleep = sleep or asyncio.sleep

    for attempt in range(1, policy.max_attempts + 1):
        if token is not None:
            token.raise_if_cancelled()
        try:
            return await maybe_guard(token, invoke(operation))
        except Exception as exc:
            if _abandoned(token, exc):
                raise
            delay = _next_delay(policy, attempt, exc, sink, on_retry)
            if delay is None:
                raise retry_exhausted_error(attempt, exc) from exc
        await maybe_guard(token, sleep(delay))

    raise AssertionError("unreachable")  # pragma: no cover


def retry_with_backoff_sync(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Any] | None = None,
    token: CancellationToken | None = None,
    on_retry: OnRetry | None = None,
    sink: EventSink | None = None,
) -> T:
    """Blocking counterpart of :func:`retry_with_backoff`.

    Without a custom ``sleep`` and with a ``token``, the wait wakes up as
    soon as the token fires.
    """
    policy = policy or RetryPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        if token is not None:
            token.raise_if_cancelled()
        try:
            return operation()
        except Exception as exc:
            delay = _next_delay(policy, attempt, exc, sink, on_retry)
            if delay is None:
                raise retry_exhausted_error(attempt, exc) from exc

        if sleep is None and token is not None:
            if token.wait(delay):
                raise cancelled_error(token.reason or "Operation cancelled")
        else:
            (sleep or time.sleep)(delay)

    raise AssertionError("unreachable")  # pragma: no cover


def with_retry(
    policy: RetryPolicy | None = None,
    *,
    on_retry: OnRetry | None = None,
    sink: EventSink | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator factory to add retry logic to a function.

    Example:
        >>> @with_retry(RetryPolicy(max_attempts=3, base_delay=0.5))
        ... async def fetch_rates():
        ...     return await client.get("/rates")
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                return await retry_with_backoff(
                    functools.partial(func, *args, **kwargs),
                    policy,
                    on_retry=on_retry,
                    sink=sink,
                )

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            return retry_with_backoff_sync(
                functools.partial(func, *args, **kwargs),
                policy,
                on_retry=on_retry,
                sink=sink,
            )

        return sync_wrapper

    return decorator


__all__ = [
    "RetryPolicy",
    "retry_with_backoff",
    "retry_with_backoff_sync",
    "with_retry",
]
