"""Fallback combinator: use an alternate path when the primary fails.

``with_fallback(primary, fallback)`` returns the primary's result, or,
if the primary raises anything, the fallback's result. The primary's
error is not propagated; it is reported as a ``fallback.primary_failed``
event (with its serialized cause chain) so it stays visible. A failing
fallback propagates to the caller.

This is the one place in the library that deliberately suppresses an
error path.

Example:
    >>> user = await with_fallback(
    ...     lambda: api.get_user(123),
    ...     lambda: cache.get_user(123),
    ... )
    >>> rates = with_fallback_sync(fetch_rates, fallback_to({}))
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from resilient.core.errors import error_to_dict, kind_of, message_of
from resilient.core.events import EventSink, emit_event
from resilient.execution.cancellation import invoke

T = TypeVar("T")


def _report(error: Exception, sink: EventSink | None, name: str | None) -> None:
    emit_event(
        sink,
        "fallback.primary_failed",
        f"Primary failed, using fallback: {message_of(error)}",
        operation=name,
        error_kind=kind_of(error).value,
        error=error_to_dict(error),
    )


async def with_fallback(
    primary: Callable[[], Any],
    fallback: Callable[[], Any],
    *,
    sink: EventSink | None = None,
    name: str | None = None,
    propagate: Callable[[Exception], bool] | None = None,
) -> Any:
    """Run ``primary``; on any failure return ``fallback()`` instead.

    Both callables may be sync or async. Errors for which ``propagate``
    returns True are re-raised instead of falling back.
    """
    try:
        return await invoke(primary)
    except Exception as exc:
        if propagate is not None and propagate(exc):
            raise
        _report(exc, sink, name)
    return await invoke(fallback)


def with_fallback_sync(
    primary: Callable[[], T],
    fallback: Callable[[], T],
    *,
    sink: EventSink | None = None,
    name: str | None = None,
    propagate: Callable[[Exception], bool] | None = None,
) -> T:
    """Blocking counterpart of :func:`with_fallback`."""
    try:
        return primary()
    except Exception as exc:
        if propagate is not None and propagate(exc):
            raise
        _report(exc, sink, name)
    return fallback()


def fallback_to(value: T) -> Callable[[], T]:
    """Fallback that always returns ``value``."""

    def _constant() -> T:
        return value

    return _constant


__all__ = ["with_fallback", "with_fallback_sync", "fallback_to"]
