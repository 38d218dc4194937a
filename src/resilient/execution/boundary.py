"""Top-level error boundaries.

Instead of registering global uncaught-exception hooks, the host calls
into an explicit boundary at its outermost layer:

- :func:`error_response` turns any error into an HTTP-style response by
  dispatching on its kind.
- :class:`ErrorBoundary` is a context manager that logs an escaping
  error with its full cause chain and records it.
- :func:`run_guarded` / :func:`run_guarded_async` wrap a program's entry
  point and return a process exit code.
- :func:`process_items` is the log-and-continue pattern for batches.
- :func:`require` is the fail-fast pattern for startup configuration.

Example:
    >>> def main() -> None:
    ...     require(config, "api_key", "database")
    ...     serve()
    >>>
    >>> raise SystemExit(run_guarded(main))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from resilient.core.errors import (
    ErrorKind,
    StructuredError,
    error_to_dict,
    format_chain,
    kind_of,
    message_of,
    render_chain,
    validation_error,
)
from resilient.core.events import EventSink, emit_event
from resilient.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ErrorResponse:
    """What a caller-facing layer should answer for an error."""

    status: int
    message: str
    kind: ErrorKind
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "kind": self.kind.value,
            **self.details,
        }


def error_response(error: BaseException) -> ErrorResponse:
    """Map an error to a response, dispatching on its kind."""
    kind = kind_of(error)
    attrs: Mapping[str, Any] = error.attributes if isinstance(error, StructuredError) else {}
    message = message_of(error)

    match kind:
        case ErrorKind.VALIDATION:
            details = {"field": attrs["field"]} if "field" in attrs else {}
            return ErrorResponse(400, message, kind, details)
        case ErrorKind.AUTH:
            return ErrorResponse(attrs.get("code", 401), message, kind)
        case ErrorKind.DATABASE:
            details = {"retry_after": 5} if getattr(error, "retryable", False) else {}
            return ErrorResponse(503, "Service temporarily unavailable", kind, details)
        case ErrorKind.CIRCUIT_OPEN:
            details = {}
            if attrs.get("retry_after") is not None:
                details["retry_after"] = attrs["retry_after"]
            return ErrorResponse(503, "Service temporarily unavailable", kind, details)
        case ErrorKind.CANCELLED:
            return ErrorResponse(499, message, kind)
        case ErrorKind.API:
            return ErrorResponse(attrs.get("status_code", 500), message, kind)
        case ErrorKind.SERVICE | ErrorKind.RETRY_EXHAUSTED | ErrorKind.GENERIC:
            return ErrorResponse(500, "Internal server error", kind)


def _record(error: BaseException, sink: EventSink | None, where: str) -> None:
    logger.error(
        "unhandled_error",
        boundary=where,
        kind=kind_of(error).value,
        chain=format_chain(error),
        rendered=render_chain(error),
    )
    emit_event(
        sink,
        "boundary.error",
        message_of(error),
        boundary=where,
        error=error_to_dict(error),
    )


class ErrorBoundary:
    """Outermost error sink for a block of code.

    Any ``Exception`` escaping the block is logged with its cause chain
    and recorded; ``error`` and ``response`` are set. Unless ``reraise``
    is True the exception is then suppressed. ``BaseException``s such as
    ``KeyboardInterrupt`` always pass through.

    Example:
        >>> with ErrorBoundary(name="request") as boundary:
        ...     handle_request()
        >>> if boundary.response:
        ...     send(boundary.response.to_dict())
    """

    def __init__(
        self,
        *,
        name: str = "boundary",
        sink: EventSink | None = None,
        reraise: bool = False,
    ):
        self.name = name
        self.sink = sink
        self.reraise = reraise
        self.error: Exception | None = None
        self.response: ErrorResponse | None = None

    def __enter__(self) -> ErrorBoundary:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None or not isinstance(exc, Exception):
            return False
        self.error = exc
        self.response = error_response(exc)
        _record(exc, self.sink, self.name)
        return not self.reraise

    async def __aenter__(self) -> ErrorBoundary:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)


def run_guarded(
    main: Callable[[], Any],
    *,
    sink: EventSink | None = None,
    exit_code: int = 1,
) -> int:
    """Run a program entry point; 0 on success, ``exit_code`` on failure."""
    with ErrorBoundary(name="main", sink=sink) as boundary:
        main()
    return 0 if boundary.error is None else exit_code


async def run_guarded_async(
    main: Callable[[], Awaitable[Any]],
    *,
    sink: EventSink | None = None,
    exit_code: int = 1,
) -> int:
    """Async counterpart of :func:`run_guarded`."""
    async with ErrorBoundary(name="main", sink=sink) as boundary:
        await main()
    return 0 if boundary.error is None else exit_code


# =============================================================================
# LOG AND CONTINUE / FAIL FAST
# =============================================================================


@dataclass
class ItemError(Generic[T]):
    """A batch item that failed."""

    index: int
    item: T
    error: Exception


@dataclass
class BatchResult(Generic[T, R]):
    """Outcome of :func:`process_items`."""

    results: list[R] = field(default_factory=list)
    errors: list[ItemError[T]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def process_items(
    items: Iterable[T],
    handler: Callable[[T], R],
    *,
    sink: EventSink | None = None,
) -> BatchResult[T, R]:
    """Apply ``handler`` to every item; failures are logged, not raised."""
    batch: BatchResult[T, R] = BatchResult()
    for index, item in enumerate(items):
        try:
            batch.results.append(handler(item))
        except Exception as exc:
            logger.warning(
                "item_failed",
                index=index,
                kind=kind_of(exc).value,
                error=message_of(exc),
            )
            emit_event(
                sink,
                "batch.item_failed",
                message_of(exc),
                index=index,
                error=error_to_dict(exc),
            )
            batch.errors.append(ItemError(index, item, exc))
    return batch


def require(config: Mapping[str, Any], *keys: str) -> None:
    """Fail fast when a required configuration key is missing or empty.

    Raises:
        StructuredError: VALIDATION naming the first missing key
    """
    for key in keys:
        if config.get(key) in (None, ""):
            raise validation_error(f"{key} is required", field=key)


__all__ = [
    "ErrorResponse",
    "error_response",
    "ErrorBoundary",
    "run_guarded",
    "run_guarded_async",
    "ItemError",
    "BatchResult",
    "process_items",
    "require",
]
