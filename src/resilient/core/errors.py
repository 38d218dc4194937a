"""
Structured error type for resilient calls.

Provides a single tagged error type with rich metadata for retry
decisions, error categorization, reporting, and root cause analysis
through error chaining.

Instead of a deep class hierarchy (``ValidationError(Error)``,
``DatabaseError(Error)``, ...) every failure raised by this library is a
``StructuredError`` whose ``kind`` tag says what went wrong. Callers
dispatch on ``error.kind`` rather than on ``isinstance``.

Manifesto:
    - **One type, many kinds:** ``ErrorKind`` tags replace subclasses
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Immutable chains:** An error owns its cause chain, which never changes
    - **Serializable:** ``to_dict()`` walks the whole chain for structured logs

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       StructuredError                           │
        │  kind · message · attributes · timestamp · retryable · cause    │
        ├─────────────────────────────────────────────────────────────────┤
        │  VALIDATION     field                      never retryable      │
        │  AUTH           user_id, code              never retryable      │
        │  DATABASE       query, error_code          transient codes only │
        │  SERVICE        operation                  retryable            │
        │  API            endpoint, status_code      5xx / 429 only       │
        │  CIRCUIT_OPEN   breaker, retry_after       never retryable      │
        │  CANCELLED      -                          never retryable      │
        │  RETRY_EXHAUSTED attempts                  never retryable      │
        │  GENERIC        -                          retryable            │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Building the API → Service → Database chain:

    >>> db = database_error("Connection timeout",
    ...                     query="SELECT * FROM users WHERE id = 123",
    ...                     error_code="CONN_TIMEOUT")
    >>> db.retryable
    True
    >>> svc = service_error("Failed to fetch user data",
    ...                     operation="getUserById", cause=db)
    >>> api = api_error("Internal server error while processing request",
    ...                 endpoint="/api/users/123", status_code=500, cause=svc)
    >>> [kind for kind, _ in format_chain(api)]
    ['API', 'SERVICE', 'DATABASE']

    Serializing for logging:

    >>> d = api.to_dict()
    >>> d["cause"]["cause"]["error_code"]
    'CONN_TIMEOUT'

Guardrails:
    ❌ DON'T: Raise plain Exception for expected failure modes
    ✅ DO: Use the kind constructor (``validation_error`` etc.)

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, error-kind, retry-logic, error-chain,
    resilient-core, observability
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from resilient.core.timestamps import from_iso8601, to_iso8601, utc_now


class ErrorKind(str, Enum):
    """Tag identifying what kind of failure a StructuredError describes."""

    VALIDATION = "VALIDATION"          # Bad input
    AUTH = "AUTH"                      # Authentication/authorization
    DATABASE = "DATABASE"              # Query or connection failure
    SERVICE = "SERVICE"                # Business/service layer failure
    API = "API"                        # HTTP endpoint failure
    CIRCUIT_OPEN = "CIRCUIT_OPEN"      # Rejected by an open circuit breaker
    CANCELLED = "CANCELLED"            # Cancelled or deadline exceeded
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"  # All retry attempts failed
    GENERIC = "GENERIC"                # Anything else


# Database error codes that may succeed when retried
TRANSIENT_DATABASE_CODES: frozenset[str] = frozenset({"CONN_TIMEOUT", "DEADLOCK"})

# Keys owned by to_dict(); attributes cannot shadow them
_RESERVED_KEYS = ("kind", "message", "timestamp", "retryable", "cause")


def _as_status(value: Any) -> Any:
    """HTTP status as int when it looks numeric (clients often hand over "503")."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


def _default_retryable(kind: ErrorKind, attributes: Mapping[str, Any]) -> bool:
    match kind:
        case ErrorKind.DATABASE:
            return attributes.get("error_code") in TRANSIENT_DATABASE_CODES
        case ErrorKind.API:
            status = _as_status(attributes.get("status_code"))
            if not isinstance(status, int):
                return True
            return status == 429 or status >= 500
        case ErrorKind.SERVICE | ErrorKind.GENERIC:
            return True
        case (
            ErrorKind.VALIDATION
            | ErrorKind.AUTH
            | ErrorKind.CIRCUIT_OPEN
            | ErrorKind.CANCELLED
            | ErrorKind.RETRY_EXHAUSTED
        ):
            return False


class StructuredError(Exception):
    """
    The single error type raised by resilient-core.

    All fields are read-only once constructed: ``retryable`` in particular
    never changes, and the cause chain hanging off ``cause`` is owned by
    this error and never rewired.

    Attributes:
        kind: ErrorKind tag
        message: Human-readable description
        attributes: Read-only mapping of kind-specific attributes
        timestamp: UTC datetime the error was created
        retryable: Whether retrying the same operation could succeed
        cause: Wrapped error (StructuredError or any other exception)

    Examples:
        >>> err = StructuredError("Email is required", ErrorKind.VALIDATION,
        ...                       attributes={"field": "email"})
        >>> err.retryable
        False
        >>> err.attributes["field"]
        'email'
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind | str = ErrorKind.GENERIC,
        *,
        attributes: Mapping[str, Any] | None = None,
        retryable: bool | None = None,
        cause: BaseException | None = None,
        timestamp: datetime | None = None,
    ):
        super().__init__(message)
        kind = ErrorKind(kind)
        attrs = {k: v for k, v in (attributes or {}).items() if v is not None}
        self._message = message
        self._kind = kind
        self._attributes: Mapping[str, Any] = MappingProxyType(attrs)
        self._retryable = (
            bool(retryable) if retryable is not None else _default_retryable(kind, attrs)
        )
        self._cause = cause
        self._timestamp = timestamp or utc_now()

        # Keep tracebacks showing the chain
        if cause is not None:
            self.__cause__ = cause

    @property
    def message(self) -> str:
        return self._message

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def attributes(self) -> Mapping[str, Any]:
        return self._attributes

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    @property
    def timestamp(self) -> datetime:
        return self._timestamp

    def get(self, name: str, default: Any = None) -> Any:
        """Shortcut for ``attributes.get(name, default)``."""
        return self._attributes.get(name, default)

    def chain(self) -> CauseChain:
        """Causes from this error (outermost) down to the root (innermost)."""
        return CauseChain(self)

    def root_cause(self) -> BaseException:
        """The innermost error of the chain."""
        return self.chain().root()

    def to_dict(self) -> dict[str, Any]:
        """Convert error (and its whole cause chain) to a plain dictionary."""
        return error_to_dict(self)

    def __reduce__(self):
        return (
            _restore,
            (
                self._message,
                self._kind.value,
                dict(self._attributes),
                self._retryable,
                self._cause,
                to_iso8601(self._timestamp),
            ),
        )

    def __repr__(self) -> str:
        return f"StructuredError({self._message!r}, kind={self._kind.value})"


def _restore(message, kind, attributes, retryable, cause, timestamp):
    return StructuredError(
        message,
        kind,
        attributes=attributes,
        retryable=retryable,
        cause=cause,
        timestamp=from_iso8601(timestamp),
    )


# =============================================================================
# CAUSE CHAIN TRAVERSAL
# =============================================================================


def _cause_of(error: BaseException) -> BaseException | None:
    if isinstance(error, StructuredError):
        return error.cause
    return error.__cause__


class CauseChain:
    """
    Lazy, restartable view over an error's cause chain.

    Iterating yields the head error first, then each cause in turn,
    ending at the root. Every ``iter()`` starts again from the head.
    Chains that loop back on themselves are cut at the first repeat.

    Examples:
        >>> chain = iter_chain(api)
        >>> len(chain)
        3
        >>> [e.kind.value for e in chain]
        ['API', 'SERVICE', 'DATABASE']
    """

    def __init__(self, head: BaseException):
        self._head = head

    def __iter__(self) -> Iterator[BaseException]:
        seen: set[int] = set()
        current: BaseException | None = self._head
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            yield current
            current = _cause_of(current)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def root(self) -> BaseException:
        root = self._head
        for error in self:
            root = error
        return root

    def __repr__(self) -> str:
        return f"CauseChain({' -> '.join(kind_of(e).value for e in self)})"


def iter_chain(error: BaseException) -> CauseChain:
    """Cause chain of any exception, following ``__cause__`` for plain ones."""
    return CauseChain(error)


def kind_of(error: BaseException) -> ErrorKind:
    """Kind of any exception; plain exceptions are GENERIC."""
    if isinstance(error, StructuredError):
        return error.kind
    return ErrorKind.GENERIC


def message_of(error: BaseException) -> str:
    if isinstance(error, StructuredError):
        return error.message
    return str(error) or type(error).__name__


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable.

    Only an explicit ``retryable=False`` marks an error as final; foreign
    exceptions without the flag are treated as worth retrying.
    """
    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return retryable
    return True


# =============================================================================
# SERIALIZATION AND RENDERING
# =============================================================================


def _entry(error: BaseException) -> dict[str, Any]:
    if isinstance(error, StructuredError):
        entry: dict[str, Any] = {
            k: v for k, v in error.attributes.items() if k not in _RESERVED_KEYS
        }
        entry.update(
            kind=error.kind.value,
            message=error.message,
            timestamp=to_iso8601(error.timestamp),
            retryable=error.retryable,
        )
        return entry
    return {
        "kind": ErrorKind.GENERIC.value,
        "message": message_of(error),
        "timestamp": None,
        "retryable": is_retryable(error),
        "exception_type": type(error).__name__,
    }


def error_to_dict(error: BaseException) -> dict[str, Any]:
    """Serialize any exception and its cause chain.

    Each level carries kind, message, timestamp, retryable and its
    kind-specific attributes; the next level sits under ``"cause"``.
    Non-StructuredError levels serialize as GENERIC with ``timestamp``
    None and the Python class under ``exception_type``.
    """
    entries = [_entry(e) for e in iter_chain(error)]
    # Nest innermost-first so deep chains never recurse
    for outer, inner in zip(reversed(entries[:-1]), reversed(entries[1:])):
        outer["cause"] = inner
    return entries[0]


def format_chain(error: BaseException) -> list[tuple[str, str]]:
    """Flat (kind, message) pairs, outermost first."""
    return [(kind_of(e).value, message_of(e)) for e in iter_chain(error)]


def render_chain(error: BaseException, indent: str = "  ") -> str:
    """Render the chain as indented text with attributes.

    Example output::

        [API] Internal server error while processing request
          endpoint: /api/users/123
          status_code: 500
          ↓ Caused by:
          [SERVICE] Failed to fetch user data
            operation: getUserById
    """
    lines: list[str] = []
    for depth, e in enumerate(iter_chain(error)):
        pad = indent * depth
        if depth:
            lines.append(f"{pad}↓ Caused by:")
        lines.append(f"{pad}[{kind_of(e).value}] {message_of(e)}")
        if isinstance(e, StructuredError):
            for key, value in e.attributes.items():
                lines.append(f"{pad}{indent}{key}: {value}")
    return "\n".join(lines)


# =============================================================================
# KIND CONSTRUCTORS
# =============================================================================

# Every constructor accepts ``timestamp=`` so callers that own a Clock
# (e.g. a circuit breaker on a ManualClock) stamp errors with their time.


def validation_error(
    message: str,
    field: str | None = None,
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    """Bad input. Never retryable - data must be fixed."""
    return StructuredError(
        message,
        ErrorKind.VALIDATION,
        attributes={"field": field},
        cause=cause,
        timestamp=timestamp,
    )


def auth_error(
    message: str,
    user_id: str | None = None,
    code: int = 401,
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    """Authentication or authorization failure."""
    return StructuredError(
        message,
        ErrorKind.AUTH,
        attributes={"user_id": user_id, "code": code},
        cause=cause,
        timestamp=timestamp,
    )


def database_error(
    message: str,
    query: str | None = None,
    error_code: str | None = None,
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    """Database failure; retryable iff ``error_code`` is transient."""
    return StructuredError(
        message,
        ErrorKind.DATABASE,
        attributes={"query": query, "error_code": error_code},
        cause=cause,
        timestamp=timestamp,
    )


def service_error(
    message: str,
    operation: str | None = None,
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    return StructuredError(
        message,
        ErrorKind.SERVICE,
        attributes={"operation": operation},
        cause=cause,
        timestamp=timestamp,
    )


def api_error(
    message: str,
    endpoint: str | None = None,
    status_code: int | str | None = None,
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    """HTTP endpoint failure; numeric string status codes are stored as int."""
    return StructuredError(
        message,
        ErrorKind.API,
        attributes={"endpoint": endpoint, "status_code": _as_status(status_code)},
        cause=cause,
        timestamp=timestamp,
    )


def circuit_open_error(
    name: str,
    retry_after: float | None = None,
    *,
    timestamp: datetime | None = None,
) -> StructuredError:
    """Rejection by an open circuit. Has no cause and is never retryable."""
    message = f"Circuit '{name}' is open, rejecting request"
    if retry_after is not None:
        message += f" (retry after {retry_after:.1f}s)"
    return StructuredError(
        message,
        ErrorKind.CIRCUIT_OPEN,
        attributes={"breaker": name, "retry_after": retry_after},
        retryable=False,
        timestamp=timestamp,
    )


def cancelled_error(
    message: str = "Operation cancelled",
    *,
    cause: BaseException | None = None,
    timestamp: datetime | None = None,
) -> StructuredError:
    return StructuredError(
        message, ErrorKind.CANCELLED, retryable=False, cause=cause, timestamp=timestamp
    )


def retry_exhausted_error(
    attempts: int,
    cause: BaseException,
    *,
    timestamp: datetime | None = None,
) -> StructuredError:
    return StructuredError(
        f"Failed after {attempts} attempts",
        ErrorKind.RETRY_EXHAUSTED,
        attributes={"attempts": attempts},
        retryable=False,
        cause=cause,
        timestamp=timestamp,
    )


def wrap_error(
    error: BaseException,
    message: str,
    kind: ErrorKind | str = ErrorKind.GENERIC,
    **attributes: Any,
) -> StructuredError:
    """Wrap ``error`` with higher-level context.

    ``code`` and ``status_code`` of the wrapped error carry over to the
    wrapper unless given explicitly.
    """
    inherited: dict[str, Any] = {}
    for key in ("code", "status_code"):
        if isinstance(error, StructuredError):
            value = error.get(key)
        else:
            value = getattr(error, key, None)
        if value is not None:
            inherited[key] = value
    inherited.update(attributes)
    return StructuredError(message, kind, attributes=inherited, cause=error)


__all__ = [
    "ErrorKind",
    "TRANSIENT_DATABASE_CODES",
    "StructuredError",
    "CauseChain",
    "iter_chain",
    "kind_of",
    "message_of",
    "is_retryable",
    "error_to_dict",
    "format_chain",
    "render_chain",
    "validation_error",
    "auth_error",
    "database_error",
    "service_error",
    "api_error",
    "circuit_open_error",
    "cancelled_error",
    "retry_exhausted_error",
    "wrap_error",
]
