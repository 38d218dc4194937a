"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a downstream service
is experiencing issues.

States:
    CLOSED: Normal operation, calls pass through, failures are counted
    OPEN: Failing fast, calls rejected without invoking the operation
    HALF_OPEN: Open duration elapsed, a single probe call is let through

State machine::

    ┌────────┐  failures >= threshold  ┌────────┐
    │ CLOSED │────────────────────────▶│  OPEN  │◀──────┐
    │        │◀───────┐                └───┬────┘       │
    └────────┘        │                    │ now >=     │ probe
                      │ probe              │ open_until │ fails
                      │ succeeds           ▼            │
                      │               ┌───────────┐     │
                      └───────────────│ HALF_OPEN │─────┘
                                      └───────────┘

Example:
    >>> from resilient.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker("payments", failure_threshold=5, open_duration=30.0)
    >>> result = breaker.call(charge_card)            # sync
    >>> result = await breaker.execute(fetch_invoice)  # async or sync callable

One breaker guards one resource. Create it where the protected calls are
issued and pass it to whoever needs it; there is no process-wide default.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

from resilient.core.errors import ErrorKind, circuit_open_error, kind_of, validation_error
from resilient.core.events import EventSink, emit_event
from resilient.core.settings import ResilienceSettings, get_settings
from resilient.core.timestamps import Clock, SystemClock, to_iso8601
from resilient.execution.cancellation import CancellationToken, invoke, maybe_guard

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding one protected resource.

    All state (state, failure count, open-until) is read and written
    under one lock that is never held while the operation runs, so
    concurrent callers never observe a half-applied transition.

    Attributes:
        name: Identifier for this circuit
        failure_threshold: Failures (counted since the last success) that open the circuit
        open_duration: Seconds to stay open before letting a probe through
        clock: Time source for open-until comparisons
        sink: Receiver of state-change and rejection events (structlog when None)
    """

    name: str = "default"
    failure_threshold: int = 5
    open_duration: float = 30.0
    clock: Clock = field(default_factory=SystemClock, repr=False)
    sink: EventSink | None = field(default=None, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _open_until: datetime | None = field(default=None, init=False)
    _probe_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False, repr=False)
    _pending: list[tuple[str, str, dict[str, Any]]] = field(
        default_factory=list, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise validation_error(
                f"failure_threshold must be >= 1, got {self.failure_threshold}",
                field="failure_threshold",
            )
        if self.open_duration < 0:
            raise validation_error(
                f"open_duration must be >= 0, got {self.open_duration}",
                field="open_duration",
            )

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: ResilienceSettings | None = None,
        **kwargs: Any,
    ) -> CircuitBreaker:
        """Build a breaker with threshold and open duration from settings."""
        settings = settings or get_settings()
        kwargs.setdefault("failure_threshold", settings.failure_threshold)
        kwargs.setdefault("open_duration", settings.open_duration)
        return cls(name=name, **kwargs)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Current circuit state (OPEN stays OPEN until the next call probes)."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def open_until(self) -> datetime | None:
        with self._lock:
            return self._open_until

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    def retry_after(self) -> float | None:
        """Seconds until a probe is allowed, None unless open."""
        with self._lock:
            if self._state is not CircuitState.OPEN or self._open_until is None:
                return None
            return max(0.0, (self._open_until - self.clock.now()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        """Get current status of circuit breaker."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "open_until": to_iso8601(self._open_until),
                "stats": {
                    "total_requests": self._stats.total_requests,
                    "successful_requests": self._stats.successful_requests,
                    "failed_requests": self._stats.failed_requests,
                    "rejected_requests": self._stats.rejected_requests,
                    "state_changes": self._stats.state_changes,
                    "failure_rate": self._stats.failure_rate,
                },
                "config": {
                    "failure_threshold": self.failure_threshold,
                    "open_duration": self.open_duration,
                },
            }

    # ── State transitions (caller holds the lock) ────────────────────

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = self.clock.now()
        self._pending.append((
            "circuit.state_changed",
            f"Circuit '{self.name}' {old_state.value} -> {new_state.value}",
            {
                "breaker": self.name,
                "from_state": old_state.value,
                "to_state": new_state.value,
                "failure_count": self._failure_count,
            },
        ))

    def _trip(self) -> None:
        self._open_until = self.clock.now() + timedelta(seconds=self.open_duration)
        if self._state is not CircuitState.OPEN:
            self._transition_to(CircuitState.OPEN)

    def _flush_events(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
        for kind, message, attributes in pending:
            emit_event(self.sink, kind, message, **attributes)

    # ── Admission and outcome recording ──────────────────────────────

    def _admit(self) -> bool:
        """Let a call through or raise CIRCUIT_OPEN.

        Returns:
            True when the admitted call is the HALF_OPEN probe
        """
        rejection = None
        with self._lock:
            now = self.clock.now()
            self._stats.total_requests += 1

            if self._state is CircuitState.OPEN:
                if self._open_until is not None and now < self._open_until:
                    retry_after = (self._open_until - now).total_seconds()
                    rejection = circuit_open_error(self.name, retry_after, timestamp=now)
                else:
                    self._transition_to(CircuitState.HALF_OPEN)

            if rejection is None and self._state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    rejection = circuit_open_error(self.name, timestamp=now)
                else:
                    self._probe_in_flight = True

            if rejection is not None:
                self._stats.rejected_requests += 1
                self._pending.append((
                    "circuit.rejected",
                    rejection.message,
                    {"breaker": self.name, "state": self._state.value},
                ))
            probe = rejection is None and self._state is CircuitState.HALF_OPEN

        self._flush_events()
        if rejection is not None:
            raise rejection
        return probe

    def _record_success(self, probe: bool) -> None:
        """Count a success.

        Only the probe moves the circuit out of HALF_OPEN. A call admitted
        earlier that finishes while the circuit is not CLOSED only updates
        the stats.
        """
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = self.clock.now()
            if probe:
                self._probe_in_flight = False
            if probe and self._state is CircuitState.HALF_OPEN:
                self._failure_count = 0
                self._transition_to(CircuitState.CLOSED)
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0
        self._flush_events()

    def _record_failure(self, probe: bool) -> None:
        """Count a failure; same probe rule as :meth:`_record_success`."""
        with self._lock:
            self._stats.failed_requests += 1
            self._stats.last_failure_time = self.clock.now()
            if probe:
                self._probe_in_flight = False
            if probe and self._state is CircuitState.HALF_OPEN:
                self._failure_count += 1
                self._trip()
            elif self._state is CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.failure_threshold:
                    self._trip()
        self._flush_events()

    def _release(self, probe: bool) -> None:
        """Forget an admitted call that neither succeeded nor failed."""
        if probe:
            with self._lock:
                self._probe_in_flight = False

    # ── Public API ───────────────────────────────────────────────────

    def call(self, operation: Callable[[], T]) -> T:
        """Execute a sync operation through the circuit breaker.

        Raises:
            StructuredError: CIRCUIT_OPEN if the circuit rejects the call
            Exception: Whatever the operation raised (after counting it)
        """
        probe = self._admit()
        try:
            result = operation()
        except Exception:
            self._record_failure(probe)
            raise
        except BaseException:
            self._release(probe)
            raise
        self._record_success(probe)
        return result

    async def execute(
        self,
        operation: Callable[[], Any],
        token: CancellationToken | None = None,
    ) -> Any:
        """Execute a sync or async operation through the circuit breaker.

        An operation abandoned because ``token`` fired is neither a success
        nor a failure for the breaker.

        Raises:
            StructuredError: CIRCUIT_OPEN if rejected, CANCELLED if the token fired
            Exception: Whatever the operation raised (after counting it)
        """
        if token is not None:
            token.raise_if_cancelled()
        probe = self._admit()
        try:
            result = await maybe_guard(token, invoke(operation))
        except asyncio.CancelledError:
            self._release(probe)
            raise
        except Exception as exc:
            if (
                token is not None
                and token.cancelled
                and kind_of(exc) is ErrorKind.CANCELLED
            ):
                self._release(probe)
            else:
                self._record_failure(probe)
            raise
        self._record_success(probe)
        return result

    def reset(self) -> None:
        """Operator override: force the circuit back to CLOSED."""
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._open_until = None
            self._probe_in_flight = False
        self._flush_events()


class CircuitBreakerRegistry:
    """Registry of named circuit breakers.

    Owned by whichever component protects several resources; pass it
    explicitly rather than reaching for a module-level instance.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        sink: EventSink | None = None,
        settings: ResilienceSettings | None = None,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self._sink = sink
        self._settings = settings

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str, **kwargs: Any) -> CircuitBreaker:
        """Get or create a circuit breaker by name."""
        with self._lock:
            if name not in self._breakers:
                if self._clock is not None:
                    kwargs.setdefault("clock", self._clock)
                kwargs.setdefault("sink", self._sink)
                self._breakers[name] = CircuitBreaker.from_settings(
                    name, self._settings, **kwargs
                )
            return self._breakers[name]

    def list_all(self) -> list[str]:
        """List all registered circuit breaker names."""
        with self._lock:
            return list(self._breakers.keys())

    def remove(self, name: str) -> None:
        """Remove a circuit breaker by name."""
        with self._lock:
            self._breakers.pop(name, None)

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def status(self) -> dict[str, dict[str, Any]]:
        """Status of every registered breaker, keyed by name."""
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.get_status() for name, breaker in breakers.items()}


__all__ = [
    "CircuitState",
    "CircuitStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
