"""
UTC timestamp utilities and the injectable clock (stdlib-only).

Every component that needs "now" (error timestamps, circuit breaker
open-until comparisons) asks a ``Clock`` instead of calling
``datetime.now`` directly, so tests can drive time deterministically.

Features:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Safe serialization round-trip
    - **Clock protocol:** ``now() -> datetime``
    - **SystemClock:** Wall-clock UTC time
    - **ManualClock:** Frozen time advanced explicitly by tests

Examples:
    >>> from resilient.core.timestamps import ManualClock
    >>> clock = ManualClock()
    >>> start = clock.now()
    >>> clock.advance(30)
    >>> (clock.now() - start).total_seconds()
    30.0

Tags:
    timestamps, utc, clock, datetime, resilient-core, stdlib-only
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to datetime."""
    if s is None:
        return None
    return datetime.fromisoformat(s)


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return utc_now()

    def __repr__(self) -> str:
        return "SystemClock()"


class ManualClock:
    """Clock that only moves when told to.

    Used by tests to step a circuit breaker past its open duration
    without sleeping.

    Attributes:
        current: The datetime returned by ``now()``
    """

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self.current

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards by {seconds}s")
        with self._lock:
            self.current = self.current + timedelta(seconds=seconds)
            return self.current

    def set(self, when: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            self.current = when

    def __repr__(self) -> str:
        return f"ManualClock({self.current.isoformat()})"


__all__ = [
    "utc_now",
    "to_iso8601",
    "from_iso8601",
    "Clock",
    "SystemClock",
    "ManualClock",
]
