"""Observability sink for resilience events.

Circuit breakers, the retry executor and the fallback combinator report
what they did (state changes, failed attempts, suppressed errors) as
``ResilienceEvent`` records handed to an ``EventSink``. The default sink
writes them through structlog; tests plug in ``MemorySink``.

A sink that fails must never break the call it is observing, so
producers go through :func:`emit_event`, which contains sink failures.

Usage::

    from resilient.core.events import MemorySink

    sink = MemorySink()
    breaker = CircuitBreaker("payments", sink=sink)
    ...
    assert sink.kinds() == ["circuit.state_changed"]

Event kinds
-----------
circuit.state_changed     from/to state, failure count
circuit.rejected          call refused while open
retry.attempt_failed      attempt number, delay before next attempt
retry.exhausted           attempts made
fallback.primary_failed   suppressed primary error (serialized chain)
boundary.error            error caught at a top-level boundary
batch.item_failed         item skipped by log-and-continue processing
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from resilient.core.logging import get_logger
from resilient.core.timestamps import utc_now

logger = get_logger(__name__)

__all__ = [
    "ResilienceEvent",
    "EventSink",
    "StructlogSink",
    "MemorySink",
    "NullSink",
    "emit_event",
]


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResilienceEvent:
    """One observable thing a resilience component did.

    Attributes:
        kind: Dot-separated event type (e.g. ``circuit.state_changed``)
        message: Human-readable summary
        attributes: Event-specific data
        timestamp: When the event occurred (UTC)
    """

    kind: str
    message: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "attributes": dict(self.attributes),
            "timestamp": self.timestamp.isoformat(),
        }


# ── Sink Protocol ────────────────────────────────────────────────────────


@runtime_checkable
class EventSink(Protocol):
    """Receiver of resilience events."""

    def record(self, event: ResilienceEvent) -> None:
        ...


# Events that describe something going wrong
_WARNING_KINDS = frozenset({
    "circuit.rejected",
    "retry.attempt_failed",
    "retry.exhausted",
    "fallback.primary_failed",
    "boundary.error",
    "batch.item_failed",
})


class StructlogSink:
    """Writes events to a structlog logger.

    Event kinds become snake_case log event names
    (``circuit.state_changed`` -> ``circuit_state_changed``).
    """

    def __init__(self, log: Any = None):
        self._log = log or get_logger("resilient.events")

    def record(self, event: ResilienceEvent) -> None:
        name = event.kind.replace(".", "_")
        method = self._log.warning if event.kind in _WARNING_KINDS else self._log.info
        method(name, summary=event.message, **dict(event.attributes))


class MemorySink:
    """Keeps events in a list. Thread-safe."""

    def __init__(self):
        self._events: list[ResilienceEvent] = []
        self._lock = threading.Lock()

    def record(self, event: ResilienceEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ResilienceEvent]:
        with self._lock:
            return list(self._events)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list[ResilienceEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class NullSink:
    """Discards everything."""

    def record(self, event: ResilienceEvent) -> None:
        return None


_default_sink: EventSink | None = None


def _resolve(sink: EventSink | None) -> EventSink:
    global _default_sink
    if sink is not None:
        return sink
    if _default_sink is None:
        _default_sink = StructlogSink()
    return _default_sink


def emit_event(
    sink: EventSink | None,
    kind: str,
    message: str,
    **attributes: Any,
) -> None:
    """Hand an event to ``sink`` (structlog when None).

    Failures of the sink itself are logged at debug level and dropped.
    """
    event = ResilienceEvent(kind=kind, message=message, attributes=attributes)
    target = _resolve(sink)
    try:
        target.record(event)
    except Exception as exc:
        logger.debug(
            "event_sink_failed",
            event_kind=kind,
            sink=type(target).__name__,
            error=str(exc),
        )
