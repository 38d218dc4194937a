"""Resilient Core -- leaf primitives shared by every resilience component.

Architecture::

    errors.py          StructuredError, ErrorKind, cause-chain traversal
    timestamps.py      UTC helpers + injectable Clock (SystemClock, ManualClock)
    events.py          EventSink protocol + structlog / memory sinks
    logging.py         Structured logging (structlog)
    settings.py        ResilienceSettings (pydantic-settings)
"""

from resilient.core.errors import (
    TRANSIENT_DATABASE_CODES,
    CauseChain,
    ErrorKind,
    StructuredError,
    api_error,
    auth_error,
    cancelled_error,
    circuit_open_error,
    database_error,
    error_to_dict,
    format_chain,
    is_retryable,
    iter_chain,
    kind_of,
    message_of,
    render_chain,
    retry_exhausted_error,
    service_error,
    validation_error,
    wrap_error,
)
from resilient.core.events import (
    EventSink,
    MemorySink,
    NullSink,
    ResilienceEvent,
    StructlogSink,
    emit_event,
)
from resilient.core.logging import configure_logging, get_logger
from resilient.core.settings import ResilienceSettings, get_settings
from resilient.core.timestamps import Clock, ManualClock, SystemClock, utc_now

__all__ = [
    # Errors
    "ErrorKind",
    "StructuredError",
    "CauseChain",
    "TRANSIENT_DATABASE_CODES",
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
    # Events
    "ResilienceEvent",
    "EventSink",
    "StructlogSink",
    "MemorySink",
    "NullSink",
    "emit_event",
    # Logging / settings
    "configure_logging",
    "get_logger",
    "ResilienceSettings",
    "get_settings",
    # Time
    "Clock",
    "SystemClock",
    "ManualClock",
    "utc_now",
]
