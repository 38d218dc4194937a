"""Resilient Execution - protecting fallible calls.

ARCHITECTURE
────────────
::

    ResilientCall (resilient_call.py)
      ├── with_fallback      ─ alternate result on failure (fallback.py)
      ├── retry_with_backoff ─ exponential backoff, retryable-aware (retry.py)
      └── CircuitBreaker     ─ fail fast on a failing dependency (circuit_breaker.py)
    CancellationToken        ─ deadlines / cancel across all layers (cancellation.py)
    ErrorBoundary            ─ explicit top-level error sink (boundary.py)
"""

from resilient.execution.boundary import (
    BatchResult,
    ErrorBoundary,
    ErrorResponse,
    ItemError,
    error_response,
    process_items,
    require,
    run_guarded,
    run_guarded_async,
)
from resilient.execution.cancellation import CancellationToken
from resilient.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from resilient.execution.fallback import fallback_to, with_fallback, with_fallback_sync
from resilient.execution.resilient_call import ResilientCall
from resilient.execution.retry import (
    RetryPolicy,
    retry_with_backoff,
    retry_with_backoff_sync,
    with_retry,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    # Retry
    "RetryPolicy",
    "retry_with_backoff",
    "retry_with_backoff_sync",
    "with_retry",
    # Fallback
    "with_fallback",
    "with_fallback_sync",
    "fallback_to",
    # Composition / cancellation
    "ResilientCall",
    "CancellationToken",
    # Boundary
    "ErrorBoundary",
    "ErrorResponse",
    "error_response",
    "run_guarded",
    "run_guarded_async",
    "process_items",
    "BatchResult",
    "ItemError",
    "require",
]
