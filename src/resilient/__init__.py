"""
Resilient - retry, circuit breaking and fallback around fallible calls.

- resilient.core: StructuredError taxonomy, clock, event sinks, logging, settings
- resilient.execution: CircuitBreaker, retry_with_backoff, with_fallback,
  ResilientCall, CancellationToken, ErrorBoundary
"""

__version__ = "0.1.0"

from resilient.core import *  # noqa
from resilient.execution import *  # noqa
