"""
Shared pytest fixtures for resilient-core tests.

This module provides:
- A manual clock so breaker timing never depends on the wall clock
- A memory sink for asserting on emitted events
- Scripted operations that fail a fixed number of times (fault injection)
- Settings cache isolation

Usage:
    Fixtures are auto-discovered by pytest::

        def test_opens(clock, sink, flaky):
            op = flaky(failures=3)
            ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from resilient.core.errors import StructuredError, service_error
from resilient.core.events import MemorySink
from resilient.core.settings import get_settings
from resilient.core.timestamps import ManualClock


class ScriptedOperation:
    """Zero-argument operation that fails ``failures`` times, then succeeds.

    Each failure raises the error produced by ``error_factory(call_number)``.
    ``calls`` counts every invocation, including failed ones.
    """

    def __init__(
        self,
        failures: int,
        result: Any = "ok",
        error_factory: Callable[[int], BaseException] | None = None,
    ):
        self.failures = failures
        self.result = result
        self.error_factory = error_factory or (
            lambda n: service_error(f"Injected failure #{n}", operation="scripted")
        )
        self.calls = 0
        self.raised: list[BaseException] = []

    def __call__(self) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            error = self.error_factory(self.calls)
            self.raised.append(error)
            raise error
        return self.result


class AsyncScriptedOperation(ScriptedOperation):
    """Coroutine flavour of :class:`ScriptedOperation`."""

    async def __call__(self) -> Any:  # type: ignore[override]
        return super().__call__()


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` / ``time.sleep`` that records delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    def sync(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at 2024-01-01T00:00:00Z."""
    return ManualClock()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def flaky() -> Callable[..., ScriptedOperation]:
    """Factory for sync operations failing a fixed number of times."""
    return ScriptedOperation


@pytest.fixture
def async_flaky() -> Callable[..., AsyncScriptedOperation]:
    """Factory for async operations failing a fixed number of times."""
    return AsyncScriptedOperation


@pytest.fixture
def always_failing() -> Callable[..., ScriptedOperation]:
    """Factory for operations that never succeed."""

    def factory(
        error_factory: Callable[[int], StructuredError] | None = None,
    ) -> ScriptedOperation:
        return ScriptedOperation(failures=10**9, error_factory=error_factory)

    return factory


@pytest.fixture(autouse=True)
def _isolate_settings():
    """Drop cached settings so env changes in one test never leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
