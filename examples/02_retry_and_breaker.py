#!/usr/bin/env python3
"""Retry with backoff and circuit breaking.

Run: python examples/02_retry_and_breaker.py
"""
import asyncio

from resilient import (
    CircuitBreaker,
    ManualClock,
    MemorySink,
    RetryPolicy,
    StructuredError,
    retry_with_backoff,
    service_error,
)


class FlakyService:
    """Fails ``failures`` times, then answers."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise service_error(f"Service unavailable (call {self.calls})")
        return {"price": 101.5}


async def main():
    print("=" * 60)
    print("Retry and Circuit Breaker")
    print("=" * 60)

    # === 1. Retry until success ===
    print("\n[1] Retry: fails twice, succeeds on the third call")
    waits: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)

    service = FlakyService(failures=2)
    policy = RetryPolicy(max_attempts=3, base_delay=0.1, multiplier=2)
    result = await retry_with_backoff(service, policy, sleep=fake_sleep)
    print(f"  result={result} calls={service.calls} waits={waits}")

    # === 2. Exhaustion ===
    print("\n[2] Retry: never succeeds")
    try:
        await retry_with_backoff(FlakyService(failures=99), policy, sleep=fake_sleep)
    except StructuredError as exc:
        print(f"  {exc.kind.value}: {exc.message} (cause: {exc.cause})")

    # === 3. Circuit breaker ===
    print("\n[3] Circuit breaker with a manual clock")
    clock = ManualClock()
    sink = MemorySink()
    breaker = CircuitBreaker("quotes", failure_threshold=2, open_duration=30, clock=clock, sink=sink)
    service = FlakyService(failures=2)

    for attempt in range(3):
        try:
            await breaker.execute(service)
        except StructuredError as exc:
            print(f"  call {attempt + 1}: {exc.kind.value} -> state {breaker.state.value}")

    clock.advance(30)
    print(f"  after 30s probe: {await breaker.execute(service)} -> state {breaker.state.value}")
    print(f"  events: {sink.kinds()}")


if __name__ == "__main__":
    asyncio.run(main())
