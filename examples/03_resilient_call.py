#!/usr/bin/env python3
"""Composed protection: fallback → retry → circuit breaker.

Each retry attempt is a single breaker execution. Once the breaker
opens, the rejection is not retryable, so the call goes straight to the
fallback instead of hammering the failing dependency.

Run: python examples/03_resilient_call.py
"""
import asyncio

from resilient import (
    CancellationToken,
    CircuitBreaker,
    ResilientCall,
    RetryPolicy,
    StructuredError,
    configure_logging,
    fallback_to,
    service_error,
)


async def unreliable_quotes():
    raise service_error("Quote feed timed out", operation="fetch_quotes")


async def slow_quotes():
    await asyncio.sleep(5)
    return {"EURUSD": 1.09}


async def main():
    configure_logging(level="INFO", json_format=False, service="quotes-demo")

    breaker = CircuitBreaker("quote_feed", failure_threshold=3, open_duration=10)
    quotes = ResilientCall(
        breaker=breaker,
        policy=RetryPolicy(max_attempts=2, base_delay=0.05),
        fallback=fallback_to({"EURUSD": 1.08, "stale": True}),
        name="quotes",
    )

    for n in range(3):
        result = await quotes.execute(unreliable_quotes)
        print(f"request {n + 1}: {result} (breaker {breaker.state.value})")

    try:
        await ResilientCall(policy=RetryPolicy(base_delay=0.05)).execute(
            slow_quotes, CancellationToken(timeout=0.2)
        )
    except StructuredError as exc:
        print(f"deadline: {exc.kind.value} {exc.message}")


if __name__ == "__main__":
    asyncio.run(main())
