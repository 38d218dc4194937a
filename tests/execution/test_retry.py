"""
Tests for retry with exponential backoff.

Tests verify:
- Delays follow base * multiplier ** (attempt - 1)
- Exhaustion raises RETRY_EXHAUSTED caused by the last failure
- Non-retryable errors end the loop after one attempt
- Cancellation interrupts waits
"""

import asyncio
import threading

import pytest

from resilient.core.errors import (
    ErrorKind,
    StructuredError,
    api_error,
    validation_error,
)
from resilient.core.settings import ResilienceSettings
from resilient.execution.cancellation import CancellationToken
from resilient.execution.retry import (
    RetryPolicy,
    retry_with_backoff,
    retry_with_backoff_sync,
    with_retry,
)


class TestRetryPolicy:
    """Test RetryPolicy configuration."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.multiplier == 2.0

    def test_delay_for(self):
        policy = RetryPolicy(max_attempts=4, base_delay=100, multiplier=2)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [100, 200, 400]

    def test_max_delay_caps(self):
        policy = RetryPolicy(base_delay=1, multiplier=10, max_delay=5)
        assert policy.delay_for(3) == 5

    def test_jitter_stays_within_spread(self):
        policy = RetryPolicy(base_delay=10, multiplier=1, jitter=0.5)
        for _ in range(50):
            assert 5 <= policy.delay_for(1) <= 15

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1},
            {"multiplier": 0.5},
            {"max_delay": -1},
            {"jitter": 2},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(StructuredError) as exc_info:
            RetryPolicy(**kwargs)
        assert exc_info.value.kind is ErrorKind.VALIDATION

    def test_frozen(self):
        policy = RetryPolicy()
        with pytest.raises(AttributeError):
            policy.max_attempts = 10  # type: ignore[misc]

    def test_retry_if(self):
        policy = RetryPolicy(retry_if=lambda e: "transient" in str(e))
        assert policy.should_retry(RuntimeError("transient glitch")) is True
        assert policy.should_retry(RuntimeError("fatal")) is False

    def test_from_settings(self):
        settings = ResilienceSettings(
            retry_max_attempts=5, retry_base_delay=0.1, _env_file=None
        )
        policy = RetryPolicy.from_settings(settings, multiplier=3)

        assert policy.max_attempts == 5
        assert policy.base_delay == 0.1
        assert policy.multiplier == 3


class TestRetryWithBackoff:
    """Test the async retry executor."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, async_flaky, recording_sleep):
        op = async_flaky(failures=0, result="done")

        assert await retry_with_backoff(op, RetryPolicy(), sleep=recording_sleep) == "done"
        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_eventual_success(self, async_flaky, recording_sleep):
        op = async_flaky(failures=2, result="done")
        policy = RetryPolicy(max_attempts=3, base_delay=100, multiplier=2)

        assert await retry_with_backoff(op, policy, sleep=recording_sleep) == "done"
        assert op.calls == 3
        assert recording_sleep.delays == [100, 200]
        assert recording_sleep.total == 300

    @pytest.mark.asyncio
    async def test_exhaustion(self, async_flaky, recording_sleep):
        op = async_flaky(failures=10)
        policy = RetryPolicy(max_attempts=3, base_delay=100, multiplier=2)

        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(op, policy, sleep=recording_sleep)

        error = exc_info.value
        assert error.kind is ErrorKind.RETRY_EXHAUSTED
        assert error.message == "Failed after 3 attempts"
        assert error.get("attempts") == 3
        assert error.cause is op.raised[-1]
        assert op.calls == 3
        assert recording_sleep.delays == [100, 200]

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, async_flaky, recording_sleep):
        op = async_flaky(failures=10)

        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(op, RetryPolicy(max_attempts=1), sleep=recording_sleep)

        assert exc_info.value.kind is ErrorKind.RETRY_EXHAUSTED
        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_aborts(self, async_flaky, recording_sleep):
        op = async_flaky(failures=10, error_factory=lambda n: validation_error("bad input"))

        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(op, RetryPolicy(max_attempts=5), sleep=recording_sleep)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert op.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, async_flaky, recording_sleep):
        op = async_flaky(failures=10, error_factory=lambda n: api_error("nope", status_code=404))

        with pytest.raises(StructuredError):
            await retry_with_backoff(op, RetryPolicy(), sleep=recording_sleep)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_plain_exceptions_retried(self, recording_sleep):
        calls = []

        def op():
            calls.append(1)
            raise ConnectionError("reset")

        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(op, RetryPolicy(max_attempts=2), sleep=recording_sleep)

        assert len(calls) == 2
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_events(self, async_flaky, recording_sleep, sink):
        op = async_flaky(failures=10)
        policy = RetryPolicy(max_attempts=3, base_delay=1, multiplier=2)

        with pytest.raises(StructuredError):
            await retry_with_backoff(op, policy, sleep=recording_sleep, sink=sink)

        assert sink.kinds() == ["retry.attempt_failed", "retry.attempt_failed", "retry.exhausted"]
        first = sink.of_kind("retry.attempt_failed")[0].attributes
        assert first["attempt"] == 1
        assert first["delay"] == 1
        assert first["error_kind"] == "SERVICE"

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, async_flaky, recording_sleep):
        seen = []
        op = async_flaky(failures=2)

        await retry_with_backoff(
            op,
            RetryPolicy(base_delay=0.5),
            sleep=recording_sleep,
            on_retry=lambda attempt, error, delay: seen.append((attempt, delay)),
        )
        assert seen == [(1, 0.5), (2, 1.0)]

    @pytest.mark.asyncio
    async def test_default_sleep_does_not_block_loop(self, async_flaky):
        op = async_flaky(failures=1)
        ticks = []

        async def ticker():
            for _ in range(3):
                ticks.append(1)
                await asyncio.sleep(0)

        result, _ = await asyncio.gather(
            retry_with_backoff(op, RetryPolicy(base_delay=0.05)),
            ticker(),
        )
        assert result == "ok"
        assert len(ticks) == 3


class TestRetryCancellation:
    """Test cancellation of the async retry loop."""

    @pytest.mark.asyncio
    async def test_cancel_during_wait(self, async_flaky):
        op = async_flaky(failures=10)
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0.02)
            token.cancel("shutting down")

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(op, RetryPolicy(base_delay=10), token=token)
        await canceller

        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert exc_info.value.message == "shutting down"
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_deadline_during_attempt(self):
        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(StructuredError) as exc_info:
            await retry_with_backoff(hang, RetryPolicy(), token=CancellationToken(timeout=0.02))

        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert "Deadline" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_already_cancelled(self, async_flaky):
        token = CancellationToken()
        token.cancel()
        op = async_flaky(failures=0)

        with pytest.raises(StructuredError):
            await retry_with_backoff(op, token=token)
        assert op.calls == 0


class TestRetrySync:
    """Test the blocking variant."""

    def test_delays(self, flaky, recording_sleep):
        op = flaky(failures=2)
        policy = RetryPolicy(max_attempts=3, base_delay=100, multiplier=2)

        assert retry_with_backoff_sync(op, policy, sleep=recording_sleep.sync) == "ok"
        assert recording_sleep.delays == [100, 200]

    def test_exhaustion(self, flaky, recording_sleep):
        op = flaky(failures=10)

        with pytest.raises(StructuredError) as exc_info:
            retry_with_backoff_sync(op, RetryPolicy(max_attempts=2), sleep=recording_sleep.sync)

        assert exc_info.value.kind is ErrorKind.RETRY_EXHAUSTED
        assert exc_info.value.cause is op.raised[-1]

    def test_non_retryable(self, flaky, recording_sleep):
        op = flaky(failures=10, error_factory=lambda n: validation_error("bad"))

        with pytest.raises(StructuredError) as exc_info:
            retry_with_backoff_sync(op, RetryPolicy(), sleep=recording_sleep.sync)
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert op.calls == 1

    def test_token_wakes_wait(self, flaky):
        op = flaky(failures=10)
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        with pytest.raises(StructuredError) as exc_info:
            retry_with_backoff_sync(op, RetryPolicy(base_delay=10), token=token)

        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert op.calls == 1


class TestWithRetry:
    """Test the decorator."""

    def test_sync_function(self):
        calls = []

        @with_retry(RetryPolicy(max_attempts=3, base_delay=0))
        def flaky_add(a, b):
            calls.append(1)
            if len(calls) < 2:
                raise ConnectionError("blip")
            return a + b

        assert flaky_add(2, 3) == 5
        assert len(calls) == 2
        assert flaky_add.__name__ == "flaky_add"

    @pytest.mark.asyncio
    async def test_async_function(self):
        calls = []

        @with_retry(RetryPolicy(max_attempts=3, base_delay=0))
        async def fetch(key):
            calls.append(key)
            if len(calls) < 3:
                raise ConnectionError("blip")
            return key.upper()

        assert await fetch("eur") == "EUR"
        assert calls == ["eur", "eur", "eur"]
