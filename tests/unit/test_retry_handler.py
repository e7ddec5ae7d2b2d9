"""Unit tests for retry handler with exponential backoff."""

import random

import pytest

from pricescout.errors import BlockedPageError
from pricescout.fetcher.retry_handler import RetryHandler, RetryPolicy, calculate_backoff_delay


class TestBackoffCalculation:
    """Test exponential backoff formula: clamp(base * 2**attempt +/- jitter, 0, max)."""

    def test_deterministic_backoff_formula_verification(self):
        test_cases = [
            (0, 1.0),   # 1.0 * (2^0)
            (1, 2.0),   # 1.0 * (2^1)
            (2, 4.0),   # 1.0 * (2^2)
            (5, 30.0),  # 32.0, capped
        ]

        for attempt, expected_delay in test_cases:
            actual_delay = calculate_backoff_delay(attempt, base_delay=1.0, max_delay=30.0, jitter_ms=0)
            assert actual_delay == expected_delay, \
                f"Attempt {attempt}: expected {expected_delay}, got {actual_delay}"

    def test_jitter_is_symmetric_and_bounded(self):
        rng = random.Random(7)
        delays = [calculate_backoff_delay(1, jitter_ms=500, rng=rng) for _ in range(200)]

        assert all(1.5 <= d <= 2.5 for d in delays)
        assert min(delays) < 2.0 < max(delays)

    def test_never_negative(self):
        rng = random.Random(3)
        delays = [calculate_backoff_delay(0, base_delay=0.1, jitter_ms=1000, rng=rng) for _ in range(100)]

        assert all(d >= 0.0 for d in delays)

    def test_seeded_policy_is_reproducible(self):
        first = RetryPolicy(rng=random.Random(11))
        second = RetryPolicy(rng=random.Random(11))

        assert [first.delay_for(a) for a in range(3)] == [second.delay_for(a) for a in range(3)]


class TestRetryHandler:

    @pytest.fixture
    def handler(self, sleeper):
        return RetryHandler(
            RetryPolicy(max_attempts=3, jitter_ms=0),
            retry_on=(BlockedPageError, TimeoutError),
            sleeper=sleeper,
        )

    @pytest.mark.asyncio
    async def test_returns_first_success(self, handler, sleeper):
        async def ok():
            return "done"

        assert await handler.execute(ok) == "done"
        assert handler.attempts_made == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_retries_retryable_errors_with_backoff(self, handler, sleeper):
        calls = []

        async def flaky(value):
            calls.append(value)
            if len(calls) < 3:
                raise TimeoutError("slow")
            return value * 2

        assert await handler.execute(flaky, 21) == 42
        assert handler.attempts_made == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self, handler, sleeper):
        async def blocked():
            raise BlockedPageError("https://x.example", "Access Denied")

        with pytest.raises(BlockedPageError):
            await handler.execute(blocked)

        assert handler.attempts_made == 3
        assert len(sleeper.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, handler, sleeper):
        async def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await handler.execute(broken)

        assert handler.attempts_made == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, sleeper):
        seen = []
        handler = RetryHandler(
            RetryPolicy(max_attempts=2, jitter_ms=0),
            retry_on=(TimeoutError,),
            sleeper=sleeper,
            on_retry=lambda attempt, delay, error: seen.append((attempt, delay, str(error))),
        )

        async def always_slow():
            raise TimeoutError("slow")

        with pytest.raises(TimeoutError):
            await handler.execute(always_slow)

        assert seen == [(1, 1.0, "slow")]
