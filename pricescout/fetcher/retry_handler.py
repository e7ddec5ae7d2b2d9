"""Retry handler with exponential backoff and jitter."""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_ms: int = 1000,
    rng: Optional[random.Random] = None
) -> float:
    """
    Calculate exponential backoff delay with symmetric jitter.

    Formula: clamp(base_delay * (2 ** attempt) +/- uniform(jitter_ms) / 1000, 0, max_delay)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_ms: Maximum jitter in milliseconds, applied in either direction
        rng: Random source (module random when omitted)

    Returns:
        Delay in seconds
    """
    rng = rng or random
    exponential_delay = base_delay * (2 ** attempt)
    jitter = rng.uniform(-jitter_ms, jitter_ms) / 1000.0 if jitter_ms else 0.0
    return min(max_delay, max(0.0, exponential_delay + jitter))


@dataclass
class RetryPolicy:
    """Seedable retry parameters."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_ms: int = 1000
    rng: random.Random = field(default_factory=random.Random)

    def delay_for(self, attempt: int) -> float:
        return calculate_backoff_delay(
            attempt,
            self.base_delay,
            self.max_delay,
            self.jitter_ms,
            self.rng
        )


class RetryHandler:
    """
    Runs an async operation up to ``policy.max_attempts`` times.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last retryable exception is re-raised once
    attempts are exhausted.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Optional[Callable[[int, float, BaseException], None]] = None
    ):
        """
        Initialize retry handler.

        Args:
            policy: Attempt count and backoff parameters
            retry_on: Exception types that trigger another attempt
            sleeper: Async sleep function (injectable for tests)
            on_retry: Called with (attempt, delay, error) before each backoff
        """
        self.policy = policy or RetryPolicy()
        self.retry_on = retry_on
        self._sleep = sleeper
        self.on_retry = on_retry
        self.attempts_made = 0

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Execute coroutine function with retry logic.

        Args:
            func: Coroutine function to execute
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Result from successful execution

        Raises:
            Exception: The last error once attempts are exhausted, or any
                non-retryable error immediately
        """
        self.attempts_made = 0

        for attempt in range(self.policy.max_attempts):
            self.attempts_made = attempt + 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.policy.max_attempts - 1:
                    raise

                delay = self.policy.delay_for(attempt)
                if self.on_retry:
                    self.on_retry(attempt + 1, delay, e)
                await self._sleep(delay)
