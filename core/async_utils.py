"""
Operix - Async Utilities

Retry with exponential backoff and deadline helpers used by the lifecycle
code (server bind retries, startup/shutdown budgets).
"""

from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    ParamSpec,
    Set,
    Type,
    TypeVar,
)

from opentelemetry import trace

from core.errors import OperixTimeoutError

T = TypeVar("T")
P = ParamSpec("P")

tracer = trace.get_tracer(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry policy."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = False
    retryable_exceptions: Set[Type[BaseException]] = field(
        default_factory=lambda: {Exception}
    )
    non_retryable_exceptions: Set[Type[BaseException]] = field(default_factory=set)


class RetryPolicy:
    """
    Retry an async callable with exponential backoff.

    The delay before retry ``n`` (0-based) is
    ``min(base_delay * exponential_base ** n, max_delay)``, optionally
    scaled by a random factor in [0.5, 1.5).

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=5, base_delay=0.2))

        @policy.wrap
        async def connect():
            ...
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number."""
        delay = min(
            self.config.base_delay * (self.config.exponential_base ** attempt),
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= (0.5 + random.random())
        return delay

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if exception should trigger retry."""
        exc_type = type(exception)
        if any(issubclass(exc_type, t) for t in self.config.non_retryable_exceptions):
            return False
        return any(issubclass(exc_type, t) for t in self.config.retryable_exceptions)

    async def call(self, func: Callable[P, Awaitable[T]], *args: P.args, **kwargs: P.kwargs) -> T:
        """Invoke ``func`` until it succeeds or attempts run out; re-raises the last error."""
        attempts = max(1, self.config.max_attempts)
        for attempt in range(attempts):
            with tracer.start_as_current_span("retry.attempt") as span:
                span.set_attribute("retry.attempt", attempt)
                span.set_attribute("retry.max_attempts", attempts)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("retry.exception", type(e).__name__)
                    if not self.is_retryable(e) or attempt == attempts - 1:
                        raise
                    delay = self.calculate_delay(attempt)
                    span.set_attribute("retry.delay_seconds", delay)
            await self._sleep(delay)
        raise AssertionError("unreachable")

    def wrap(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Wrap an async function with retry logic."""

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return wrapper


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: Optional[float],
    operation: str = "operation",
) -> T:
    """
    Await ``awaitable`` under a deadline.

    ``seconds=None`` waits without a limit. On expiry the awaitable is
    cancelled and OperixTimeoutError is raised.
    """
    if seconds is None:
        return await awaitable
    try:
        async with asyncio.timeout(seconds):
            return await awaitable
    except TimeoutError as e:
        raise OperixTimeoutError(
            message=f"{operation} timed out after {seconds} seconds",
            timeout_seconds=seconds,
            operation=operation,
            cause=e,
        ) from e
