"""Retry with exponential backoff for persistence operations."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from marketcharts.core.exceptions import RepositoryError

T = TypeVar("T")


class RetryState(Enum):
    """Retry state."""

    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryConfig:
    """Retry configuration."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on_exceptions: list[type] = field(default_factory=lambda: [RepositoryError])
    skip_on_exceptions: list[type] = field(default_factory=list)

    @classmethod
    def from_failover(cls, max_retry_attempts: int, retry_delay_ms: int) -> "RetryConfig":
        """Build from the ``[failover]`` config section."""
        return cls(max_attempts=max_retry_attempts, base_delay=retry_delay_ms / 1000)


class ExponentialBackoffRetry:
    """Exponential backoff retry."""

    def __init__(
        self,
        config: RetryConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._sleep = sleep
        self.attempt_count = 0
        self.total_delay = 0.0
        self.state = RetryState.READY
        self.last_exception: Exception | None = None

    async def execute(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` applying the retry policy.

        Args:
            func: coroutine function to run
            *args: positional arguments
            **kwargs: keyword arguments

        Returns:
            the function result

        Raises:
            Exception: the last exception once every attempt failed
        """
        self.state = RetryState.RUNNING
        self.attempt_count = 0
        self.total_delay = 0.0

        while True:
            try:
                self.attempt_count += 1
                result = await func(*args, **kwargs)
                self.state = RetryState.COMPLETED
                return result

            except Exception as e:
                self.last_exception = e

                if any(isinstance(e, exc_type) for exc_type in self.config.skip_on_exceptions):
                    self.state = RetryState.FAILED
                    raise

                should_retry = any(isinstance(e, exc_type) for exc_type in self.config.retry_on_exceptions)
                if not should_retry or self.attempt_count >= self.config.max_attempts:
                    self.state = RetryState.FAILED
                    raise

                delay = self._calculate_delay(self.attempt_count - 1)
                await self._sleep(delay)
                self.total_delay += delay

    def _calculate_delay(self, attempt_number: int) -> float:
        """Delay before the next attempt, ``attempt_number`` counted from 0."""
        if attempt_number < 0:
            return 0.0

        delay = self.config.base_delay * (self.config.exponential_base**attempt_number)

        if self.config.jitter:
            jitter_range = min(delay * 0.1, 1.0)
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.config.max_delay))

    def get_stats(self) -> dict[str, Any]:
        """Retry statistics."""
        return {
            "attempts": self.attempt_count,
            "max_attempts": self.config.max_attempts,
            "total_delay": self.total_delay,
            "state": self.state.value,
            "last_exception": str(self.last_exception) if self.last_exception else None,
        }
