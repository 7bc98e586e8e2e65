"""
Bounded retry policy with exponential backoff for model calls.

The orchestrator wraps every model invocation in a RetryPolicy. Any
ModelCallFailedError (including schema validation failures) triggers a retry
until ``max_retries`` retries have been spent.
"""

from __future__ import annotations

import asyncio
import os
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from ai_resilience.errors import (
    ConfigurationError,
    ErrorClass,
    ModelCallFailedError,
    is_retryable,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class JitterStrategy(str, Enum):
    """Jitter strategy for retry delays."""

    NONE = "none"
    FULL = "full"
    EQUAL = "equal"


@dataclass
class RetryConfig:
    """Configuration for the model-call retry policy.

    Attributes:
        max_retries: Retries after the first attempt (0 = no retries)
        initial_delay_ms: Delay before the first retry in milliseconds
        max_delay_ms: Cap on any single delay in milliseconds
        exponential_base: Multiplier applied per retry
        jitter: Jitter strategy (none, full, equal)
        retry_on_error_class: Error classes to retry on
    """

    max_retries: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 2000
    exponential_base: float = 2.0
    jitter: JitterStrategy = JitterStrategy.NONE
    retry_on_error_class: set[ErrorClass] = field(
        default_factory=lambda: set(ErrorClass)
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries must not be negative", key="retry.max_retries"
            )
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError(
                "retry delays must not be negative", key="retry.initial_delay_ms"
            )
        if isinstance(self.jitter, str):
            self.jitter = JitterStrategy(self.jitter)

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Create configuration from environment variables."""
        jitter = os.getenv("AI_RESILIENCE_RETRY_JITTER", "none")
        return cls(
            max_retries=int(os.getenv("AI_RESILIENCE_RETRY_MAX_RETRIES", "3")),
            initial_delay_ms=int(os.getenv("AI_RESILIENCE_RETRY_INITIAL_DELAY_MS", "100")),
            max_delay_ms=int(os.getenv("AI_RESILIENCE_RETRY_MAX_DELAY_MS", "2000")),
            jitter=JitterStrategy(jitter) if jitter in ("none", "full", "equal") else JitterStrategy.NONE,
        )


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        attempts: Number of attempts made
        total_delay_ms: Total delay from retries in milliseconds
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0


class RetryPolicy:
    """Retry policy with exponential backoff.

    Example:
        >>> policy = RetryPolicy(RetryConfig(max_retries=3))
        >>> result = await policy.execute(call_model)
        >>> if not result.success:
        ...     print(f"Failed after {result.attempts} attempts")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            sleep: Coroutine used to wait between attempts
        """
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before a retry.

        Args:
            attempt: Retry number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay_ms = self._config.initial_delay_ms * (
            self._config.exponential_base ** attempt
        )
        base_delay_ms = min(base_delay_ms, self._config.max_delay_ms)

        if self._config.jitter == JitterStrategy.FULL:
            delay_ms = random.uniform(0, base_delay_ms)
        elif self._config.jitter == JitterStrategy.EQUAL:
            delay_ms = base_delay_ms / 2 + random.uniform(0, base_delay_ms / 2)
        else:
            delay_ms = base_delay_ms

        return delay_ms / 1000.0

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Check if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Retries already spent

        Returns:
            True if should retry
        """
        if attempt >= self._config.max_retries:
            return False

        if isinstance(error, ModelCallFailedError):
            return error.error_class in self._config.retry_on_error_class

        if hasattr(error, "error_class"):
            return is_retryable(error.error_class)

        return False

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            on_retry: Optional callback called before each retry

        Returns:
            RetryResult with success status and value/error
        """
        total_delay = 0.0
        attempt = 0

        while True:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    value=result,
                    attempts=attempt + 1,
                    total_delay_ms=total_delay * 1000,
                )
            except Exception as e:
                attempt += 1

                if not self.should_retry(e, attempt - 1):
                    return RetryResult(
                        success=False,
                        error=e,
                        attempts=attempt,
                        total_delay_ms=total_delay * 1000,
                    )

                delay = self.calculate_delay(attempt - 1)
                total_delay += delay

                if on_retry:
                    on_retry(attempt, e, delay)

                await self._sleep(delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Execute an operation with retry, raising on failure.

    Raises:
        The last exception if all retries fail
    """
    policy = RetryPolicy(config)
    result = await policy.execute(operation, on_retry)

    if result.success:
        return result.value
    raise result.error  # type: ignore[misc]
