"""
Consecutive-failure circuit breaker for the retry queue.

Two states:
- Inactive: items are dispatched normally
- Active: dispatch is suspended until the cooldown elapses

A success anywhere resets the consecutive failure count. The breaker is
cleared lazily: the first ``allow()`` call after the reset time closes it.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ai_resilience.errors import CircuitOpenError
from ai_resilience.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


@dataclass
class CircuitBreakerConfig:
    """Configuration for the retry queue circuit breaker.

    Attributes:
        enabled: Whether the breaker is used at all
        failure_threshold: Consecutive failures that activate the breaker
        cooldown_seconds: How long dispatch stays suspended
    """

    enabled: bool = True
    failure_threshold: int = 10
    cooldown_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        enabled = os.getenv("AI_RESILIENCE_BREAKER_ENABLED", "true").lower()
        return cls(
            enabled=enabled not in ("0", "false", "no"),
            failure_threshold=int(
                os.getenv("AI_RESILIENCE_BREAKER_FAILURE_THRESHOLD", "10")
            ),
            cooldown_seconds=float(
                os.getenv("AI_RESILIENCE_BREAKER_COOLDOWN_SECS", "60")
            ),
        )


@dataclass
class CircuitBreakerState:
    """Mutable breaker state.

    Attributes:
        active: Whether dispatch is suspended
        reset_time: Unix timestamp when the breaker clears, if active
        consecutive_failures: Failures since the last success
    """

    active: bool = False
    reset_time: float | None = None
    consecutive_failures: int = 0


class CircuitBreaker:
    """Process-wide consecutive-failure breaker.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))
        >>> if breaker.allow():
        ...     ok = await dispatch(item)
        ...     breaker.record_success() if ok else breaker.record_failure()
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitBreakerState()

    @property
    def is_active(self) -> bool:
        """Whether dispatch is currently suspended (without clearing)."""
        return self._config.enabled and self._state.active

    @property
    def reset_time(self) -> float | None:
        return self._state.reset_time if self._state.active else None

    @property
    def consecutive_failures(self) -> int:
        return self._state.consecutive_failures

    def allow(self) -> bool:
        """Check whether dispatch may proceed, clearing an expired breaker."""
        if not self._config.enabled or not self._state.active:
            return True
        reset_time = self._state.reset_time or 0.0
        if self._clock() >= reset_time:
            logger.info("Circuit breaker reset")
            self.reset()
            return True
        return False

    def record_success(self) -> None:
        self._state.consecutive_failures = 0

    def record_failure(self) -> None:
        self._state.consecutive_failures += 1
        if (
            self._config.enabled
            and not self._state.active
            and self._state.consecutive_failures >= self._config.failure_threshold
        ):
            self._state.active = True
            self._state.reset_time = self._clock() + self._config.cooldown_seconds
            logger.warning(
                "Circuit breaker activated",
                consecutive_failures=self._state.consecutive_failures,
                cooldown_seconds=self._config.cooldown_seconds,
            )

    def get_time_until_retry(self) -> float | None:
        """Seconds until the breaker clears, or None if not active."""
        if not self.is_active or self._state.reset_time is None:
            return None
        return max(0.0, self._state.reset_time - self._clock())

    def open_error(self) -> CircuitOpenError:
        """Describe the suspended state as an error value."""
        return CircuitOpenError(time_until_retry=self.get_time_until_retry())

    def reset(self) -> None:
        """Clear the breaker and the failure count."""
        self._state = CircuitBreakerState()

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(active={self._state.active}, "
            f"failures={self._state.consecutive_failures}/{self._config.failure_threshold})"
        )
