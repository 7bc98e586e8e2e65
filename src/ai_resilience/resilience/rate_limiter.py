"""
Sliding-window rate limiter keyed by caller identity.

Each identity owns a window of request timestamps in a SlidingWindowStore.
Checking a request prunes timestamps that have left the window, counts the
rest, and records the new request only when it is admitted.

Operations may also carry their own quotas, one per named window (for
example 50 per hour and 500 per day for voice matching). These live under
``{prefix}{identity}:{operation}:{window}`` and a call is admitted only when
the identity window and every operation window admit it.

Store failures never block callers: the limiter fails open and logs.
"""

from __future__ import annotations

import math
import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ai_resilience.errors import ConfigurationError, RateLimiterError
from ai_resilience.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_resilience.stores.base import SlidingWindowStore, WindowSnapshot

logger = get_logger(__name__)

WINDOW_SECONDS: dict[str, float] = {
    "minute": 60.0,
    "hour": 3600.0,
    "day": 86400.0,
}

# Per-operation quotas of the messaging AI features
DEFAULT_OPERATION_LIMITS: dict[str, dict[str, int]] = {
    "categorization": {"hour": 200, "day": 2000},
    "sentiment": {"hour": 200, "day": 2000},
    "faq_detection": {"hour": 200, "day": 2000},
    "voice_matching": {"hour": 50, "day": 500},
    "opportunity_scoring": {"hour": 100, "day": 1000},
    "daily_agent": {"hour": 2, "day": 2},
}


@dataclass
class RateLimiterConfig:
    """Configuration for the sliding-window rate limiter.

    Attributes:
        max_requests: Requests admitted per identity per window
        window_seconds: Window length in seconds
        key_prefix: Prefix of the per-identity window key
        operation_limits: Optional per-operation quotas,
            ``{operation: {window_name: max_requests}}`` with window names
            from ``WINDOW_SECONDS``
    """

    max_requests: int = 100
    window_seconds: float = 3600.0
    key_prefix: str = "ratelimit:"
    operation_limits: dict[str, dict[str, int]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ConfigurationError(
                "max_requests must be positive", key="rate_limit.max_requests"
            )
        if self.window_seconds <= 0:
            raise ConfigurationError(
                "window_seconds must be positive", key="rate_limit.window_seconds"
            )
        for operation, windows in self.operation_limits.items():
            if not isinstance(windows, dict):
                raise ConfigurationError(
                    "Operation limits must map window names to limits",
                    key=f"rate_limit.operation_limits.{operation}",
                )
            for window, limit in windows.items():
                key = f"rate_limit.operation_limits.{operation}.{window}"
                if window not in WINDOW_SECONDS:
                    raise ConfigurationError(f"Unknown rate limit window: {window}", key=key)
                if limit <= 0:
                    raise ConfigurationError("Operation limits must be positive", key=key)

    @classmethod
    def from_env(cls) -> RateLimiterConfig:
        """Create configuration from environment variables.

        ``AI_RESILIENCE_RATE_LIMIT_OPERATION_QUOTAS=1`` turns on
        ``DEFAULT_OPERATION_LIMITS``.
        """
        quotas = os.getenv("AI_RESILIENCE_RATE_LIMIT_OPERATION_QUOTAS", "").strip().lower()
        return cls(
            max_requests=int(os.getenv("AI_RESILIENCE_RATE_LIMIT_MAX_REQUESTS", "100")),
            window_seconds=float(
                os.getenv("AI_RESILIENCE_RATE_LIMIT_WINDOW_SECONDS", "3600")
            ),
            operation_limits=(
                {op: dict(w) for op, w in DEFAULT_OPERATION_LIMITS.items()}
                if quotas in ("1", "true", "yes", "on")
                else {}
            ),
        )


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request is admitted
        remaining: Requests left in the tightest window
        reset_at: Unix timestamp (seconds) when a slot frees up
        limit: Maximum requests of the reported window
        scope: Reported window, ``identity`` or ``{operation}:{window}``
    """

    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    scope: str = "identity"

    def retry_after(self, now: float | None = None) -> float:
        """Seconds until ``reset_at``, never negative."""
        current = time.time() if now is None else now
        return max(0.0, self.reset_at - current)


@dataclass(frozen=True)
class _Quota:
    scope: str
    key: str
    limit: int
    window_seconds: float


class SlidingWindowRateLimiter:
    """Per-identity sliding-window rate limiter.

    Example:
        >>> limiter = SlidingWindowRateLimiter(MemorySlidingWindowStore())
        >>> result = await limiter.check_limit("user123", "categorization")
        >>> if not result.allowed:
        ...     print(f"Retry in {result.retry_after():.0f}s")
    """

    def __init__(
        self,
        store: SlidingWindowStore,
        config: RateLimiterConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            store: Backing sliding window store
            config: Rate limiter configuration
            clock: Returns the current unix time in seconds
        """
        self._store = store
        self._config = config or RateLimiterConfig()
        self._clock = clock

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def _identity_quota(self, identity: str) -> _Quota:
        return _Quota(
            scope="identity",
            key=f"{self._config.key_prefix}{identity}",
            limit=self._config.max_requests,
            window_seconds=self._config.window_seconds,
        )

    def _operation_quotas(self, identity: str, operation: str | None) -> list[_Quota]:
        if operation is None:
            return []
        return [
            _Quota(
                scope=f"{operation}:{window}",
                key=f"{self._config.key_prefix}{identity}:{operation}:{window}",
                limit=limit,
                window_seconds=WINDOW_SECONDS[window],
            )
            for window, limit in self._config.operation_limits.get(operation, {}).items()
        ]

    def _result(
        self, quota: _Quota, snapshot: WindowSnapshot, now: float, allowed: bool, remaining: int
    ) -> RateLimitResult:
        anchor = snapshot.oldest if snapshot.oldest is not None else now
        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_at=float(math.ceil(anchor + quota.window_seconds)),
            limit=quota.limit,
            scope=quota.scope,
        )

    def _fail_open(self, quota: _Quota, now: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=quota.limit,
            reset_at=float(math.ceil(now + quota.window_seconds)),
            limit=quota.limit,
            scope=quota.scope,
        )

    def _denied(
        self, identity: str, quota: _Quota, snapshot: WindowSnapshot, now: float
    ) -> RateLimitResult:
        logger.info(
            "Rate limit exceeded",
            identity=identity,
            scope=quota.scope,
            count=snapshot.count,
            limit=quota.limit,
        )
        return self._result(quota, snapshot, now, allowed=False, remaining=0)

    async def _count(self, identity: str, quota: _Quota, now: float) -> WindowSnapshot | None:
        try:
            return await self._store.prune_and_count(quota.key, now, quota.window_seconds)
        except Exception as e:
            logger.error(
                "Rate limiter status lookup failed",
                identity=identity,
                scope=quota.scope,
                error=str(e),
            )
            return None

    async def check_limit(self, identity: str, operation: str | None = None) -> RateLimitResult:
        """Check and consume one request slot for ``identity``.

        Operation windows are inspected first, so a call denied by one of
        them consumes no slot anywhere. Concurrent callers may still race
        between that inspection and recording, in which case an earlier
        window keeps the slot of a call a later window denied.

        Args:
            identity: Caller identity
            operation: Operation name; selects the per-operation quotas

        Returns:
            RateLimitResult for the tightest window; ``allowed=True`` for
            windows whose store is unavailable
        """
        now = self._clock()
        operation_quotas = self._operation_quotas(identity, operation)

        for quota in operation_quotas:
            snapshot = await self._count(identity, quota, now)
            if snapshot is not None and snapshot.count >= quota.limit:
                return self._denied(identity, quota, snapshot, now)

        results: list[RateLimitResult] = []
        for quota in (self._identity_quota(identity), *operation_quotas):
            try:
                snapshot = await self._store.check_and_record(
                    quota.key, now, quota.window_seconds, quota.limit
                )
            except Exception as e:
                logger.error(
                    "Rate limiter store failed, allowing request",
                    identity=identity,
                    scope=quota.scope,
                    error=str(e),
                )
                results.append(self._fail_open(quota, now))
                continue

            if not snapshot.recorded:
                return self._denied(identity, quota, snapshot, now)
            results.append(
                self._result(
                    quota,
                    snapshot,
                    now,
                    allowed=True,
                    remaining=max(0, quota.limit - snapshot.count - 1),
                )
            )

        return min(results, key=lambda r: r.remaining)

    async def get_status(self, identity: str, operation: str | None = None) -> RateLimitResult:
        """Report the tightest window for ``identity`` without consuming a slot."""
        now = self._clock()
        results: list[RateLimitResult] = []
        for quota in (self._identity_quota(identity), *self._operation_quotas(identity, operation)):
            snapshot = await self._count(identity, quota, now)
            if snapshot is None:
                results.append(self._fail_open(quota, now))
                continue
            results.append(
                self._result(
                    quota,
                    snapshot,
                    now,
                    allowed=snapshot.count < quota.limit,
                    remaining=max(0, quota.limit - snapshot.count),
                )
            )

        denied = [r for r in results if not r.allowed]
        if denied:
            return denied[0]
        return min(results, key=lambda r: r.remaining)

    async def reset(self, identity: str, operation: str | None = None) -> None:
        """Clear windows for ``identity``.

        Without ``operation`` the identity window and every configured
        operation window are cleared; with it, only that operation's windows.

        Raises:
            RateLimiterError: If the store fails
        """
        if operation is not None:
            quotas = self._operation_quotas(identity, operation)
        else:
            quotas = [self._identity_quota(identity)]
            for name in self._config.operation_limits:
                quotas.extend(self._operation_quotas(identity, name))

        try:
            for quota in quotas:
                await self._store.delete(quota.key)
        except Exception as e:
            logger.error("Rate limiter reset failed", identity=identity, error=str(e))
            raise RateLimiterError(
                f"Failed to reset rate limit for {identity}", cause=e
            ) from e
        logger.info("Rate limit reset", identity=identity, operation=operation)

    def __repr__(self) -> str:
        return (
            f"SlidingWindowRateLimiter(max_requests={self._config.max_requests}, "
            f"window_seconds={self._config.window_seconds}, "
            f"operations={sorted(self._config.operation_limits)})"
        )
