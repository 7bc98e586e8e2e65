"""
Resilience layer - Rate limiting, retry, retry queue, circuit breaker, fallback.

This module provides the resilience patterns around AI operations:
- SlidingWindowRateLimiter: Per-identity sliding-window quota
- RetryPolicy: Bounded exponential backoff for model calls
- RetryQueue: Durable queue for failed side effects
- CircuitBreaker: Consecutive-failure breaker used by the queue
- FallbackRegistry: Rule-based heuristics for exhausted model calls
"""

from ai_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
)
from ai_resilience.resilience.fallback import (
    FallbackRegistry,
    categorize_message,
    score_opportunity,
    score_sentiment,
)
from ai_resilience.resilience.rate_limiter import (
    RateLimiterConfig,
    RateLimitResult,
    SlidingWindowRateLimiter,
)
from ai_resilience.resilience.retry import (
    JitterStrategy,
    RetryConfig,
    RetryPolicy,
    RetryResult,
    with_retry,
)
from ai_resilience.resilience.retry_queue import (
    ProcessResult,
    RetryQueue,
    RetryQueueConfig,
    RetryQueueItem,
    SideEffectType,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    # Fallback
    "FallbackRegistry",
    # Retry
    "JitterStrategy",
    # Retry queue
    "ProcessResult",
    # Rate limiter
    "RateLimitResult",
    "RateLimiterConfig",
    "RetryConfig",
    "RetryPolicy",
    "RetryQueue",
    "RetryQueueConfig",
    "RetryQueueItem",
    "RetryResult",
    "SideEffectType",
    "SlidingWindowRateLimiter",
    "categorize_message",
    "score_opportunity",
    "score_sentiment",
    "with_retry",
]
