"""错误体系：为弹性层提供结构化错误类型。

Error hierarchy for ai-resilience-python.
"""

from ai_resilience.errors.base import (
    AiResilienceError,
    BudgetExceededError,
    CircuitOpenError,
    ConfigurationError,
    ErrorContext,
    ExperimentNotFoundError,
    FallbackFailedError,
    ModelCallFailedError,
    ModelResponseInvalidError,
    QueueCapacityExceededError,
    RateLimitedError,
    RateLimiterError,
    StoreError,
)
from ai_resilience.errors.classification import (
    ErrorClass,
    classify_http_status,
    is_retryable,
)

__all__ = [
    # Base errors
    "AiResilienceError",
    "BudgetExceededError",
    "CircuitOpenError",
    "ConfigurationError",
    # Classification
    "ErrorClass",
    "ErrorContext",
    "ExperimentNotFoundError",
    "FallbackFailedError",
    "ModelCallFailedError",
    "ModelResponseInvalidError",
    "QueueCapacityExceededError",
    "RateLimitedError",
    "RateLimiterError",
    "StoreError",
    "classify_http_status",
    "is_retryable",
]
