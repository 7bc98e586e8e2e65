"""AI 操作弹性与实验层：限流、结果缓存、持久化重试队列、A/B 实验与弹性编排。

ai-resilience-python: resilience and experimentation layer for AI operations.

Bounds how often callers invoke the model service, caches results per
operation, retries failed side effects durably, falls back to deterministic
heuristics when the model is unavailable, and runs A/B comparisons between
model configurations.
"""
from __future__ import annotations

from ai_resilience._features import HAS_REDIS, require_extra
from ai_resilience.cache import CacheConfig, ResultCache
from ai_resilience.config import ResilienceSettings
from ai_resilience.errors import (
    AiResilienceError,
    BudgetExceededError,
    FallbackFailedError,
    ModelCallFailedError,
    RateLimitedError,
)
from ai_resilience.experiments import ExperimentManager, OutcomeMetrics, VariantConfig
from ai_resilience.models import HttpModelService, ModelService
from ai_resilience.orchestrator import (
    OperationResult,
    OperationSpec,
    OrchestratorConfig,
    ResilientOrchestrator,
    ResultSource,
)
from ai_resilience.resilience import (
    RetryQueue,
    RetryQueueConfig,
    SideEffectType,
    SlidingWindowRateLimiter,
)

__version__ = "0.1.0"

__all__ = [
    # Feature flags
    "HAS_REDIS",
    # Errors
    "AiResilienceError",
    "BudgetExceededError",
    # Cache
    "CacheConfig",
    # Experiments
    "ExperimentManager",
    "FallbackFailedError",
    # Models
    "HttpModelService",
    "ModelCallFailedError",
    "ModelService",
    # Orchestrator
    "OperationResult",
    "OperationSpec",
    "OrchestratorConfig",
    "OutcomeMetrics",
    "RateLimitedError",
    # Config
    "ResilienceSettings",
    "ResilientOrchestrator",
    "ResultCache",
    "ResultSource",
    # Retry queue
    "RetryQueue",
    "RetryQueueConfig",
    "SideEffectType",
    "SlidingWindowRateLimiter",
    "VariantConfig",
    "__version__",
    "require_extra",
]
