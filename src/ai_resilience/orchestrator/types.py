"""
Orchestrator data types.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ai_resilience.resilience.retry import RetryConfig

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel


class ResultSource(str, Enum):
    """Where an operation result came from."""

    CACHE = "cache"
    MODEL = "model"
    FALLBACK = "fallback"


@dataclass
class OperationSpec:
    """How the orchestrator runs one operation.

    Attributes:
        name: Operation name, also the cache TTL and experiment key
        schema: Pydantic model the model output must validate against
        default_model: Model used when no experiment governs the operation
        default_parameters: Model parameters used with ``default_model``
        fallback: Pure heuristic ``content -> result``; None disables fallback
        ttl: Cache TTL override in seconds; None uses the cache policy
    """

    name: str
    schema: type[BaseModel]
    default_model: str
    default_parameters: dict[str, Any] = field(default_factory=dict)
    fallback: Callable[[str], dict[str, Any]] | None = None
    ttl: float | None = None

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not None


@dataclass
class OperationResult:
    """Result of ``ResilientOrchestrator.execute``.

    Attributes:
        operation: Operation name
        data: Validated result payload (``data["fallback"]`` is True for
            fallback results)
        source: Where the result came from
        variant: Experiment arm that served the call, if any
        experiment_id: Experiment governing the call, if any
        model: Model used, None for cache and fallback results
        attempts: Model invocations made
        latency_ms: End-to-end latency in milliseconds
        cost_cents: Model cost in US cents
        cache_key: Fingerprint of the content
    """

    operation: str
    data: dict[str, Any]
    source: ResultSource
    variant: str | None = None
    experiment_id: str | None = None
    model: str | None = None
    attempts: int = 0
    latency_ms: float = 0.0
    cost_cents: float = 0.0
    cache_key: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK

    @property
    def is_cached(self) -> bool:
        return self.source == ResultSource.CACHE

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "data": self.data,
            "source": self.source.value,
            "variant": self.variant,
            "experiment_id": self.experiment_id,
            "model": self.model,
            "attempts": self.attempts,
            "latency_ms": self.latency_ms,
            "cost_cents": self.cost_cents,
            "is_fallback": self.is_fallback,
        }


@dataclass
class OrchestratorConfig:
    """Orchestrator configuration.

    Attributes:
        fallback_on_rate_limit: Answer rate-limited calls with the fallback
            heuristic instead of raising RateLimitedError
        cache_fallback_results: Write fallback results to the cache
        enforce_budget: Refuse model calls once the usage tracker reports the
            caller's daily budget as spent
        retry: Model-call retry policy
    """

    fallback_on_rate_limit: bool = False
    cache_fallback_results: bool = True
    enforce_budget: bool = True
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        if isinstance(self.retry, dict):
            self.retry = RetryConfig(**self.retry)

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Create configuration from environment variables."""
        return cls(
            fallback_on_rate_limit=_env_flag("AI_RESILIENCE_FALLBACK_ON_RATE_LIMIT", False),
            cache_fallback_results=_env_flag("AI_RESILIENCE_CACHE_FALLBACK_RESULTS", True),
            enforce_budget=_env_flag("AI_RESILIENCE_ENFORCE_BUDGET", True),
            retry=RetryConfig.from_env(),
        )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
