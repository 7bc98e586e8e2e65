"""
Settings aggregation.

``ResilienceSettings`` groups every component configuration. It can be built
from defaults, from ``AI_RESILIENCE_*`` environment variables, or from a YAML
document shaped like::

    rate_limit:
      max_requests: 100
      window_seconds: 3600
      operation_limits:
        voice_matching: {hour: 50, day: 500}
    cache:
      default_ttl: 3600
      operation_ttls:
        categorization: 86400
    retry_queue:
      max_retries: 5
      backoff_delays: [1, 2, 4, 8, 16, 30]
    retry:
      max_retries: 3
      initial_delay_ms: 100
    experiments:
      min_sample_size: 30
      weights: {success_rate: 0.5, cost: 0.3, latency: 0.2}
    usage:
      daily_budget_cents: 500
    orchestrator:
      fallback_on_rate_limit: false
      enforce_budget: true
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from ai_resilience.cache.manager import DEFAULT_OPERATION_TTLS, CacheConfig
from ai_resilience.errors import ConfigurationError, ErrorClass
from ai_resilience.experiments.types import ExperimentSettings, ScoringWeights
from ai_resilience.orchestrator.types import OrchestratorConfig
from ai_resilience.resilience.rate_limiter import RateLimiterConfig
from ai_resilience.resilience.retry import RetryConfig
from ai_resilience.resilience.retry_queue import RetryQueueConfig
from ai_resilience.telemetry.usage import UsageConfig


def _build(cls: type, section: str, data: Any) -> Any:
    """Construct a config dataclass from a mapping, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping", key=section)

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}': {', '.join(unknown)}",
            key=f"{section}.{unknown[0]}",
        )
    try:
        return cls(**data)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid '{section}' settings: {e}", key=section) from e


def _retry_config(data: Any) -> RetryConfig:
    if isinstance(data, dict) and "retry_on_error_class" in data:
        data = dict(data)
        try:
            data["retry_on_error_class"] = {
                ErrorClass(v) for v in data["retry_on_error_class"]
            }
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown error class: {e}", key="retry.retry_on_error_class"
            ) from e
    return _build(RetryConfig, "retry", data)


def _cache_config(data: Any) -> CacheConfig:
    if isinstance(data, dict) and "operation_ttls" in data:
        data = dict(data)
        data["operation_ttls"] = {**DEFAULT_OPERATION_TTLS, **(data["operation_ttls"] or {})}
    return _build(CacheConfig, "cache", data)


def _experiment_settings(data: Any) -> ExperimentSettings:
    if isinstance(data, dict) and isinstance(data.get("weights"), dict):
        data = dict(data)
        data["weights"] = _build(ScoringWeights, "experiments.weights", data["weights"])
    return _build(ExperimentSettings, "experiments", data)


@dataclass
class ResilienceSettings:
    """All component configurations.

    Example:
        >>> settings = ResilienceSettings.from_yaml("resilience.yaml")
        >>> limiter = SlidingWindowRateLimiter(store, settings.rate_limit)
    """

    rate_limit: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry_queue: RetryQueueConfig = field(default_factory=RetryQueueConfig)
    experiments: ExperimentSettings = field(default_factory=ExperimentSettings)
    usage: UsageConfig = field(default_factory=UsageConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    @property
    def retry(self) -> RetryConfig:
        """Model-call retry policy."""
        return self.orchestrator.retry

    @classmethod
    def from_env(cls) -> ResilienceSettings:
        """Create settings from ``AI_RESILIENCE_*`` environment variables.

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        try:
            return cls(
                rate_limit=RateLimiterConfig.from_env(),
                cache=CacheConfig.from_env(),
                retry_queue=RetryQueueConfig.from_env(),
                experiments=ExperimentSettings.from_env(),
                usage=UsageConfig.from_env(),
                orchestrator=OrchestratorConfig.from_env(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment setting: {e}") from e

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ResilienceSettings:
        """Create settings from a nested mapping.

        Missing sections and keys keep their defaults.

        Raises:
            ConfigurationError: On unknown sections, unknown keys or invalid values
        """
        data = dict(data or {})
        sections = {
            "rate_limit",
            "cache",
            "retry_queue",
            "retry",
            "experiments",
            "usage",
            "orchestrator",
        }
        unknown = sorted(set(data) - sections)
        if unknown:
            raise ConfigurationError(
                f"Unknown settings sections: {', '.join(unknown)}", key=unknown[0]
            )

        orchestrator_data = dict(data.get("orchestrator") or {})
        retry = _retry_config(data.get("retry", orchestrator_data.pop("retry", None)))
        orchestrator = _build(OrchestratorConfig, "orchestrator", orchestrator_data)
        orchestrator.retry = retry

        return cls(
            rate_limit=_build(RateLimiterConfig, "rate_limit", data.get("rate_limit")),
            cache=_cache_config(data.get("cache")),
            retry_queue=_build(RetryQueueConfig, "retry_queue", data.get("retry_queue")),
            experiments=_experiment_settings(data.get("experiments")),
            usage=_build(UsageConfig, "usage", data.get("usage")),
            orchestrator=orchestrator,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> ResilienceSettings:
        """Load settings from a YAML file.

        Raises:
            ConfigurationError: If the file is unreadable, not valid YAML, or
                holds invalid settings
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must hold a mapping")
        return cls.from_dict(data)
