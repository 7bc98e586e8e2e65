"""
In-process metrics for AI operations.

Counts operations by result source (cache, model, fallback), rate-limit
denials, model retries, tokens and cost, and keeps latency samples for
percentiles.
"""

from __future__ import annotations

import statistics
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

_MAX_SAMPLES = 1000


@dataclass
class MetricLabels:
    """Labels for a metric.

    Attributes:
        operation: Operation name
        source: Result source (cache, model, fallback)
        model: Model used
        variant: Experiment arm
    """

    operation: str | None = None
    source: str | None = None
    model: str | None = None
    variant: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {k: v for k, v in vars(self).items() if v is not None}

    def to_key(self) -> str:
        """Convert to string key for aggregation."""
        parts = [f"{k}={v}" for k, v in sorted(self.to_dict().items())]
        return ",".join(parts) if parts else "_default_"

    def matches(self, key: str) -> bool:
        """Whether an aggregation key carries every label set here."""
        wanted = self.to_dict()
        if not wanted:
            return True
        if key == "_default_":
            return False
        have = dict(kv.split("=", 1) for kv in key.split(","))
        return all(have.get(k) == v for k, v in wanted.items())


@dataclass
class MetricSnapshot:
    """Snapshot of current metrics.

    Attributes:
        total_operations: Completed operations
        cache_hits: Operations served from cache
        model_calls: Operations served by the model
        fallbacks: Operations served by a fallback heuristic
        failed_operations: Operations that raised to the caller
        rate_limited: Requests denied by the rate limiter
        retry_count: Model call retries
        total_tokens_in: Prompt tokens
        total_tokens_out: Completion tokens
        total_cost_cents: Cost in US cents
        latency_samples: Latency samples in seconds
    """

    total_operations: int = 0
    cache_hits: int = 0
    model_calls: int = 0
    fallbacks: int = 0
    failed_operations: int = 0
    rate_limited: int = 0
    retry_count: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost_cents: float = 0.0
    latency_samples: list[float] = field(default_factory=list)

    @property
    def cache_hit_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.cache_hits / self.total_operations

    @property
    def fallback_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.fallbacks / self.total_operations

    @property
    def latency_p50_ms(self) -> float:
        """Get 50th percentile latency."""
        if not self.latency_samples:
            return 0.0
        return statistics.median(self.latency_samples) * 1000

    @property
    def latency_p90_ms(self) -> float:
        """Get 90th percentile latency."""
        if not self.latency_samples:
            return 0.0
        if len(self.latency_samples) < 2:
            return self.latency_samples[0] * 1000
        return statistics.quantiles(self.latency_samples, n=10)[-1] * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "cache_hits": self.cache_hits,
            "model_calls": self.model_calls,
            "fallbacks": self.fallbacks,
            "failed_operations": self.failed_operations,
            "rate_limited": self.rate_limited,
            "retry_count": self.retry_count,
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "total_cost_cents": round(self.total_cost_cents, 2),
            "cache_hit_rate": self.cache_hit_rate,
            "fallback_rate": self.fallback_rate,
            "latency_p50_ms": self.latency_p50_ms,
            "latency_p90_ms": self.latency_p90_ms,
        }


class MetricsCollector:
    """Collects and aggregates operation metrics.

    Thread-safe; every ``record_*`` call is cheap and never raises.

    Example:
        >>> collector = MetricsCollector()
        >>> collector.record_operation(
        ...     MetricLabels(operation="categorization", source="model"),
        ...     latency=0.42,
        ...     cost_cents=0.01,
        ... )
        >>> collector.get_snapshot().model_calls
        1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self._by_source: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._failures: dict[str, int] = defaultdict(int)
        self._rate_limited: dict[str, int] = defaultdict(int)
        self._retry_count: dict[str, int] = defaultdict(int)
        self._tokens_in: dict[str, int] = defaultdict(int)
        self._tokens_out: dict[str, int] = defaultdict(int)
        self._cost_cents: dict[str, float] = defaultdict(float)
        self._latency_samples: dict[str, list[float]] = defaultdict(list)

    def record_operation(
        self,
        labels: MetricLabels,
        latency: float,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cost_cents: float = 0.0,
    ) -> None:
        """Record a completed operation.

        Args:
            labels: Metric labels; ``source`` selects the counter
            latency: Latency in seconds
            tokens_in: Prompt tokens
            tokens_out: Completion tokens
            cost_cents: Cost in US cents
        """
        key = labels.to_key()
        source = labels.source or "unknown"

        with self._lock:
            self._by_source[key][source] += 1
            self._tokens_in[key] += tokens_in
            self._tokens_out[key] += tokens_out
            self._cost_cents[key] += cost_cents

            samples = self._latency_samples[key]
            samples.append(latency)
            if len(samples) > _MAX_SAMPLES:
                del samples[: len(samples) - _MAX_SAMPLES]

    def record_failure(self, labels: MetricLabels) -> None:
        """Record an operation that raised to its caller."""
        with self._lock:
            self._failures[labels.to_key()] += 1

    def record_rate_limited(self, labels: MetricLabels) -> None:
        with self._lock:
            self._rate_limited[labels.to_key()] += 1

    def record_retry(self, labels: MetricLabels, attempt: int) -> None:
        """Record a model call retry.

        Args:
            labels: Metric labels
            attempt: Attempt number that failed
        """
        with self._lock:
            self._retry_count[labels.to_key()] += 1

    def get_snapshot(self, labels: MetricLabels | None = None) -> MetricSnapshot:
        """Aggregate every series whose labels include ``labels``.

        Args:
            labels: Optional labels to filter by

        Returns:
            MetricSnapshot with current values
        """
        selector = labels or MetricLabels()
        snapshot = MetricSnapshot()

        with self._lock:
            keys = (
                set(self._by_source)
                | set(self._failures)
                | set(self._rate_limited)
                | set(self._retry_count)
            )
            for key in keys:
                if not selector.matches(key):
                    continue
                by_source = self._by_source.get(key, {})
                snapshot.cache_hits += by_source.get("cache", 0)
                snapshot.model_calls += by_source.get("model", 0)
                snapshot.fallbacks += by_source.get("fallback", 0)
                snapshot.total_operations += sum(by_source.values())
                snapshot.failed_operations += self._failures.get(key, 0)
                snapshot.rate_limited += self._rate_limited.get(key, 0)
                snapshot.retry_count += self._retry_count.get(key, 0)
                snapshot.total_tokens_in += self._tokens_in.get(key, 0)
                snapshot.total_tokens_out += self._tokens_out.get(key, 0)
                snapshot.total_cost_cents += self._cost_cents.get(key, 0.0)
                snapshot.latency_samples.extend(self._latency_samples.get(key, []))

        return snapshot

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._by_source.clear()
            self._failures.clear()
            self._rate_limited.clear()
            self._retry_count.clear()
            self._tokens_in.clear()
            self._tokens_out.clear()
            self._cost_cents.clear()
            self._latency_samples.clear()
