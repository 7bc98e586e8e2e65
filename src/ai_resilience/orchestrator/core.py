"""编排器：缓存、限流、实验分流、有界重试与规则回退的统一入口。

Resilient call orchestrator.

The single entry point AI operations call instead of the model service. For
each call it consults the cache, checks the caller's rate limit and daily
budget, resolves an experiment arm, invokes the model with bounded retry and
schema validation, and falls back to a rule-based heuristic once retries are
exhausted. Cache writes, experiment outcomes and usage tracking run as
background writes and never fail the call.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Any

from ai_resilience.errors import (
    ConfigurationError,
    BudgetExceededError,
    ErrorClass,
    FallbackFailedError,
    ModelCallFailedError,
    RateLimitedError,
    StoreError,
)
from ai_resilience.experiments.assignment import choose_variant
from ai_resilience.experiments.types import OutcomeMetrics
from ai_resilience.models.service import ModelRequest, ModelResponse
from ai_resilience.models.validator import ResponseValidator
from ai_resilience.orchestrator.operations import default_operations
from ai_resilience.orchestrator.types import (
    OperationResult,
    OperationSpec,
    OrchestratorConfig,
    ResultSource,
)
from ai_resilience.resilience.retry import RetryPolicy
from ai_resilience.resilience.retry_queue import SideEffectType
from ai_resilience.telemetry.logger import get_logger, log_context
from ai_resilience.telemetry.metrics import MetricLabels
from ai_resilience.telemetry.usage import calculate_operation_cost
from ai_resilience.utils.background import BackgroundWriter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ai_resilience.cache.manager import ResultCache
    from ai_resilience.experiments.manager import ExperimentManager
    from ai_resilience.experiments.types import Variant
    from ai_resilience.models.service import ModelService
    from ai_resilience.resilience.rate_limiter import SlidingWindowRateLimiter
    from ai_resilience.resilience.retry_queue import RetryQueue, RetryQueueItem
    from ai_resilience.telemetry.metrics import MetricsCollector
    from ai_resilience.telemetry.usage import BudgetStatus, UsageTracker

logger = get_logger(__name__)


class _Resolved:
    """Model configuration chosen for one call."""

    __slots__ = ("experiment_id", "model", "parameters", "variant")

    def __init__(
        self,
        model: str,
        parameters: dict[str, Any],
        experiment_id: str | None = None,
        variant: Variant | None = None,
    ) -> None:
        self.model = model
        self.parameters = parameters
        self.experiment_id = experiment_id
        self.variant = variant


class ResilientOrchestrator:
    """Runs AI operations with caching, rate limiting, retry and fallback.

    Example:
        >>> orchestrator = ResilientOrchestrator(
        ...     HttpModelService("https://models.internal"),
        ...     ResultCache(MemoryDocumentStore()),
        ...     SlidingWindowRateLimiter(MemorySlidingWindowStore()),
        ... )
        >>> result = await orchestrator.execute(
        ...     "categorization", "Love your content!", "user123"
        ... )
        >>> result.data["category"], result.source
        ('fan_engagement', <ResultSource.MODEL: 'model'>)
    """

    def __init__(
        self,
        model_service: ModelService,
        cache: ResultCache,
        rate_limiter: SlidingWindowRateLimiter,
        experiments: ExperimentManager | None = None,
        usage_tracker: UsageTracker | None = None,
        metrics: MetricsCollector | None = None,
        config: OrchestratorConfig | None = None,
        *,
        retry_queue: RetryQueue | None = None,
        operations: dict[str, OperationSpec] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        background: BackgroundWriter | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            model_service: Model service collaborator
            cache: Result cache
            rate_limiter: Per-identity rate limiter
            experiments: Experiment manager; None disables experiments
            usage_tracker: Cost/usage tracker; None disables tracking
            metrics: In-process metrics collector
            config: Orchestrator configuration
            retry_queue: Queue that takes over failed cache writes
            operations: Operation specs; defaults to the built-in operations
            clock: Returns the current unix time in seconds
            sleep: Coroutine used to wait between model retries
            background: Writer for best-effort follow-up writes
        """
        self._model_service = model_service
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._experiments = experiments
        self._usage_tracker = usage_tracker
        self._metrics = metrics
        self._config = config or OrchestratorConfig()
        self._retry_queue = retry_queue
        self._clock = clock
        self._retry_policy = RetryPolicy(self._config.retry, sleep=sleep)
        self._background = background or BackgroundWriter("orchestrator")

        self._operations: dict[str, OperationSpec] = {}
        self._validators: dict[str, ResponseValidator] = {}
        for spec in (operations if operations is not None else default_operations()).values():
            self.register_operation(spec)

        if retry_queue is not None:
            retry_queue.register_processor(SideEffectType.CACHE_WRITE, self._replay_cache_write)

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def operations(self) -> list[str]:
        """Registered operation names."""
        return sorted(self._operations)

    def register_operation(self, spec: OperationSpec) -> None:
        """Register or replace an operation."""
        self._operations[spec.name] = spec
        self._validators[spec.name] = ResponseValidator(spec.schema)

    def get_operation(self, operation: str) -> OperationSpec:
        """Look up an operation spec.

        Raises:
            ConfigurationError: If the operation is not registered
        """
        spec = self._operations.get(operation)
        if spec is None:
            raise ConfigurationError(
                f"Unknown operation: {operation}", key=f"operations.{operation}"
            )
        return spec

    async def execute(self, operation: str, content: str, identity: str) -> OperationResult:
        """Run one operation.

        Args:
            operation: Registered operation name
            content: Input text
            identity: Caller identity

        Returns:
            OperationResult from the cache, the model, or the fallback

        Raises:
            RateLimitedError: If the caller is over its limit
            BudgetExceededError: If the caller spent its daily budget and the
                operation has no fallback
            ModelCallFailedError: If retries are exhausted and the operation
                has no fallback
            FallbackFailedError: If the fallback heuristic raised
            ConfigurationError: If the operation is not registered
        """
        spec = self.get_operation(operation)
        with log_context(
            request_id=uuid.uuid4().hex[:12], identity=identity, operation=operation
        ):
            return await self._execute(spec, content, identity)

    async def _execute(self, spec: OperationSpec, content: str, identity: str) -> OperationResult:
        started = time.perf_counter()
        operation = spec.name
        key = self._cache.generate_key(content, operation)

        entry = await self._cache.get(key, identity)
        if entry is not None:
            result = OperationResult(
                operation=operation,
                data=entry.result,
                source=ResultSource.CACHE,
                latency_ms=_elapsed_ms(started),
                cache_key=key,
            )
            self._record_metrics(result)
            logger.debug("Served from cache", cache_key=key)
            return result

        limit = await self._rate_limiter.check_limit(identity, operation)
        if not limit.allowed:
            if self._metrics is not None:
                self._metrics.record_rate_limited(MetricLabels(operation=operation))
            if self._config.fallback_on_rate_limit and spec.has_fallback:
                logger.info("Rate limited, answering with fallback")
                result = self._run_fallback(spec, content, started, key, attempts=0)
                self._record_metrics(result)
                return result
            raise RateLimitedError(
                identity=identity,
                limit=limit.limit,
                reset_at=limit.reset_at,
                retry_after=limit.retry_after(self._clock()),
                scope=limit.scope,
            )

        budget = await self._budget_status(identity)
        if budget is not None and budget.exceeded:
            if spec.has_fallback:
                logger.info("Daily budget spent, answering with fallback")
                result = self._run_fallback(spec, content, started, key, attempts=0)
                self._record_metrics(result)
                return result
            if self._metrics is not None:
                self._metrics.record_failure(MetricLabels(operation=operation))
            raise BudgetExceededError(
                identity=identity,
                spent_cents=budget.total_cost_cents,
                budget_cents=budget.budget_limit_cents,
            )

        resolved = await self._resolve_model(spec, identity)
        request = ModelRequest(
            operation=operation,
            content=content,
            model=resolved.model,
            parameters=resolved.parameters,
            identity=identity,
        )
        validator = self._validators[operation]

        async def attempt() -> tuple[ModelResponse, dict[str, Any]]:
            try:
                response = await self._model_service.invoke(request)
            except ModelCallFailedError:
                raise
            except Exception as e:
                raise ModelCallFailedError(
                    f"Model call failed: {e}",
                    error_class=ErrorClass.OTHER,
                    operation=operation,
                    cause=e,
                ) from e
            return response, validator.validate_or_raise(response.output, operation)

        def on_retry(attempt_no: int, error: Exception, delay: float) -> None:
            logger.warning(
                "Model call failed, retrying",
                attempt=attempt_no,
                delay_ms=round(delay * 1000),
                error=str(error),
            )
            if self._metrics is not None:
                self._metrics.record_retry(
                    MetricLabels(operation=operation, model=resolved.model), attempt_no
                )

        outcome = await self._retry_policy.execute(attempt, on_retry=on_retry)

        if outcome.success:
            response, data = outcome.value
            result = self._model_result(spec, response, data, resolved, outcome.attempts)
            result.latency_ms = _elapsed_ms(started)
            result.cache_key = key
            self._after_model_success(result, response, identity, key)
        else:
            error = outcome.error
            logger.warning(
                "Model retries exhausted",
                attempts=outcome.attempts,
                error=str(error),
            )
            if not spec.has_fallback:
                if self._metrics is not None:
                    self._metrics.record_failure(MetricLabels(operation=operation))
                raise ModelCallFailedError(
                    f"{operation} failed after {outcome.attempts} attempts: {error}",
                    error_class=getattr(error, "error_class", None),
                    attempts=outcome.attempts,
                    operation=operation,
                    cause=error,
                ) from error
            result = self._run_fallback(spec, content, started, key, outcome.attempts)
            result.experiment_id = resolved.experiment_id
            result.variant = resolved.variant.value if resolved.variant else None
            if self._config.cache_fallback_results:
                self._spawn_cache_write(key, identity, spec, result.data)

        if (
            self._experiments is not None
            and result.experiment_id is not None
            and resolved.variant is not None
        ):
            self._background.spawn(
                self._experiments.record_outcome(
                    result.experiment_id,
                    resolved.variant,
                    OutcomeMetrics(
                        latency_ms=result.latency_ms,
                        cost_cents=result.cost_cents,
                        success=result.source == ResultSource.MODEL,
                    ),
                ),
                description="experiment outcome",
            )

        self._record_metrics(result)
        return result

    async def _budget_status(self, identity: str) -> BudgetStatus | None:
        if self._usage_tracker is None or not self._config.enforce_budget:
            return None
        try:
            return await self._usage_tracker.get_budget_status(identity)
        except Exception as e:
            logger.error("Budget lookup failed, allowing call", error=str(e))
            return None

    async def _resolve_model(self, spec: OperationSpec, identity: str) -> _Resolved:
        resolved = _Resolved(spec.default_model, dict(spec.default_parameters))
        if self._experiments is None:
            return resolved

        experiment = await self._experiments.active_for(spec.name)
        if experiment is None:
            return resolved

        variant = choose_variant(identity, experiment.split_ratio)
        variant_config = experiment.variant_config(variant)
        resolved.model = variant_config.model
        resolved.parameters = {**resolved.parameters, **variant_config.parameters}
        resolved.experiment_id = experiment.id
        resolved.variant = variant
        logger.debug(
            "Experiment variant assigned",
            experiment_id=experiment.id,
            variant=variant.value,
            model=variant_config.model,
        )
        return resolved

    def _model_result(
        self,
        spec: OperationSpec,
        response: ModelResponse,
        data: dict[str, Any],
        resolved: _Resolved,
        attempts: int,
    ) -> OperationResult:
        model = response.model or resolved.model
        cost = 0.0
        if response.usage is not None:
            cost = calculate_operation_cost(
                model, response.usage.prompt_tokens, response.usage.completion_tokens
            )
        return OperationResult(
            operation=spec.name,
            data=data,
            source=ResultSource.MODEL,
            variant=resolved.variant.value if resolved.variant else None,
            experiment_id=resolved.experiment_id,
            model=model,
            attempts=attempts,
            cost_cents=cost,
        )

    def _after_model_success(
        self,
        result: OperationResult,
        response: ModelResponse,
        identity: str,
        key: str,
    ) -> None:
        spec = self._operations[result.operation]
        self._spawn_cache_write(key, identity, spec, result.data)

        if self._usage_tracker is not None and response.usage is not None:
            self._background.spawn(
                self._usage_tracker.track(
                    identity,
                    result.operation,
                    result.model or spec.default_model,
                    response.usage.prompt_tokens,
                    response.usage.completion_tokens,
                ),
                description="usage tracking",
            )

    def _run_fallback(
        self,
        spec: OperationSpec,
        content: str,
        started: float,
        key: str,
        attempts: int,
    ) -> OperationResult:
        fallback = spec.fallback
        if fallback is None:
            raise ConfigurationError(f"No fallback for {spec.name}", key=f"operations.{spec.name}")
        logger.info("Using rule-based fallback")
        try:
            data = dict(fallback(content))
        except Exception as e:
            logger.error("Fallback heuristic failed", error=str(e))
            if self._metrics is not None:
                self._metrics.record_failure(MetricLabels(operation=spec.name))
            raise FallbackFailedError(
                f"Fallback for {spec.name} failed: {e}",
                attempts=attempts,
                operation=spec.name,
                cause=e,
            ) from e

        data["fallback"] = True
        return OperationResult(
            operation=spec.name,
            data=data,
            source=ResultSource.FALLBACK,
            attempts=attempts,
            latency_ms=_elapsed_ms(started),
            cache_key=key,
        )

    def _spawn_cache_write(
        self,
        key: str,
        identity: str,
        spec: OperationSpec,
        data: dict[str, Any],
    ) -> None:
        if not self._cache.is_caching_enabled(spec.name):
            return
        if spec.ttl is not None and spec.ttl <= 0:
            return
        self._background.spawn(
            self._write_cache(key, identity, spec, data),
            description="cache write",
        )

    async def _write_cache(
        self,
        key: str,
        identity: str,
        spec: OperationSpec,
        data: dict[str, Any],
    ) -> None:
        try:
            await self._cache.set(
                key,
                identity,
                spec.name,
                data,
                ttl=spec.ttl,
                raise_on_error=self._retry_queue is not None,
            )
        except StoreError:
            if self._retry_queue is None:
                raise
            item_id = await self._retry_queue.enqueue(
                SideEffectType.CACHE_WRITE,
                {
                    "key": key,
                    "identity": identity,
                    "operation": spec.name,
                    "result": data,
                    "ttl": spec.ttl,
                },
            )
            logger.info("Cache write handed to retry queue", item_id=item_id)

    async def _replay_cache_write(self, item: RetryQueueItem) -> bool:
        payload = item.payload
        return await self._cache.set(
            payload["key"],
            payload["identity"],
            payload["operation"],
            payload["result"],
            ttl=payload.get("ttl"),
            raise_on_error=True,
        )

    def _record_metrics(self, result: OperationResult) -> None:
        if self._metrics is None:
            return
        self._metrics.record_operation(
            MetricLabels(
                operation=result.operation,
                source=result.source.value,
                model=result.model,
                variant=result.variant,
            ),
            latency=result.latency_ms / 1000,
            cost_cents=result.cost_cents,
        )

    async def drain(self) -> None:
        """Wait for pending background writes (cache, outcomes, usage)."""
        await self._background.drain()
        await self._cache.drain()

    async def close(self) -> None:
        """Drain background writes and close the model service."""
        await self.drain()
        await self._model_service.close()

    async def __aenter__(self) -> ResilientOrchestrator:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
