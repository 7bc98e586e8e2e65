"""End-to-end tests for the resilient orchestrator."""

from __future__ import annotations

from typing import Any

import pytest

from ai_resilience.cache import CacheConfig, ResultCache
from ai_resilience.errors import (
    BudgetExceededError,
    FallbackFailedError,
    ModelCallFailedError,
    RateLimitedError,
    StoreError,
)
from ai_resilience.experiments import ExperimentManager, ExperimentSettings, VariantConfig
from ai_resilience.models.schemas import CategorizationResult
from ai_resilience.models.service import TokenUsage
from ai_resilience.orchestrator import (
    OperationSpec,
    OrchestratorConfig,
    ResilientOrchestrator,
    ResultSource,
)
from ai_resilience.resilience import (
    RateLimiterConfig,
    RetryConfig,
    RetryQueue,
    RetryQueueConfig,
    SlidingWindowRateLimiter,
)
from ai_resilience.stores import MemoryDocumentStore, MemorySlidingWindowStore
from ai_resilience.telemetry import MetricLabels, MetricsCollector, UsageConfig, UsageTracker
from tests.conftest import FakeClock, ScriptedModelService, model_failure, no_sleep


class FlakyDocumentStore(MemoryDocumentStore):
    """Document store whose writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = True

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        if self.failing:
            raise OSError("store unavailable")
        await super().set(path, data, merge=merge)


def build(
    service: ScriptedModelService,
    clock: FakeClock,
    *,
    max_requests: int = 100,
    operation_limits: dict[str, dict[str, int]] | None = None,
    cache_store: MemoryDocumentStore | None = None,
    config: OrchestratorConfig | None = None,
    **kwargs: Any,
) -> tuple[ResilientOrchestrator, ResultCache, SlidingWindowRateLimiter]:
    cache = ResultCache(cache_store or MemoryDocumentStore(), CacheConfig(), clock=clock)
    limiter = SlidingWindowRateLimiter(
        MemorySlidingWindowStore(),
        RateLimiterConfig(
            max_requests=max_requests,
            window_seconds=3600,
            operation_limits=operation_limits or {},
        ),
        clock=clock,
    )
    orchestrator = ResilientOrchestrator(
        service,
        cache,
        limiter,
        config=config or OrchestratorConfig(retry=RetryConfig(max_retries=3)),
        clock=clock,
        sleep=no_sleep,
        **kwargs,
    )
    return orchestrator, cache, limiter


class TestOrchestratorFlow:
    """Tests for the cache, rate limit, retry and fallback flow."""

    @pytest.mark.asyncio
    async def test_model_success_is_validated_and_cached(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """A model result is validated, returned and written to the cache."""
        service = ScriptedModelService([categorization_output])
        orchestrator, cache, _ = build(service, clock)

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL
        assert result.attempts == 1
        assert result.model == "gpt-4o-mini"
        assert result.data["category"] == "fan_engagement"
        assert result.data["sentiment_score"] == 0.8

        key = cache.generate_key("Love your content!", "categorization")
        entry = await cache.get(key, "user123")
        assert entry is not None
        assert entry.result == result.data

    @pytest.mark.asyncio
    async def test_cache_hit_skips_rate_limit(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """A cached result is served even when the caller is rate limited."""
        service = ScriptedModelService([categorization_output])
        orchestrator, cache, limiter = build(service, clock, max_requests=1)

        key = cache.generate_key("Love your content!", "categorization")
        await cache.set(key, "user123", "categorization", {"category": "fan_engagement"})
        await limiter.check_limit("user123")

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert result.source == ResultSource.CACHE
        assert result.is_cached
        assert result.data == {"category": "fan_engagement"}
        assert service.calls == 0
        status = await limiter.get_status("user123")
        assert status.remaining == 0

    @pytest.mark.asyncio
    async def test_fail_three_times_then_succeed(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """With max_retries=3 the fourth invocation's result is returned."""
        service = ScriptedModelService(
            [model_failure(), model_failure(), model_failure(), categorization_output]
        )
        orchestrator, _, _ = build(service, clock)

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert service.calls == 4
        assert result.source == ResultSource.MODEL
        assert result.attempts == 4
        assert not result.is_fallback

    @pytest.mark.asyncio
    async def test_invalid_response_is_retried(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """Schema violations count as failed attempts."""
        service = ScriptedModelService(
            [{"category": "not-a-category"}, "not json", categorization_output]
        )
        orchestrator, _, _ = build(service, clock)

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert service.calls == 3
        assert result.source == ResultSource.MODEL

    @pytest.mark.asyncio
    async def test_always_failing_model_returns_fallback(self, clock: FakeClock) -> None:
        """Exhausted retries fall back to the keyword heuristic."""
        service = ScriptedModelService([model_failure()])
        orchestrator, cache, _ = build(service, clock)

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert service.calls == 4
        assert result.source == ResultSource.FALLBACK
        assert result.is_fallback
        assert result.data["fallback"] is True
        assert result.data["category"] == "fan_engagement"
        assert result.attempts == 4

        key = cache.generate_key("Love your content!", "categorization")
        entry = await cache.get(key, "user123")
        assert entry is not None
        assert entry.result["fallback"] is True

    @pytest.mark.asyncio
    async def test_fallback_results_not_cached_when_disabled(self, clock: FakeClock) -> None:
        """cache_fallback_results=False keeps fallback answers out of the cache."""
        service = ScriptedModelService([model_failure()])
        config = OrchestratorConfig(
            cache_fallback_results=False, retry=RetryConfig(max_retries=1)
        )
        orchestrator, cache, _ = build(service, clock, config=config)

        await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        key = cache.generate_key("Love your content!", "categorization")
        assert await cache.get(key, "user123") is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_treated_as_call_failure(
        self, clock: FakeClock
    ) -> None:
        """Any exception from the model service is retried like a call failure."""
        service = ScriptedModelService([RuntimeError("connection reset")])
        orchestrator, _, _ = build(service, clock)

        result = await orchestrator.execute("sentiment", "This is awful", "user123")
        await orchestrator.drain()

        assert service.calls == 4
        assert result.is_fallback
        assert result.data["sentiment"] == "negative"

    @pytest.mark.asyncio
    async def test_no_fallback_raises_model_call_failed(self, clock: FakeClock) -> None:
        """Operations without a fallback surface the model failure."""
        service = ScriptedModelService([model_failure()])
        orchestrator, _, _ = build(service, clock)

        with pytest.raises(ModelCallFailedError) as exc_info:
            await orchestrator.execute("faq_detection", "What camera do you use?", "user123")

        assert exc_info.value.attempts == 4
        assert exc_info.value.operation == "faq_detection"
        assert service.calls == 4

    @pytest.mark.asyncio
    async def test_failing_fallback_raises_fallback_failed(self, clock: FakeClock) -> None:
        """A raising fallback heuristic becomes FallbackFailedError."""

        def broken(_: str) -> dict[str, Any]:
            raise ValueError("heuristic bug")

        service = ScriptedModelService([model_failure()])
        orchestrator, _, _ = build(service, clock)
        orchestrator.register_operation(
            OperationSpec(
                name="categorization",
                schema=CategorizationResult,
                default_model="gpt-4o-mini",
                fallback=broken,
            )
        )

        with pytest.raises(FallbackFailedError):
            await orchestrator.execute("categorization", "Hello", "user123")


class TestOrchestratorRateLimit:
    """Tests for rate-limited calls."""

    @pytest.mark.asyncio
    async def test_rate_limited_raises_without_calling_model(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """A denied caller gets RateLimitedError with retry-after information."""
        service = ScriptedModelService([categorization_output])
        orchestrator, _, _ = build(service, clock, max_requests=1)

        await orchestrator.execute("categorization", "first message", "user123")
        await orchestrator.drain()
        clock.advance(10)

        with pytest.raises(RateLimitedError) as exc_info:
            await orchestrator.execute("categorization", "second message", "user123")

        error = exc_info.value
        assert service.calls == 1
        assert error.limit == 1
        assert error.retry_after == pytest.approx(3590)
        assert "3590 seconds" in error.user_message

    @pytest.mark.asyncio
    async def test_rate_limit_is_per_identity(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """One caller's quota does not affect another's."""
        service = ScriptedModelService([categorization_output])
        orchestrator, _, _ = build(service, clock, max_requests=1)

        await orchestrator.execute("categorization", "first message", "user123")
        await orchestrator.drain()
        result = await orchestrator.execute("categorization", "first message", "user456")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL

    @pytest.mark.asyncio
    async def test_rate_limited_fallback_when_enabled(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """fallback_on_rate_limit answers denied callers with the heuristic."""
        service = ScriptedModelService([categorization_output])
        config = OrchestratorConfig(fallback_on_rate_limit=True)
        orchestrator, _, _ = build(service, clock, max_requests=1, config=config)

        await orchestrator.execute("categorization", "first message", "user123")
        await orchestrator.drain()
        result = await orchestrator.execute("categorization", "Thanks so much!", "user123")
        await orchestrator.drain()

        assert result.is_fallback
        assert result.attempts == 0
        assert service.calls == 1


    @pytest.mark.asyncio
    async def test_operation_quota_is_separate_per_operation(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """An operation's own hourly quota does not block other operations."""
        service = ScriptedModelService([categorization_output])
        orchestrator, _, _ = build(
            service, clock, operation_limits={"categorization": {"hour": 1, "day": 10}}
        )
        orchestrator.register_operation(
            OperationSpec(name="tagging", schema=CategorizationResult, default_model="gpt-4o-mini")
        )

        await orchestrator.execute("categorization", "first message", "user123")
        with pytest.raises(RateLimitedError) as exc_info:
            await orchestrator.execute("categorization", "second message", "user123")
        result = await orchestrator.execute("tagging", "second message", "user123")
        await orchestrator.drain()

        assert exc_info.value.scope == "categorization:hour"
        assert exc_info.value.limit == 1
        assert result.source == ResultSource.MODEL
        assert service.calls == 2


class TestOrchestratorBudget:
    """Tests for the daily budget gate."""

    async def _spent_tracker(self, clock: FakeClock, store: MemoryDocumentStore) -> UsageTracker:
        tracker = UsageTracker(store, UsageConfig(daily_budget_cents=1.0), clock=clock)
        await tracker.track("user123", "categorization", "gpt-4-turbo", 1000, 500)
        return tracker

    @pytest.mark.asyncio
    async def test_spent_budget_answers_with_fallback(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        service = ScriptedModelService([categorization_output])
        tracker = await self._spent_tracker(clock, MemoryDocumentStore())
        orchestrator, cache, _ = build(service, clock, usage_tracker=tracker)

        result = await orchestrator.execute("categorization", "Thanks so much!", "user123")
        await orchestrator.drain()

        assert result.is_fallback
        assert result.attempts == 0
        assert service.calls == 0
        key = cache.generate_key("Thanks so much!", "categorization")
        assert await cache.get(key, "user123") is None

    @pytest.mark.asyncio
    async def test_spent_budget_without_fallback_raises(self, clock: FakeClock) -> None:
        service = ScriptedModelService([{"is_faq": False}])
        tracker = await self._spent_tracker(clock, MemoryDocumentStore())
        orchestrator, _, _ = build(service, clock, usage_tracker=tracker)

        with pytest.raises(BudgetExceededError) as exc_info:
            await orchestrator.execute("faq_detection", "What camera do you use?", "user123")

        assert exc_info.value.spent_cents == 2.5
        assert exc_info.value.budget_cents == 1.0
        assert service.calls == 0

    @pytest.mark.asyncio
    async def test_other_identities_unaffected(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        service = ScriptedModelService([categorization_output])
        tracker = await self._spent_tracker(clock, MemoryDocumentStore())
        orchestrator, _, _ = build(service, clock, usage_tracker=tracker)

        result = await orchestrator.execute("categorization", "Thanks so much!", "user456")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL

    @pytest.mark.asyncio
    async def test_budget_lookup_failure_allows_call(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        class BrokenStore(MemoryDocumentStore):
            async def get(self, path: str) -> dict[str, Any] | None:
                raise ConnectionError("store down")

        service = ScriptedModelService([categorization_output])
        tracker = UsageTracker(BrokenStore(), clock=clock)
        orchestrator, _, _ = build(service, clock, usage_tracker=tracker)

        result = await orchestrator.execute("categorization", "Thanks so much!", "user123")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL

    @pytest.mark.asyncio
    async def test_budget_gate_can_be_disabled(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        service = ScriptedModelService([categorization_output])
        tracker = await self._spent_tracker(clock, MemoryDocumentStore())
        orchestrator, _, _ = build(
            service,
            clock,
            usage_tracker=tracker,
            config=OrchestratorConfig(enforce_budget=False),
        )

        result = await orchestrator.execute("categorization", "Thanks so much!", "user123")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL

class TestOrchestratorSideEffects:
    """Tests for experiments, usage and metrics writes."""

    @pytest.mark.asyncio
    async def test_experiment_variant_and_outcome(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """An active experiment picks the model and receives the outcome."""
        experiments = ExperimentManager(
            MemoryDocumentStore(), ExperimentSettings(min_sample_size=1), clock=clock
        )
        experiment_id = await experiments.create(
            "Categorization model comparison",
            "categorization",
            VariantConfig(model="model-a"),
            VariantConfig(model="model-b", parameters={"temperature": 0.1}),
            split_ratio=1.0,
        )
        service = ScriptedModelService([categorization_output])
        orchestrator, _, _ = build(service, clock, experiments=experiments)

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert result.variant == "A"
        assert result.experiment_id == experiment_id
        assert service.requests[0].model == "model-a"

        config = await experiments.get(experiment_id)
        assert config is not None
        assert config.results.variant_a.total_operations == 1
        assert config.results.variant_a.success_rate == 1.0
        assert config.results.variant_b.total_operations == 0

    @pytest.mark.asyncio
    async def test_fallback_outcome_recorded_as_failure(self, clock: FakeClock) -> None:
        """A fallback answer counts as an unsuccessful experiment outcome."""
        experiments = ExperimentManager(MemoryDocumentStore(), clock=clock)
        experiment_id = await experiments.create(
            "Sentiment models",
            "sentiment",
            VariantConfig(model="model-a"),
            VariantConfig(model="model-b"),
            split_ratio=0.0,
        )
        service = ScriptedModelService([model_failure()])
        orchestrator, _, _ = build(service, clock, experiments=experiments)

        result = await orchestrator.execute("sentiment", "I love this", "user123")
        await orchestrator.drain()

        assert result.variant == "B"
        config = await experiments.get(experiment_id)
        assert config is not None
        assert config.results.variant_b.total_operations == 1
        assert config.results.variant_b.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_usage_and_metrics_recorded(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """Token usage is priced, tracked and counted in metrics."""
        usage_store = MemoryDocumentStore()
        tracker = UsageTracker(usage_store, clock=clock)
        metrics = MetricsCollector()
        service = ScriptedModelService(
            [categorization_output],
            usage=TokenUsage(prompt_tokens=10000, completion_tokens=5000),
        )
        orchestrator, _, _ = build(
            service, clock, usage_tracker=tracker, metrics=metrics
        )

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()
        await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        # gpt-4o-mini: $0.15 and $0.60 per 1M tokens
        assert result.cost_cents == pytest.approx(0.45)
        usage = await tracker.get_usage("user123")
        assert usage is not None
        assert usage["total_tokens"] == 15000
        assert usage["cost_by_operation"]["categorization"] == pytest.approx(0.45)

        snapshot = metrics.get_snapshot(MetricLabels(operation="categorization"))
        assert snapshot.total_operations == 2
        assert snapshot.model_calls == 1
        assert snapshot.cache_hits == 1

    @pytest.mark.asyncio
    async def test_failed_cache_write_goes_to_retry_queue(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """A cache write that fails is replayed by the retry queue."""
        cache_store = FlakyDocumentStore()
        queue = RetryQueue(RetryQueueConfig(auto_process=False), clock=clock)
        service = ScriptedModelService([categorization_output])
        orchestrator, cache, _ = build(
            service, clock, cache_store=cache_store, retry_queue=queue
        )

        await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()
        assert queue.size == 1

        cache_store.failing = False
        result = await queue.process_due()

        assert result.succeeded == 1
        assert queue.size == 0
        key = cache.generate_key("Love your content!", "categorization")
        assert await cache.get(key, "user123") is not None

    @pytest.mark.asyncio
    async def test_cache_write_failure_without_queue_does_not_fail_call(
        self, clock: FakeClock, categorization_output: dict[str, Any]
    ) -> None:
        """Without a retry queue a failed cache write is only logged."""
        service = ScriptedModelService([categorization_output])
        orchestrator, cache, _ = build(service, clock, cache_store=FlakyDocumentStore())

        result = await orchestrator.execute("categorization", "Love your content!", "user123")
        await orchestrator.drain()

        assert result.source == ResultSource.MODEL
        assert cache.stats.errors == 1

    @pytest.mark.asyncio
    async def test_replayed_write_failure_raises_store_error(
        self, clock: FakeClock
    ) -> None:
        """The queue processor reports store failures by raising."""
        cache = ResultCache(FlakyDocumentStore(), clock=clock)
        with pytest.raises(StoreError):
            await cache.set("k", "user123", "categorization", {}, raise_on_error=True)

    @pytest.mark.asyncio
    async def test_close_closes_model_service(self, clock: FakeClock) -> None:
        service = ScriptedModelService([{}])
        orchestrator, _, _ = build(service, clock)

        async with orchestrator:
            pass

        assert service.closed
