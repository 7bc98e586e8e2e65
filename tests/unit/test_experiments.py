"""Tests for A/B experiment management."""

from __future__ import annotations

from typing import Any

import pytest

from ai_resilience.errors import ConfigurationError, ExperimentNotFoundError
from ai_resilience.experiments import (
    ComparisonResult,
    ExperimentManager,
    ExperimentSettings,
    InsufficientData,
    OutcomeMetrics,
    Variant,
    VariantConfig,
    assignment_bucket,
    choose_variant,
)
from ai_resilience.stores import MemoryDocumentStore
from tests.conftest import START_TIME, FakeClock

MINI = VariantConfig(model="gpt-4o-mini", parameters={"temperature": 0.3})
TURBO = VariantConfig(model="gpt-4-turbo-preview")


class UnreadableDocumentStore(MemoryDocumentStore):
    async def get(self, path: str) -> dict[str, Any] | None:
        raise ConnectionError("store down")


def make_manager(clock: FakeClock, store: MemoryDocumentStore | None = None, **settings: Any):
    return ExperimentManager(
        store or MemoryDocumentStore(),
        ExperimentSettings(**settings),
        clock=clock,
    )


class TestAssignment:
    """Tests for deterministic variant assignment."""

    def test_bucket_is_stable_and_in_range(self) -> None:
        bucket = assignment_bucket("user123")
        assert bucket == assignment_bucket("user123")
        assert 0.0 <= bucket < 1.0

    def test_split_extremes(self) -> None:
        assert choose_variant("user123", 1.0) == Variant.A
        assert choose_variant("user123", 0.0) == Variant.B

    def test_split_is_approximately_honored(self) -> None:
        assigned = [choose_variant(f"user{n}", 0.3) for n in range(1000)]
        share_a = assigned.count(Variant.A) / len(assigned)
        assert 0.23 < share_a < 0.37


class TestExperimentSettings:
    def test_invalid_values(self) -> None:
        with pytest.raises(ConfigurationError):
            ExperimentSettings(min_sample_size=0)
        with pytest.raises(ConfigurationError):
            ExperimentSettings(tie_tolerance=-0.1)

    def test_weights_from_dict(self) -> None:
        settings = ExperimentSettings(weights={"success_rate": 1.0, "cost": 0, "latency": 0})  # type: ignore[arg-type]
        assert settings.weights.success_rate == 1.0


class TestExperimentManager:
    """Tests for ExperimentManager."""

    @pytest.mark.asyncio
    async def test_create_stores_experiment(self, clock: FakeClock) -> None:
        store = MemoryDocumentStore()
        manager = make_manager(clock, store)

        exp_id = await manager.create("Model comparison", "categorization", MINI, TURBO)

        assert exp_id == "test_categorization_1768478400000"
        doc = await store.get(f"ab_tests/{exp_id}")
        assert doc is not None
        assert doc["active"] is True
        assert doc["split_ratio"] == 0.5
        assert doc["start_date"] == START_TIME
        assert doc["variant_a"] == {"model": "gpt-4o-mini", "parameters": {"temperature": 0.3}}
        assert doc["results"]["variant_b"]["total_operations"] == 0

    @pytest.mark.asyncio
    async def test_create_avoids_id_collision(self, clock: FakeClock) -> None:
        manager = make_manager(clock)

        first = await manager.create("one", "categorization", MINI, TURBO)
        second = await manager.create("two", "categorization", MINI, TURBO)

        assert second == f"{first}_2"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_split(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        with pytest.raises(ValueError):
            await manager.create("bad", "categorization", MINI, TURBO, split_ratio=1.5)

    @pytest.mark.asyncio
    async def test_assign_variant_is_deterministic(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)

        first = await manager.assign_variant(exp_id, "user123")
        second = await manager.assign_variant(exp_id, "user123")

        assert first is not None
        assert first == second == choose_variant("user123", 0.5)

    @pytest.mark.asyncio
    async def test_assign_variant_missing_or_inactive(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)
        await manager.deactivate(exp_id)

        assert await manager.assign_variant(exp_id, "user123") is None
        assert await manager.assign_variant("missing", "user123") is None

    @pytest.mark.asyncio
    async def test_assign_variant_store_failure(self, clock: FakeClock) -> None:
        manager = make_manager(clock, UnreadableDocumentStore())
        assert await manager.assign_variant("any", "user123") is None

    @pytest.mark.asyncio
    async def test_deactivate(self, clock: FakeClock) -> None:
        store = MemoryDocumentStore()
        manager = make_manager(clock, store)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)

        clock.advance(100)
        await manager.deactivate(exp_id)

        config = await manager.get(exp_id)
        assert config is not None
        assert not config.active
        assert config.end_date == START_TIME + 100
        assert config.variant_a.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_deactivate_missing_raises(self, clock: FakeClock) -> None:
        with pytest.raises(ExperimentNotFoundError):
            await make_manager(clock).deactivate("missing")

    @pytest.mark.asyncio
    async def test_record_outcome_updates_averages(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)

        await manager.record_outcome(exp_id, Variant.A, OutcomeMetrics(100, 1.0, True, 4))
        await manager.record_outcome(exp_id, "A", OutcomeMetrics(200, 3.0, False))
        assert await manager.record_outcome(exp_id, Variant.A, OutcomeMetrics(300, 2.0, True, 5))

        config = await manager.get(exp_id)
        assert config is not None
        arm = config.results.variant_a
        assert arm.total_operations == 3
        assert arm.average_latency == pytest.approx(200.0)
        assert arm.average_cost == pytest.approx(2.0)
        assert arm.success_rate == pytest.approx(2 / 3)
        assert arm.satisfaction_rating == pytest.approx(4.5)
        assert arm.satisfaction_count == 2
        assert config.results.variant_b.total_operations == 0
        assert config.updated_at == START_TIME

    @pytest.mark.asyncio
    async def test_record_outcome_ignored_when_inactive(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)
        await manager.deactivate(exp_id)

        assert not await manager.record_outcome(exp_id, Variant.B, OutcomeMetrics(1, 1, True))
        assert not await manager.record_outcome("missing", Variant.B, OutcomeMetrics(1, 1, True))

    @pytest.mark.asyncio
    async def test_get_active(self, clock: FakeClock) -> None:
        manager = make_manager(clock)
        first = await manager.create("one", "categorization", MINI, TURBO)
        clock.advance(1)
        second = await manager.create("two", "categorization", MINI, TURBO)
        other = await manager.create("three", "sentiment", MINI, TURBO)
        await manager.create("four", "categorization", MINI, TURBO, active=False)

        assert [c.id for c in await manager.get_active("categorization")] == [first, second]
        assert {c.id for c in await manager.get_active()} == {first, second, other}
        governing = await manager.active_for("categorization")
        assert governing is not None
        assert governing.id == first
        assert await manager.active_for("faq_detection") is None

    @pytest.mark.asyncio
    async def test_compare_requires_minimum_samples(self, clock: FakeClock) -> None:
        manager = make_manager(clock, min_sample_size=2)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)
        await manager.record_outcome(exp_id, Variant.A, OutcomeMetrics(100, 1, True))

        result = await manager.compare(exp_id)

        assert isinstance(result, InsufficientData)
        assert result.sample_size.variant_a == 1
        assert result.sample_size.variant_b == 0
        assert "Need 2 operations per variant" in result.message

    @pytest.mark.asyncio
    async def test_compare_picks_winner(self, clock: FakeClock) -> None:
        manager = make_manager(clock, min_sample_size=2)
        exp_id = await manager.create("x", "categorization", MINI, TURBO)
        for _ in range(2):
            await manager.record_outcome(exp_id, Variant.A, OutcomeMetrics(200, 2.0, True))
            await manager.record_outcome(exp_id, Variant.B, OutcomeMetrics(100, 1.0, True))

        result = await manager.compare(exp_id)

        assert isinstance(result, ComparisonResult)
        assert result.winner == "B"
        assert result.sample_size.total == 4

    @pytest.mark.asyncio
    async def test_compare_missing_raises(self, clock: FakeClock) -> None:
        with pytest.raises(ExperimentNotFoundError):
            await make_manager(clock).compare("missing")
