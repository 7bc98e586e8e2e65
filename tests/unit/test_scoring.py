"""Tests for experiment arm scoring."""

from __future__ import annotations

import pytest

from ai_resilience.experiments import ScoringWeights, VariantResults, compare_results
from ai_resilience.experiments.scoring import heuristic_confidence, recommendation_for


def arm(
    total: int,
    latency: float,
    cost: float,
    success_rate: float,
    satisfaction: float | None = None,
) -> VariantResults:
    return VariantResults(
        total_operations=total,
        average_latency=latency,
        average_cost=cost,
        success_rate=success_rate,
        satisfaction_rating=satisfaction,
        satisfaction_count=total if satisfaction is not None else 0,
    )


class TestCompareResults:
    """Tests for compare_results."""

    def test_cheaper_faster_arm_wins(self) -> None:
        result = compare_results(arm(50, 200, 2.0, 1.0), arm(50, 100, 1.0, 0.9))

        assert result.variant_a_score == pytest.approx(50.0)
        assert result.variant_b_score == pytest.approx(70.0)
        assert result.winner == "B"
        assert result.confidence == 73
        assert result.latency_diff == pytest.approx(-50.0)
        assert result.cost_diff == pytest.approx(-50.0)
        assert result.success_rate_diff == pytest.approx(-10.0)
        assert "moderate advantage" in result.recommendation

    def test_identical_arms_tie(self) -> None:
        result = compare_results(arm(1000, 100, 1.0, 0.95), arm(1000, 100, 1.0, 0.95))

        assert result.winner == "tie"
        assert result.confidence == 30
        assert "too close to call" in result.recommendation

    def test_tolerance_widens_tie(self) -> None:
        a = arm(100, 100, 1.0, 0.95)
        b = arm(100, 100, 1.0, 0.96)

        assert compare_results(a, b).winner == "B"
        assert compare_results(a, b, tie_tolerance=1.0).winner == "tie"

    def test_zero_baseline_diffs_are_zero(self) -> None:
        result = compare_results(arm(40, 0, 0, 0), arm(40, 10, 1, 0.5))
        assert result.latency_diff == 0.0
        assert result.cost_diff == 0.0
        assert result.success_rate_diff == 0.0

    def test_satisfaction_weight(self) -> None:
        weights = ScoringWeights(success_rate=0, cost=0, latency=0, satisfaction=1.0)
        result = compare_results(
            arm(40, 100, 1.0, 1.0, satisfaction=5.0),
            arm(40, 100, 1.0, 1.0, satisfaction=2.5),
            weights=weights,
        )
        assert result.variant_a_score == pytest.approx(100.0)
        assert result.variant_b_score == pytest.approx(50.0)
        assert result.winner == "A"
        assert result.to_dict()["sample_size"] == {"variant_a": 40, "variant_b": 40}


class TestConfidence:
    def test_components_are_capped(self) -> None:
        assert heuristic_confidence(0, 0) == 0
        assert heuristic_confidence(5000, 50) == 100
        assert heuristic_confidence(500, 5) == 50

    @pytest.mark.parametrize(
        ("confidence", "phrase"),
        [(20, "confidence is low"), (60, "moderate advantage"), (90, "clearly superior")],
    )
    def test_recommendation_bands(self, confidence: int, phrase: str) -> None:
        assert phrase in recommendation_for("A", confidence)
