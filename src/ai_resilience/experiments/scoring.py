"""
Weighted comparison of two experiment arms.

Each arm scores on a 0-100 scale: success rate, plus cost and latency
normalized against the worse (larger) of the two arms, optionally plus
satisfaction. Everything here is pure so it can be tested without a store.
"""

from __future__ import annotations

import math

from ai_resilience.experiments.types import (
    ComparisonResult,
    SampleSize,
    ScoringWeights,
    VariantResults,
)

TIE = "tie"


def _percent_diff(a: float, b: float) -> float:
    """Change of ``b`` relative to ``a`` in percent; 0 when ``a`` is 0."""
    if a == 0:
        return 0.0
    return (b - a) / a * 100


def _relative_saving(value: float, worst: float) -> float:
    if worst <= 0:
        return 0.0
    return 1 - value / worst


def score_variant(
    results: VariantResults,
    worst_cost: float,
    worst_latency: float,
    weights: ScoringWeights,
) -> float:
    """Score one arm (higher is better)."""
    score = results.success_rate * 100 * weights.success_rate
    score += _relative_saving(results.average_cost, worst_cost) * 100 * weights.cost
    score += _relative_saving(results.average_latency, worst_latency) * 100 * weights.latency
    if weights.satisfaction and results.satisfaction_count:
        rating = results.satisfaction_rating or 0.0
        score += rating / 5 * 100 * weights.satisfaction
    return score


def heuristic_confidence(total_operations: int, score_difference: float) -> int:
    """Up to 30 points from sample size, up to 70 from the score gap."""
    sample_part = min(total_operations / 1000, 1) * 30
    difference_part = min(score_difference / 10, 1) * 70
    return int(math.floor(sample_part + difference_part + 0.5))


def recommendation_for(winner: str, confidence: int) -> str:
    if winner == TIE:
        return "Results are too close to call. Continue testing or choose based on other factors."
    if confidence < 50:
        return (
            f"Variant {winner} appears better but confidence is low. "
            "Continue testing for more conclusive results."
        )
    if confidence < 80:
        return (
            f"Variant {winner} shows moderate advantage. "
            "Consider adopting if benefits align with priorities."
        )
    return f"Variant {winner} is clearly superior. Recommended for production use."


def compare_results(
    variant_a: VariantResults,
    variant_b: VariantResults,
    *,
    weights: ScoringWeights | None = None,
    tie_tolerance: float = 0.01,
) -> ComparisonResult:
    """Compare two arms.

    Args:
        variant_a: Aggregates of arm A
        variant_b: Aggregates of arm B
        weights: Score weights
        tie_tolerance: Score gap at or below which the arms tie

    Returns:
        ComparisonResult
    """
    weights = weights or ScoringWeights()
    worst_cost = max(variant_a.average_cost, variant_b.average_cost)
    worst_latency = max(variant_a.average_latency, variant_b.average_latency)

    score_a = score_variant(variant_a, worst_cost, worst_latency, weights)
    score_b = score_variant(variant_b, worst_cost, worst_latency, weights)
    difference = abs(score_a - score_b)

    if difference <= tie_tolerance:
        winner = TIE
    else:
        winner = "A" if score_a > score_b else "B"

    sample_size = SampleSize(variant_a.total_operations, variant_b.total_operations)
    confidence = heuristic_confidence(sample_size.total, difference)

    return ComparisonResult(
        winner=winner,
        confidence=confidence,
        latency_diff=_percent_diff(variant_a.average_latency, variant_b.average_latency),
        cost_diff=_percent_diff(variant_a.average_cost, variant_b.average_cost),
        success_rate_diff=_percent_diff(variant_a.success_rate, variant_b.success_rate),
        variant_a_score=score_a,
        variant_b_score=score_b,
        recommendation=recommendation_for(winner, confidence),
        sample_size=sample_size,
    )
