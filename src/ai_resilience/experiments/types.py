"""
Experiment data model.

Experiment documents are pydantic models so they round-trip through the
document store with validation. Comparison outputs are plain dataclasses.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ai_resilience.errors import ConfigurationError


class Variant(str, Enum):
    """Experiment arm."""

    A = "A"
    B = "B"


class VariantConfig(BaseModel):
    """Model configuration for one arm."""

    model: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class VariantResults(BaseModel):
    """Running aggregates for one arm.

    Averages are maintained incrementally so recording an outcome never
    needs the history. Satisfaction has its own count because only some
    outcomes carry a rating.
    """

    total_operations: int = 0
    average_latency: float = 0.0
    average_cost: float = 0.0
    success_rate: float = 0.0
    satisfaction_rating: float | None = None
    satisfaction_count: int = 0

    def record(self, metrics: OutcomeMetrics) -> None:
        """Fold one outcome into the aggregates."""
        old = self.total_operations
        new = old + 1
        self.average_latency = (self.average_latency * old + metrics.latency_ms) / new
        self.average_cost = (self.average_cost * old + metrics.cost_cents) / new
        successes = self.success_rate * old + (1 if metrics.success else 0)
        self.success_rate = successes / new
        self.total_operations = new

        if metrics.satisfaction is not None and metrics.satisfaction > 0:
            rated = self.satisfaction_count
            previous = self.satisfaction_rating or 0.0
            self.satisfaction_rating = (previous * rated + metrics.satisfaction) / (rated + 1)
            self.satisfaction_count = rated + 1


class ExperimentResults(BaseModel):
    variant_a: VariantResults = Field(default_factory=VariantResults)
    variant_b: VariantResults = Field(default_factory=VariantResults)

    def for_variant(self, variant: Variant) -> VariantResults:
        return self.variant_a if variant == Variant.A else self.variant_b


class ExperimentConfig(BaseModel):
    """An A/B experiment stored at ``ab_tests/{id}``."""

    id: str
    name: str
    operation: str
    variant_a: VariantConfig
    variant_b: VariantConfig
    split_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    active: bool = True
    start_date: float | None = None
    end_date: float | None = None
    updated_at: float | None = None
    results: ExperimentResults = Field(default_factory=ExperimentResults)

    def variant_config(self, variant: Variant) -> VariantConfig:
        return self.variant_a if variant == Variant.A else self.variant_b


@dataclass
class OutcomeMetrics:
    """Measurements from one operation served by an experiment arm.

    Attributes:
        latency_ms: End-to-end latency in milliseconds
        cost_cents: Cost in US cents
        success: Whether the model produced a valid result
        satisfaction: Optional user rating, 1-5
    """

    latency_ms: float
    cost_cents: float
    success: bool
    satisfaction: float | None = None


@dataclass
class ScoringWeights:
    """Weights of the comparison score components."""

    success_rate: float = 0.5
    cost: float = 0.3
    latency: float = 0.2
    satisfaction: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "success_rate": self.success_rate,
            "cost": self.cost,
            "latency": self.latency,
            "satisfaction": self.satisfaction,
        }


@dataclass
class ExperimentSettings:
    """Settings for experiment comparison.

    Attributes:
        min_sample_size: Outcomes each arm needs before comparing
        weights: Score component weights
        tie_tolerance: Score difference at or below which arms tie
        collection: Document collection holding experiments
    """

    min_sample_size: int = 30
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    tie_tolerance: float = 0.01
    collection: str = "ab_tests"

    def __post_init__(self) -> None:
        if isinstance(self.weights, dict):
            self.weights = ScoringWeights(**self.weights)
        if self.min_sample_size < 1:
            raise ConfigurationError(
                "min_sample_size must be positive", key="experiments.min_sample_size"
            )
        if self.tie_tolerance < 0:
            raise ConfigurationError(
                "tie_tolerance must not be negative", key="experiments.tie_tolerance"
            )

    @classmethod
    def from_env(cls) -> ExperimentSettings:
        """Create settings from environment variables."""
        return cls(
            min_sample_size=int(os.getenv("AI_RESILIENCE_EXPERIMENT_MIN_SAMPLE_SIZE", "30")),
            tie_tolerance=float(os.getenv("AI_RESILIENCE_EXPERIMENT_TIE_TOLERANCE", "0.01")),
        )


@dataclass
class SampleSize:
    variant_a: int
    variant_b: int

    @property
    def total(self) -> int:
        return self.variant_a + self.variant_b


@dataclass
class ComparisonResult:
    """Outcome of comparing two arms.

    ``confidence`` (0-100) blends sample size and score gap. It is a
    heuristic indicator, not a statistical confidence level or p-value.

    Attributes:
        winner: "A", "B" or "tie"
        confidence: Heuristic confidence, 0-100
        latency_diff: Latency change of B relative to A, percent
        cost_diff: Cost change of B relative to A, percent
        success_rate_diff: Success rate change of B relative to A, percent
        variant_a_score: Weighted score of A
        variant_b_score: Weighted score of B
        recommendation: Human-readable recommendation
        sample_size: Outcomes per arm
    """

    winner: str
    confidence: int
    latency_diff: float
    cost_diff: float
    success_rate_diff: float
    variant_a_score: float
    variant_b_score: float
    recommendation: str
    sample_size: SampleSize

    def to_dict(self) -> dict[str, Any]:
        return {
            "winner": self.winner,
            "confidence": self.confidence,
            "latency_diff": self.latency_diff,
            "cost_diff": self.cost_diff,
            "success_rate_diff": self.success_rate_diff,
            "variant_a_score": self.variant_a_score,
            "variant_b_score": self.variant_b_score,
            "recommendation": self.recommendation,
            "sample_size": {
                "variant_a": self.sample_size.variant_a,
                "variant_b": self.sample_size.variant_b,
            },
        }


@dataclass
class InsufficientData:
    """Comparison is not possible yet; some arm has too few outcomes."""

    experiment_id: str
    required: int
    sample_size: SampleSize

    @property
    def message(self) -> str:
        return (
            f"Insufficient data for experiment {self.experiment_id}. "
            f"Need {self.required} operations per variant."
        )
