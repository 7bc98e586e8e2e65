"""
A/B experiments between model configurations.
"""

from ai_resilience.experiments.assignment import assignment_bucket, choose_variant
from ai_resilience.experiments.manager import ExperimentManager
from ai_resilience.experiments.scoring import compare_results
from ai_resilience.experiments.types import (
    ComparisonResult,
    ExperimentConfig,
    ExperimentResults,
    ExperimentSettings,
    InsufficientData,
    OutcomeMetrics,
    SampleSize,
    ScoringWeights,
    Variant,
    VariantConfig,
    VariantResults,
)

__all__ = [
    "ComparisonResult",
    "ExperimentConfig",
    "ExperimentManager",
    "ExperimentResults",
    "ExperimentSettings",
    "InsufficientData",
    "OutcomeMetrics",
    "SampleSize",
    "ScoringWeights",
    "Variant",
    "VariantConfig",
    "VariantResults",
    "assignment_bucket",
    "choose_variant",
    "compare_results",
]
