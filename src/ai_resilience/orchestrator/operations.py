"""
Built-in operation specs.

Default models follow production usage: the cheap model for high-volume
categorization and sentiment, the stronger model for opportunity scoring
and FAQ matching.
"""

from __future__ import annotations

from ai_resilience.models.schemas import (
    CategorizationResult,
    FaqDetectionResult,
    OpportunityScoreResult,
    SentimentResult,
)
from ai_resilience.orchestrator.types import OperationSpec
from ai_resilience.resilience.fallback import FallbackRegistry

CATEGORIZATION = "categorization"
OPPORTUNITY_SCORING = "opportunity_scoring"
FAQ_DETECTION = "faq_detection"
SENTIMENT = "sentiment"


def default_operations(
    fallbacks: FallbackRegistry | None = None,
) -> dict[str, OperationSpec]:
    """Build the built-in operation specs.

    Args:
        fallbacks: Heuristics to attach; defaults to the keyword heuristics.
            Operations without a registered heuristic get no fallback.

    Returns:
        Specs keyed by operation name
    """
    registry = fallbacks or FallbackRegistry.with_defaults()
    specs = [
        OperationSpec(
            name=CATEGORIZATION,
            schema=CategorizationResult,
            default_model="gpt-4o-mini",
            default_parameters={"temperature": 0.3, "max_tokens": 200},
            fallback=registry.get(CATEGORIZATION),
        ),
        OperationSpec(
            name=OPPORTUNITY_SCORING,
            schema=OpportunityScoreResult,
            default_model="gpt-4-turbo",
            default_parameters={"temperature": 0.3, "max_tokens": 300},
            fallback=registry.get(OPPORTUNITY_SCORING),
        ),
        OperationSpec(
            name=FAQ_DETECTION,
            schema=FaqDetectionResult,
            default_model="gpt-4-turbo",
            default_parameters={"temperature": 0.2, "max_tokens": 300},
            fallback=registry.get(FAQ_DETECTION),
        ),
        OperationSpec(
            name=SENTIMENT,
            schema=SentimentResult,
            default_model="gpt-4o-mini",
            default_parameters={"temperature": 0.3, "max_tokens": 150},
            fallback=registry.get(SENTIMENT),
        ),
    ]
    return {spec.name: spec for spec in specs}
