"""
Model service contract, HTTP client and response schemas.
"""

from ai_resilience.models.schemas import (
    CategorizationResult,
    FaqDetectionResult,
    OpportunityScoreResult,
    SentimentResult,
    SuggestedFaq,
)
from ai_resilience.models.service import (
    HttpModelService,
    ModelRequest,
    ModelResponse,
    ModelService,
    TokenUsage,
)
from ai_resilience.models.validator import ResponseValidator, ValidationResult

__all__ = [
    "CategorizationResult",
    "FaqDetectionResult",
    "HttpModelService",
    "ModelRequest",
    "ModelResponse",
    "ModelService",
    "OpportunityScoreResult",
    "ResponseValidator",
    "SentimentResult",
    "SuggestedFaq",
    "TokenUsage",
    "ValidationResult",
]
