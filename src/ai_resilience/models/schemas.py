"""
Response schemas for the built-in operations.

Model output is validated against these pydantic models before it is cached
or returned. Field aliases accept the camelCase keys the model is prompted to
emit; results are dumped with snake_case names.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

MessageCategory = Literal[
    "fan_engagement",
    "business_opportunity",
    "spam",
    "urgent",
    "general",
]
SentimentType = Literal["positive", "negative", "neutral", "mixed"]
OpportunityType = Literal["sponsorship", "collaboration", "partnership", "sale"]

# Sentiment thresholds shared with the fallback heuristics
URGENT_SENTIMENT_THRESHOLD = -0.5
CRISIS_SENTIMENT_THRESHOLD = -0.7
LOW_CONFIDENCE_THRESHOLD = 0.7


class CategorizationResult(BaseModel):
    """Combined categorization and sentiment analysis of one message."""

    model_config = ConfigDict(populate_by_name=True)

    category: MessageCategory
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = "No reasoning provided"
    sentiment: SentimentType
    sentiment_score: float = Field(alias="sentimentScore", ge=-1.0, le=1.0)
    emotional_tone: list[str] = Field(alias="emotionalTone")
    sentiment_reasoning: str = Field(
        default="No sentiment reasoning provided", alias="sentimentReasoning"
    )
    crisis_detected: bool = Field(default=False, alias="crisisDetected")

    @model_validator(mode="after")
    def _apply_category_rules(self) -> CategorizationResult:
        self.crisis_detected = self.sentiment_score < CRISIS_SENTIMENT_THRESHOLD
        if self.sentiment_score < URGENT_SENTIMENT_THRESHOLD:
            self.category = "urgent"
        # Low confidence wins over the urgent override; sentiment is kept.
        if self.confidence < LOW_CONFIDENCE_THRESHOLD:
            self.category = "general"
            self.reasoning = f"Low confidence ({self.confidence}), defaulting to general"
        return self


class OpportunityScoreResult(BaseModel):
    """Business opportunity score (0-100)."""

    model_config = ConfigDict(populate_by_name=True)

    score: float = Field(ge=0.0, le=100.0)
    type: OpportunityType
    indicators: list[str]
    analysis: str


class SuggestedFaq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(alias="templateId")
    question: str
    answer: str
    confidence: float = Field(ge=0.0, le=1.0)


class FaqDetectionResult(BaseModel):
    """Whether a message matches one of the creator's FAQ templates."""

    model_config = ConfigDict(populate_by_name=True)

    is_faq: bool = Field(alias="isFAQ")
    match_confidence: float = Field(alias="matchConfidence", ge=0.0, le=1.0)
    faq_template_id: str | None = Field(default=None, alias="faqTemplateId")
    faq_answer: str | None = Field(default=None, alias="faqAnswer")
    suggested_faq: SuggestedFaq | None = Field(default=None, alias="suggestedFAQ")

    @model_validator(mode="after")
    def _require_template_for_match(self) -> FaqDetectionResult:
        if self.is_faq and not self.faq_template_id:
            raise ValueError("faqTemplateId is required when isFAQ is true")
        return self


class SentimentResult(BaseModel):
    """Standalone sentiment analysis."""

    model_config = ConfigDict(populate_by_name=True)

    sentiment: SentimentType
    sentiment_score: float = Field(alias="sentimentScore", ge=-1.0, le=1.0)
    emotional_tone: list[str] = Field(default_factory=list, alias="emotionalTone")
    crisis_detected: bool = Field(default=False, alias="crisisDetected")

    @model_validator(mode="after")
    def _detect_crisis(self) -> SentimentResult:
        self.crisis_detected = self.sentiment_score < CRISIS_SENTIMENT_THRESHOLD
        return self
