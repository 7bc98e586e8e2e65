"""
Rule-based fallback heuristics.

When the model service cannot produce a valid answer, the orchestrator calls
a deterministic heuristic registered for the operation. Heuristics are pure
functions of the input text: no I/O, no clock, no randomness.

The scores they produce are degraded approximations and are not on the same
scale as the model's scores.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ai_resilience.models.schemas import (
    CRISIS_SENTIMENT_THRESHOLD,
    URGENT_SENTIMENT_THRESHOLD,
)

if TYPE_CHECKING:
    from collections.abc import Callable

SPONSORSHIP_KEYWORDS = (
    "sponsor",
    "brand deal",
    "sponsored",
    "brand partnership",
    "endorsement",
)
BUDGET_KEYWORDS = ("$", "budget", "payment", "compensation", "fee", "paid", "rate", "price")
COLLAB_KEYWORDS = (
    "collaborate",
    "collaboration",
    "partner",
    "partnership",
    "work together",
    "team up",
)

CRISIS_KEYWORDS = (
    "suicidal",
    "kill myself",
    "suicide",
    "hopeless",
    "worthless",
    "no reason to live",
    "can't go on",
    "lawsuit",
    "lawyer",
    "sue you",
    "threaten",
    "revenge",
    "emergency",
    "desperate",
)
NEGATIVE_KEYWORDS = (
    "hate",
    "angry",
    "furious",
    "terrible",
    "awful",
    "worst",
    "disappointed",
    "disgusted",
    "upset",
    "frustrated",
    "annoyed",
    "scam",
    "refund",
    "broken",
    "urgent",
    "help",
)
POSITIVE_KEYWORDS = (
    "love",
    "great",
    "amazing",
    "awesome",
    "thank",
    "thanks",
    "best",
    "excellent",
    "fantastic",
    "wonderful",
    "appreciate",
    "enjoy",
    "inspiring",
)
SPAM_KEYWORDS = (
    "click here",
    "free money",
    "buy now",
    "limited offer",
    "act now",
    "crypto giveaway",
    "winner",
    "bit.ly",
    "follow for follow",
)

FALLBACK_CONFIDENCE = 0.5


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(kw in text for kw in keywords)


def _matches(text: str, keywords: tuple[str, ...]) -> list[str]:
    return [kw for kw in keywords if kw in text]


def score_sentiment(text: str) -> dict[str, Any]:
    """Keyword sentiment heuristic.

    Args:
        text: Message text

    Returns:
        Dict shaped like SentimentResult
    """
    lowered = text.lower()
    crisis = _matches(lowered, CRISIS_KEYWORDS)
    negative = _matches(lowered, NEGATIVE_KEYWORDS)
    positive = _matches(lowered, POSITIVE_KEYWORDS)

    if crisis:
        score = -0.8
    elif positive or negative:
        score = (len(positive) - len(negative)) / (len(positive) + len(negative))
        score = round(max(-1.0, min(1.0, score * 0.6)), 2)
    else:
        score = 0.0

    if positive and negative and not crisis:
        sentiment = "mixed"
    elif score > 0:
        sentiment = "positive"
    elif score < 0:
        sentiment = "negative"
    else:
        sentiment = "neutral"

    tones: list[str] = []
    if crisis:
        tones.append("distressed")
    if negative:
        tones.append("frustrated")
    if positive:
        tones.append("appreciative")

    return {
        "sentiment": sentiment,
        "sentiment_score": score,
        "emotional_tone": tones,
        "crisis_detected": score < CRISIS_SENTIMENT_THRESHOLD,
    }


def categorize_message(text: str) -> dict[str, Any]:
    """Keyword categorization heuristic.

    Urgent wins over every other category, as it does for model output.

    Returns:
        Dict shaped like CategorizationResult
    """
    lowered = text.lower()
    sentiment = score_sentiment(text)

    if sentiment["sentiment_score"] < URGENT_SENTIMENT_THRESHOLD:
        category = "urgent"
    elif _contains_any(lowered, SPAM_KEYWORDS):
        category = "spam"
    elif _contains_any(lowered, SPONSORSHIP_KEYWORDS) or _contains_any(
        lowered, COLLAB_KEYWORDS
    ):
        category = "business_opportunity"
    elif sentiment["sentiment"] in ("positive", "mixed"):
        category = "fan_engagement"
    else:
        category = "general"

    return {
        "category": category,
        "confidence": FALLBACK_CONFIDENCE,
        "reasoning": "Keyword match (rule-based fallback categorization)",
        "sentiment": sentiment["sentiment"],
        "sentiment_score": sentiment["sentiment_score"],
        "emotional_tone": sentiment["emotional_tone"],
        "sentiment_reasoning": "Keyword-based sentiment estimate",
        "crisis_detected": sentiment["crisis_detected"],
    }


def score_opportunity(text: str) -> dict[str, Any]:
    """Additive keyword scoring of a business opportunity.

    +40 sponsorship, +30 budget, +20 collaboration, +10 professional tone
    (over 100 characters without "!!!"). No signal at all scores 50.

    Returns:
        Dict shaped like OpportunityScoreResult
    """
    lowered = text.lower()
    score = 0
    indicators: list[str] = []

    sponsorship = _contains_any(lowered, SPONSORSHIP_KEYWORDS)
    collab = _contains_any(lowered, COLLAB_KEYWORDS)

    if sponsorship:
        score += 40
        indicators.append("sponsorship keywords")
    if _contains_any(lowered, BUDGET_KEYWORDS):
        score += 30
        indicators.append("budget discussion")
    if collab:
        score += 20
        indicators.append("collaboration proposal")
    if len(lowered) > 100 and "!!!" not in lowered:
        score += 10
        indicators.append("professional tone")

    if sponsorship:
        opportunity_type = "sponsorship"
    elif collab:
        opportunity_type = "collaboration"
    else:
        opportunity_type = "sale"

    if score == 0:
        score = 50
        indicators.append("business inquiry")

    return {
        "score": min(score, 100),
        "type": opportunity_type,
        "indicators": indicators,
        "analysis": "Business opportunity detected (rule-based fallback scoring)",
    }


class FallbackRegistry:
    """Maps operation names to fallback heuristics.

    Example:
        >>> registry = FallbackRegistry.with_defaults()
        >>> score = registry.get("opportunity_scoring")("We'd love to sponsor you")
    """

    def __init__(self) -> None:
        self._fallbacks: dict[str, Callable[[str], dict[str, Any]]] = {}

    @classmethod
    def with_defaults(cls) -> FallbackRegistry:
        registry = cls()
        registry.register("categorization", categorize_message)
        registry.register("opportunity_scoring", score_opportunity)
        registry.register("sentiment", score_sentiment)
        return registry

    def register(self, operation: str, func: Callable[[str], dict[str, Any]]) -> None:
        self._fallbacks[operation] = func

    def get(self, operation: str) -> Callable[[str], dict[str, Any]] | None:
        return self._fallbacks.get(operation)

    def has(self, operation: str) -> bool:
        return operation in self._fallbacks
