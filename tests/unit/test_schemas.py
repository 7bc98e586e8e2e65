"""Tests for response schemas and validation."""

from __future__ import annotations

import json
from typing import Any

import pytest

from ai_resilience.errors import ModelResponseInvalidError
from ai_resilience.models.schemas import (
    CategorizationResult,
    FaqDetectionResult,
    SentimentResult,
)
from ai_resilience.models.validator import ResponseValidator


class TestCategorizationResult:
    """Tests for the categorization rules."""

    def test_valid_output(self, categorization_output: dict[str, Any]) -> None:
        result = CategorizationResult.model_validate(categorization_output)
        assert result.category == "fan_engagement"
        assert result.sentiment_score == 0.8
        assert result.emotional_tone == ["appreciative"]
        assert not result.crisis_detected

    def test_negative_sentiment_forces_urgent(
        self, categorization_output: dict[str, Any]
    ) -> None:
        categorization_output.update(sentiment="negative", sentimentScore=-0.6)
        result = CategorizationResult.model_validate(categorization_output)
        assert result.category == "urgent"
        assert not result.crisis_detected

    def test_crisis_detected_from_score(self, categorization_output: dict[str, Any]) -> None:
        categorization_output.update(sentiment="negative", sentimentScore=-0.8)
        result = CategorizationResult.model_validate(categorization_output)
        assert result.category == "urgent"
        assert result.crisis_detected

    def test_low_confidence_defaults_to_general(
        self, categorization_output: dict[str, Any]
    ) -> None:
        categorization_output.update(confidence=0.5, sentiment="negative", sentimentScore=-0.8)
        result = CategorizationResult.model_validate(categorization_output)
        assert result.category == "general"
        assert result.reasoning == "Low confidence (0.5), defaulting to general"
        assert result.crisis_detected

    def test_accepts_snake_case(self) -> None:
        result = CategorizationResult.model_validate(
            {
                "category": "spam",
                "confidence": 0.9,
                "sentiment": "neutral",
                "sentiment_score": 0.0,
                "emotional_tone": [],
            }
        )
        assert result.reasoning == "No reasoning provided"


class TestFaqDetectionResult:
    def test_match_requires_template(self) -> None:
        with pytest.raises(ValueError):
            FaqDetectionResult.model_validate({"isFAQ": True, "matchConfidence": 0.9})

    def test_suggested_faq(self) -> None:
        result = FaqDetectionResult.model_validate(
            {
                "isFAQ": False,
                "matchConfidence": 0.1,
                "suggestedFAQ": {
                    "templateId": "new",
                    "question": "When do you stream?",
                    "answer": "Fridays",
                    "confidence": 0.6,
                },
            }
        )
        assert result.suggested_faq is not None
        assert result.suggested_faq.template_id == "new"


class TestResponseValidator:
    """Tests for ResponseValidator."""

    def test_validates_json_string(self, categorization_output: dict[str, Any]) -> None:
        validator = ResponseValidator(CategorizationResult)
        result = validator.validate(json.dumps(categorization_output))
        assert result.valid
        assert isinstance(result.data, CategorizationResult)

    def test_invalid_json(self) -> None:
        result = ResponseValidator(SentimentResult).validate("{not json")
        assert not result
        assert result.errors[0].startswith("Invalid JSON")

    def test_non_object(self) -> None:
        result = ResponseValidator(SentimentResult).validate([1, 2])
        assert result.errors == ["Expected object, got list"]

    def test_field_errors_are_reported(self) -> None:
        result = ResponseValidator(SentimentResult).validate(
            {"sentiment": "ecstatic", "sentimentScore": 3}
        )
        assert not result.valid
        assert any(error.startswith("sentiment:") for error in result.errors)
        assert any(error.startswith("sentimentScore:") for error in result.errors)

    def test_validate_or_raise_dumps_snake_case(
        self, categorization_output: dict[str, Any]
    ) -> None:
        data = ResponseValidator(CategorizationResult).validate_or_raise(categorization_output)
        assert data["sentiment_score"] == 0.8
        assert "sentimentScore" not in data

    def test_validate_or_raise(self) -> None:
        validator = ResponseValidator(SentimentResult)
        with pytest.raises(ModelResponseInvalidError) as exc_info:
            validator.validate_or_raise({"sentiment": "neutral"}, operation="sentiment")
        assert exc_info.value.operation == "sentiment"
        assert exc_info.value.errors

    def test_rejects_non_model(self) -> None:
        with pytest.raises(ValueError):
            ResponseValidator(dict)  # type: ignore[arg-type]
