"""Root pytest fixtures for ai-resilience-python tests."""

from __future__ import annotations

from typing import Any

import pytest

from ai_resilience.errors import ErrorClass, ModelCallFailedError
from ai_resilience.models.service import ModelRequest, ModelResponse, ModelService, TokenUsage
from ai_resilience.stores import (
    MemoryBlobStore,
    MemoryDocumentStore,
    MemorySlidingWindowStore,
)

# 2026-01-15T12:00:00Z
START_TIME = 1768478400.0


class FakeClock:
    """Controllable clock returning unix seconds."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedModelService(ModelService):
    """Model service that replays a script of outcomes.

    Each entry is either an exception to raise or an output to return. The
    last entry repeats once the script is exhausted.
    """

    def __init__(
        self,
        script: list[Any],
        model: str | None = None,
        usage: TokenUsage | None = None,
    ) -> None:
        self._script = list(script)
        self._model = model
        self._usage = usage
        self.requests: list[ModelRequest] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self._script) - 1)
        outcome = self._script[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return ModelResponse(
            output=outcome,
            model=self._model or request.model,
            usage=self._usage,
        )

    async def close(self) -> None:
        self.closed = True


def model_failure(message: str = "Model call failed") -> ModelCallFailedError:
    return ModelCallFailedError(message, error_class=ErrorClass.SERVER_ERROR, status_code=503)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def window_store() -> MemorySlidingWindowStore:
    return MemorySlidingWindowStore()


@pytest.fixture
def document_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def categorization_output() -> dict[str, Any]:
    return {
        "category": "fan_engagement",
        "confidence": 0.92,
        "reasoning": "Positive feedback about content",
        "sentiment": "positive",
        "sentimentScore": 0.8,
        "emotionalTone": ["appreciative"],
        "sentimentReasoning": "Expresses enjoyment",
        "crisisDetected": False,
    }
