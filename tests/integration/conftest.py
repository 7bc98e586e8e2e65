"""
Integration test helper utilities.

Shared fixtures and utilities for integration tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import pytest_httpx

MODEL_SERVICE_URL = "https://models.test"


def mock_model_response(
    output: Any,
    model: str = "gpt-4o-mini",
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    """Create a mock model service response body."""
    response: dict[str, Any] = {"output": output, "model": model}
    if usage:
        response["usage"] = usage
    return response


def setup_mock_model_response(
    httpx_mock: pytest_httpx.HTTPXMock,
    output: Any,
    model: str = "gpt-4o-mini",
    usage: dict[str, int] | None = None,
    status_code: int = 200,
) -> None:
    """Register a model service response on the httpx mock."""
    httpx_mock.add_response(
        method="POST",
        url=f"{MODEL_SERVICE_URL}/invoke",
        json=mock_model_response(output, model=model, usage=usage),
        status_code=status_code,
    )
