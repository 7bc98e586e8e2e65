"""模型服务：定义模型调用契约以及基于 httpx 的 HTTP 实现。

Model service contract and HTTP implementation.

The orchestrator only depends on ``ModelService.invoke``. ``HttpModelService``
posts the request as JSON and maps every failure (timeout, connection error,
non-2xx status, malformed body) to ModelCallFailedError.
"""

from __future__ import annotations

import json
import os
import time
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ai_resilience.errors import (
    ErrorClass,
    ModelCallFailedError,
    classify_http_status,
)

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0


class TokenUsage(BaseModel):
    """Token counts reported by the model service."""

    model_config = ConfigDict(populate_by_name=True)

    prompt_tokens: int = Field(default=0, alias="promptTokens", ge=0)
    completion_tokens: int = Field(default=0, alias="completionTokens", ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ModelRequest(BaseModel):
    """One model invocation."""

    operation: str
    content: str
    model: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    identity: str | None = None


class ModelResponse(BaseModel):
    """Raw model output before schema validation.

    ``output`` is whatever the service returned: a dict or a JSON string.
    """

    output: Any = None
    model: str | None = None
    usage: TokenUsage | None = None
    latency_ms: float = 0.0


class ModelService(ABC):
    """Contract for the model service collaborator."""

    @abstractmethod
    async def invoke(self, request: ModelRequest) -> ModelResponse:
        """Invoke the model.

        Raises:
            ModelCallFailedError: On any failure
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources."""
        pass


class HttpModelService(ModelService):
    """Model service reached over HTTP.

    Example:
        >>> service = HttpModelService("https://models.internal", api_key="...")
        >>> response = await service.invoke(ModelRequest(
        ...     operation="categorization", content="Love your content!",
        ...     model="gpt-4o-mini"))
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        path: str = "/invoke",
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP model service.

        Args:
            base_url: Service base URL
            api_key: Bearer token; falls back to ``AI_RESILIENCE_MODEL_API_KEY``
            path: Invocation path relative to the base URL
            timeout: Request timeout in seconds
            client: Pre-configured httpx client (owned by the caller)
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or os.getenv("AI_RESILIENCE_MODEL_API_KEY")
        self._path = path
        self._timeout = timeout
        if self._timeout is None:
            env_timeout = os.getenv("AI_RESILIENCE_MODEL_TIMEOUT_SECS")
            if env_timeout:
                with suppress(ValueError):
                    self._timeout = float(env_timeout)
        if self._timeout is None:
            self._timeout = _DEFAULT_TIMEOUT

        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
            )
        return self._client

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        client = self._get_client()
        url = f"{self._base_url}{self._path}"
        start = time.perf_counter()

        try:
            response = await client.post(
                url,
                json=request.model_dump(mode="json"),
                headers=self._build_headers(),
            )
        except httpx.TimeoutException as e:
            raise ModelCallFailedError(
                f"Model request timed out: {e}",
                error_class=ErrorClass.TIMEOUT,
                operation=request.operation,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise ModelCallFailedError(
                f"Model transport error: {e}",
                error_class=ErrorClass.TRANSPORT,
                operation=request.operation,
                cause=e,
            ) from e

        latency_ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 300:
            raise ModelCallFailedError(
                f"Model service returned HTTP {response.status_code}",
                error_class=classify_http_status(response.status_code),
                status_code=response.status_code,
                operation=request.operation,
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise ModelCallFailedError(
                "Model service returned a malformed body",
                error_class=ErrorClass.INVALID_RESPONSE,
                status_code=response.status_code,
                operation=request.operation,
                cause=e,
            ) from e

        if not isinstance(body, dict) or "output" not in body:
            raise ModelCallFailedError(
                "Model service response is missing 'output'",
                error_class=ErrorClass.INVALID_RESPONSE,
                status_code=response.status_code,
                operation=request.operation,
            )

        usage = body.get("usage")
        return ModelResponse(
            output=body["output"],
            model=body.get("model") or request.model,
            usage=TokenUsage.model_validate(usage) if isinstance(usage, dict) else None,
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
