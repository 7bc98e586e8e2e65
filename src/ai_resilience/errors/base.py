"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for ai-resilience-python.

Provides a layered error hierarchy:
- AiResilienceError: Base class for all library errors
- RateLimitedError: Caller exceeded its request quota
- ModelCallFailedError: Model service call failed (retryable)
- ModelResponseInvalidError: Response failed schema validation
- FallbackFailedError: Retries exhausted and the fallback heuristic failed
- QueueCapacityExceededError: Retry queue is full
- CircuitOpenError: Retry queue dispatch is suspended
- ExperimentNotFoundError: Unknown experiment id
- StoreError / RateLimiterError / ConfigurationError: Infrastructure errors
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ai_resilience.errors.classification import ErrorClass


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'rate_limiter', 'model', 'retry_queue')"""

    def __str__(self) -> str:
        return f"[{self.source}]" if self.source else ""


class AiResilienceError(Exception):
    """Base class for all ai-resilience-python errors.

    All errors from this library inherit from this class, making it easy
    to catch all library errors with a single except clause.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message


class RateLimitedError(AiResilienceError):
    """Caller exceeded its request quota.

    Raised by the orchestrator when the rate limiter denies a request and no
    cached result is available.

    Attributes:
        identity: Identity that was limited
        limit: Configured maximum requests per window
        reset_at: Unix timestamp (seconds) when a slot frees up
        retry_after: Seconds until a retry may succeed
        scope: Window that denied the request
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        identity: str | None = None,
        limit: int | None = None,
        reset_at: float | None = None,
        retry_after: float | None = None,
        scope: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="rate_limiter")
        if identity:
            ctx.details["identity"] = identity
        if scope:
            ctx.details["scope"] = scope
        if limit is not None:
            ctx.details["limit"] = limit
        if retry_after is not None:
            ctx.details["retry_after"] = retry_after
        super().__init__(message, ctx)
        self.identity = identity
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.scope = scope

    @property
    def user_message(self) -> str:
        """Actionable message suitable for showing to the end user."""
        if self.retry_after is None:
            return "Too many requests. Please try again later."
        seconds = max(1, math.ceil(self.retry_after))
        unit = "second" if seconds == 1 else "seconds"
        return f"Too many requests. Please try again in {seconds} {unit}."


class BudgetExceededError(AiResilienceError):
    """Caller spent its daily AI budget.

    Raised by the orchestrator for operations without a fallback once the
    usage tracker reports the daily budget as spent.

    Attributes:
        identity: Identity over budget
        spent_cents: Spend so far today in US cents
        budget_cents: Daily budget in US cents
    """

    def __init__(
        self,
        *,
        identity: str,
        spent_cents: float,
        budget_cents: float,
    ) -> None:
        ctx = ErrorContext(source="usage")
        ctx.details.update(
            identity=identity, spent_cents=spent_cents, budget_cents=budget_cents
        )
        super().__init__("Daily AI budget exceeded", ctx)
        self.identity = identity
        self.spent_cents = spent_cents
        self.budget_cents = budget_cents

    @property
    def user_message(self) -> str:
        return "AI features are paused until tomorrow because today's budget is used up."


class ModelCallFailedError(AiResilienceError):
    """Model service call failed.

    Covers timeouts, transport failures, non-2xx statuses and malformed
    bodies. The orchestrator retries these internally and only surfaces
    them when retries are exhausted and no fallback exists.

    Attributes:
        error_class: Standardized error classification
        status_code: HTTP status code, when one was received
        attempts: Number of attempts made before giving up
    """

    def __init__(
        self,
        message: str,
        *,
        error_class: ErrorClass | None = None,
        status_code: int | None = None,
        attempts: int | None = None,
        operation: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        from ai_resilience.errors.classification import ErrorClass

        resolved_class = error_class or ErrorClass.OTHER
        ctx = ErrorContext(source="model")
        ctx.details["error_class"] = resolved_class.value
        if status_code is not None:
            ctx.details["status_code"] = status_code
        if attempts is not None:
            ctx.details["attempts"] = attempts
        if operation:
            ctx.details["operation"] = operation
        super().__init__(message, ctx)
        self.error_class = resolved_class
        self.status_code = status_code
        self.attempts = attempts
        self.operation = operation
        if cause is not None:
            self.__cause__ = cause


class ModelResponseInvalidError(ModelCallFailedError):
    """Model response failed schema validation.

    Treated exactly like a ModelCallFailedError for retry purposes.

    Attributes:
        errors: Validation error messages
        raw: The raw response payload
    """

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        raw: Any = None,
        operation: str | None = None,
    ) -> None:
        from ai_resilience.errors.classification import ErrorClass

        super().__init__(
            message,
            error_class=ErrorClass.INVALID_RESPONSE,
            operation=operation,
        )
        self.errors = errors or []
        self.raw = raw
        if self.errors:
            self.context.details["errors"] = self.errors


class FallbackFailedError(ModelCallFailedError):
    """Retries were exhausted and the fallback heuristic also failed."""


class QueueCapacityExceededError(AiResilienceError):
    """Retry queue is at its configured maximum size."""

    def __init__(self, max_size: int) -> None:
        ctx = ErrorContext(source="retry_queue")
        ctx.details["max_queue_size"] = max_size
        super().__init__(f"Queue size limit ({max_size}) exceeded", ctx)
        self.max_size = max_size


class CircuitOpenError(AiResilienceError):
    """Retry queue dispatch is suspended by the circuit breaker.

    Never surfaced to the original caller of ``enqueue``; used to describe
    the suspended state in logs and process results.
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        time_until_retry: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="retry_queue")
        if time_until_retry is not None:
            ctx.details["time_until_retry"] = time_until_retry
        super().__init__(message, ctx)
        self.time_until_retry = time_until_retry


class ExperimentNotFoundError(AiResilienceError):
    """Experiment id does not exist."""

    def __init__(self, experiment_id: str) -> None:
        ctx = ErrorContext(source="experiments")
        ctx.details["experiment_id"] = experiment_id
        super().__init__(f"Experiment not found: {experiment_id}", ctx)
        self.experiment_id = experiment_id


class StoreError(AiResilienceError):
    """Backing store operation failed."""

    def __init__(
        self,
        message: str,
        *,
        store: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = ErrorContext(source="store")
        if store:
            ctx.details["store"] = store
        super().__init__(message, ctx)
        self.store = store
        if cause is not None:
            self.__cause__ = cause


class RateLimiterError(AiResilienceError):
    """Administrative rate limiter operation failed."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, ErrorContext(source="rate_limiter"))
        if cause is not None:
            self.__cause__ = cause


class ConfigurationError(AiResilienceError):
    """Invalid configuration value."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        ctx = ErrorContext(source="config")
        if key:
            ctx.details["key"] = key
        super().__init__(message, ctx)
        self.key = key
