"""错误分类模块：将模型服务失败映射到标准错误类别。

Error classification for model-service and infrastructure failures.

Maps HTTP status codes and transport conditions to a small set of error
classes that drive retry decisions in the orchestrator.
"""

from __future__ import annotations

from enum import Enum


class ErrorClass(str, Enum):
    """Standard error classification."""

    INVALID_REQUEST = "invalid_request"
    """Malformed request body or unsupported operation."""

    AUTHENTICATION = "authentication"
    """Missing/invalid credentials for the model service."""

    RATE_LIMITED = "rate_limited"
    """Throttled by a local quota or by the model service."""

    TIMEOUT = "timeout"
    """Request timed out."""

    SERVER_ERROR = "server_error"
    """Transient server-side failure (5xx)."""

    OVERLOADED = "overloaded"
    """Service overloaded / temporarily unavailable."""

    INVALID_RESPONSE = "invalid_response"
    """Response body was malformed or failed schema validation."""

    TRANSPORT = "transport"
    """Connection-level failure before a response was received."""

    OTHER = "other"
    """Unknown classification."""


# The orchestrator treats every model-call failure as retryable; this set is
# what the retry policy consults for errors that carry an explicit class.
_RETRYABLE_CLASSES: set[ErrorClass] = {
    ErrorClass.RATE_LIMITED,
    ErrorClass.TIMEOUT,
    ErrorClass.SERVER_ERROR,
    ErrorClass.OVERLOADED,
    ErrorClass.INVALID_RESPONSE,
    ErrorClass.TRANSPORT,
    ErrorClass.OTHER,
}

_DEFAULT_STATUS_MAPPING: dict[int, ErrorClass] = {
    400: ErrorClass.INVALID_REQUEST,
    401: ErrorClass.AUTHENTICATION,
    403: ErrorClass.AUTHENTICATION,
    408: ErrorClass.TIMEOUT,
    422: ErrorClass.INVALID_REQUEST,
    429: ErrorClass.RATE_LIMITED,
    500: ErrorClass.SERVER_ERROR,
    502: ErrorClass.SERVER_ERROR,
    503: ErrorClass.OVERLOADED,
    504: ErrorClass.TIMEOUT,
    529: ErrorClass.OVERLOADED,
}


def classify_http_status(status_code: int) -> ErrorClass:
    """Classify an HTTP status code into a standard error class.

    Args:
        status_code: HTTP status code

    Returns:
        ErrorClass representing the error type
    """
    if status_code in _DEFAULT_STATUS_MAPPING:
        return _DEFAULT_STATUS_MAPPING[status_code]

    if 400 <= status_code < 500:
        return ErrorClass.INVALID_REQUEST
    if 500 <= status_code < 600:
        return ErrorClass.SERVER_ERROR

    return ErrorClass.OTHER


def is_retryable(error_class: ErrorClass) -> bool:
    """Check if an error class is retryable by default.

    Args:
        error_class: The error class to check

    Returns:
        True if the error is typically retryable
    """
    return error_class in _RETRYABLE_CLASSES
