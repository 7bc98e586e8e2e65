"""
Telemetry module for ai-resilience-python.

Provides structured logging, in-process metrics, and cost/usage tracking.
"""

from ai_resilience.telemetry.logger import (
    JsonFormatter,
    LogContext,
    LogLevel,
    ResilienceLogger,
    SensitiveDataMasker,
    TextFormatter,
    get_log_context,
    get_logger,
    log_context,
)
from ai_resilience.telemetry.metrics import (
    MetricLabels,
    MetricsCollector,
    MetricSnapshot,
)
from ai_resilience.telemetry.usage import (
    PRICING,
    BudgetStatus,
    UsageConfig,
    UsageTracker,
    calculate_operation_cost,
)

__all__ = [
    # Usage
    "PRICING",
    "BudgetStatus",
    # Logger
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    # Metrics
    "MetricLabels",
    "MetricSnapshot",
    "MetricsCollector",
    "ResilienceLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "UsageConfig",
    "UsageTracker",
    "calculate_operation_cost",
    "get_log_context",
    "get_logger",
    "log_context",
]
