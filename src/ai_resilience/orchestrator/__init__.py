"""
Resilient call orchestrator.
"""

from ai_resilience.orchestrator.core import ResilientOrchestrator
from ai_resilience.orchestrator.operations import (
    CATEGORIZATION,
    FAQ_DETECTION,
    OPPORTUNITY_SCORING,
    SENTIMENT,
    default_operations,
)
from ai_resilience.orchestrator.types import (
    OperationResult,
    OperationSpec,
    OrchestratorConfig,
    ResultSource,
)

__all__ = [
    "CATEGORIZATION",
    "FAQ_DETECTION",
    "OPPORTUNITY_SCORING",
    "SENTIMENT",
    "OperationResult",
    "OperationSpec",
    "OrchestratorConfig",
    "ResilientOrchestrator",
    "ResultSource",
    "default_operations",
]
