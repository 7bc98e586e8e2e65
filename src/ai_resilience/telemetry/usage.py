"""
Cost and usage tracking for model calls.

Each tracked call is priced from a per-model table and folded into a daily
and a monthly aggregate document per identity:
``users/{identity}/ai_usage/daily-YYYY-MM-DD`` and
``users/{identity}/ai_usage/monthly-YYYY-MM``. Periods are computed in UTC.

Tracking sits behind the orchestrator's background writes; ``track`` logs
and absorbs store failures. Folds for one identity are serialized, so
overlapping background writes never drop each other's cost.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ai_resilience.errors import ConfigurationError
from ai_resilience.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_resilience.stores.base import DocumentStore

logger = get_logger(__name__)

# USD per 1M tokens
PRICING: dict[str, dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-4-turbo": {"input": 10.0, "output": 30.0},
    "gpt-4-turbo-preview": {"input": 10.0, "output": 30.0},
}

DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def calculate_operation_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> float:
    """Price one model call.

    Combined model names such as ``"gpt-4o-mini + gpt-4-turbo"`` are priced
    by their first component. Unknown models are priced as gpt-4o-mini.

    Args:
        model: Model name
        prompt_tokens: Input tokens
        completion_tokens: Output tokens

    Returns:
        Cost in US cents, rounded to 2 decimal places

    Example:
        >>> calculate_operation_cost("gpt-4-turbo", 1000, 500)
        2.5
    """
    base_model = model.split("+")[0].strip()
    pricing = PRICING.get(base_model) or PRICING[DEFAULT_PRICING_MODEL]

    input_cents = prompt_tokens * pricing["input"] / 1_000_000 * 100
    output_cents = completion_tokens * pricing["output"] / 1_000_000 * 100
    return round(input_cents + output_cents, 2)


@dataclass
class UsageConfig:
    """Usage tracking configuration.

    Attributes:
        daily_budget_cents: Daily budget per identity in US cents
        alert_threshold: Fraction of the budget that triggers an alert
        collection: Per-identity collection name
    """

    daily_budget_cents: float = 500.0
    alert_threshold: float = 0.8
    collection: str = "ai_usage"

    def __post_init__(self) -> None:
        if self.daily_budget_cents <= 0:
            raise ConfigurationError(
                "daily_budget_cents must be positive", key="usage.daily_budget_cents"
            )
        if not 0 < self.alert_threshold <= 1:
            raise ConfigurationError(
                "alert_threshold must be in (0, 1]", key="usage.alert_threshold"
            )

    @classmethod
    def from_env(cls) -> UsageConfig:
        """Create configuration from environment variables."""
        return cls(
            daily_budget_cents=float(
                os.getenv("AI_RESILIENCE_USAGE_DAILY_BUDGET_CENTS", "500")
            ),
            alert_threshold=float(os.getenv("AI_RESILIENCE_USAGE_ALERT_THRESHOLD", "0.8")),
        )


@dataclass
class BudgetStatus:
    """Today's spend for one identity.

    Attributes:
        total_cost_cents: Spend so far today
        budget_limit_cents: Daily budget
        budget_used_percent: Spend as a percentage of the budget
        alert: Spend reached the alert threshold
        exceeded: Spend reached the budget
    """

    total_cost_cents: float
    budget_limit_cents: float
    budget_used_percent: float
    alert: bool
    exceeded: bool

    @property
    def remaining_cents(self) -> float:
        return max(0.0, self.budget_limit_cents - self.total_cost_cents)


def period_id(period: str, when: datetime) -> str:
    """Document id of the aggregate covering ``when``."""
    if period == "daily":
        return f"daily-{when:%Y-%m-%d}"
    if period == "monthly":
        return f"monthly-{when:%Y-%m}"
    raise ValueError(f"Unknown period: {period}")


class UsageTracker:
    """Tracks per-identity model cost against a daily budget.

    Example:
        >>> tracker = UsageTracker(MemoryDocumentStore())
        >>> cost = await tracker.track("user123", "categorization", "gpt-4o-mini", 120, 40)
        >>> status = await tracker.get_budget_status("user123")
    """

    def __init__(
        self,
        store: DocumentStore,
        config: UsageConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config or UsageConfig()
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> UsageConfig:
        return self._config

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        return lock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _path(self, identity: str, period: str, when: datetime) -> str:
        return f"users/{identity}/{self._config.collection}/{period_id(period, when)}"

    async def track(
        self,
        identity: str,
        operation: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> float:
        """Price a model call and fold it into the identity's aggregates.

        Returns:
            The call's cost in US cents (also when recording failed)
        """
        cost = calculate_operation_cost(model, prompt_tokens, completion_tokens)
        tokens = prompt_tokens + completion_tokens
        now = self._now()

        async with self._lock_for(identity):
            for period in ("daily", "monthly"):
                try:
                    await self._fold(identity, period, now, operation, model, cost, tokens)
                except Exception as e:
                    logger.error(
                        "Failed to track model usage",
                        identity=identity,
                        period=period,
                        error=str(e),
                    )
        return cost

    async def _fold(
        self,
        identity: str,
        period: str,
        now: datetime,
        operation: str,
        model: str,
        cost: float,
        tokens: int,
    ) -> None:
        path = self._path(identity, period, now)
        doc = await self._store.get(path) or {
            "period": period,
            "total_cost_cents": 0.0,
            "cost_by_operation": {},
            "cost_by_model": {},
            "total_tokens": 0,
            "tokens_by_operation": {},
            "budget_alert_sent": False,
            "budget_exceeded": False,
            "created_at": self._clock(),
        }

        total = doc.get("total_cost_cents", 0.0) + cost
        cost_by_operation = dict(doc.get("cost_by_operation") or {})
        cost_by_operation[operation] = cost_by_operation.get(operation, 0.0) + cost
        cost_by_model = dict(doc.get("cost_by_model") or {})
        cost_by_model[model] = cost_by_model.get(model, 0.0) + cost
        tokens_by_operation = dict(doc.get("tokens_by_operation") or {})
        tokens_by_operation[operation] = tokens_by_operation.get(operation, 0) + tokens

        update: dict[str, Any] = {
            **doc,
            "total_cost_cents": total,
            "cost_by_operation": cost_by_operation,
            "cost_by_model": cost_by_model,
            "total_tokens": doc.get("total_tokens", 0) + tokens,
            "tokens_by_operation": tokens_by_operation,
            "updated_at": self._clock(),
        }

        if period == "daily":
            budget = self._config.daily_budget_cents
            used_percent = total / budget * 100
            update["budget_limit_cents"] = budget
            update["budget_used_percent"] = used_percent
            if used_percent >= self._config.alert_threshold * 100 and not doc.get(
                "budget_alert_sent"
            ):
                update["budget_alert_sent"] = True
                logger.warning(
                    "Daily AI budget alert threshold reached",
                    identity=identity,
                    total_cost_cents=round(total, 2),
                    budget_used_percent=round(used_percent, 1),
                )
            if total >= budget:
                update["budget_exceeded"] = True

        await self._store.set(path, update)

    async def get_usage(self, identity: str, period: str = "daily") -> dict[str, Any] | None:
        """The current aggregate document for ``period``, or None."""
        return await self._store.get(self._path(identity, period, self._now()))

    async def get_budget_status(self, identity: str) -> BudgetStatus:
        """Today's spend against the daily budget."""
        doc = await self.get_usage(identity, "daily") or {}
        budget = self._config.daily_budget_cents
        total = float(doc.get("total_cost_cents", 0.0))
        used_percent = total / budget * 100
        return BudgetStatus(
            total_cost_cents=round(total, 2),
            budget_limit_cents=budget,
            budget_used_percent=used_percent,
            alert=used_percent >= self._config.alert_threshold * 100,
            exceeded=total >= budget,
        )
