"""
A/B experiment management.

Experiments live in the document store at ``ab_tests/{id}``. Assignment and
outcome recording sit on the request path, so their store failures are
logged and absorbed; administrative calls (create, deactivate, compare)
propagate errors.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ai_resilience.errors import ExperimentNotFoundError
from ai_resilience.experiments.assignment import choose_variant
from ai_resilience.experiments.scoring import compare_results
from ai_resilience.experiments.types import (
    ComparisonResult,
    ExperimentConfig,
    ExperimentResults,
    ExperimentSettings,
    InsufficientData,
    OutcomeMetrics,
    SampleSize,
    Variant,
    VariantConfig,
)
from ai_resilience.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_resilience.stores.base import DocumentStore

logger = get_logger(__name__)


class ExperimentManager:
    """Creates experiments, assigns arms, records outcomes, compares arms.

    Example:
        >>> manager = ExperimentManager(MemoryDocumentStore())
        >>> exp_id = await manager.create(
        ...     "Categorization model comparison", "categorization",
        ...     VariantConfig(model="gpt-4o-mini"),
        ...     VariantConfig(model="gpt-4-turbo-preview"),
        ... )
        >>> variant = await manager.assign_variant(exp_id, "user123")
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: ExperimentSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings or ExperimentSettings()
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def settings(self) -> ExperimentSettings:
        return self._settings

    def _path(self, experiment_id: str) -> str:
        return f"{self._settings.collection}/{experiment_id}"

    def _lock_for(self, experiment_id: str) -> asyncio.Lock:
        lock = self._locks.get(experiment_id)
        if lock is None:
            lock = self._locks[experiment_id] = asyncio.Lock()
        return lock

    async def _load(self, experiment_id: str) -> ExperimentConfig | None:
        doc = await self._store.get(self._path(experiment_id))
        if doc is None:
            return None
        return ExperimentConfig.model_validate(doc)

    async def create(
        self,
        name: str,
        operation: str,
        variant_a: VariantConfig | dict[str, Any],
        variant_b: VariantConfig | dict[str, Any],
        split_ratio: float = 0.5,
        active: bool = True,
    ) -> str:
        """Create and store a new experiment.

        Returns:
            The generated id, ``test_{operation}_{ms}``
        """
        now = self._clock()
        base_id = f"test_{operation}_{int(now * 1000)}"
        experiment_id = base_id
        suffix = 1
        while await self._store.get(self._path(experiment_id)) is not None:
            suffix += 1
            experiment_id = f"{base_id}_{suffix}"

        config = ExperimentConfig(
            id=experiment_id,
            name=name,
            operation=operation,
            variant_a=VariantConfig.model_validate(variant_a),
            variant_b=VariantConfig.model_validate(variant_b),
            split_ratio=split_ratio,
            active=active,
            start_date=now,
        )
        await self._store.set(self._path(experiment_id), config.model_dump(mode="json"))
        logger.info("Created experiment", experiment_id=experiment_id, operation=operation)
        return experiment_id

    async def deactivate(self, experiment_id: str) -> None:
        """Stop an experiment, keeping its results.

        Raises:
            ExperimentNotFoundError: If the experiment does not exist
        """
        if await self._store.get(self._path(experiment_id)) is None:
            raise ExperimentNotFoundError(experiment_id)
        await self._store.set(
            self._path(experiment_id),
            {"active": False, "end_date": self._clock()},
            merge=True,
        )
        logger.info("Deactivated experiment", experiment_id=experiment_id)

    async def get(self, experiment_id: str) -> ExperimentConfig | None:
        return await self._load(experiment_id)

    async def get_active(self, operation: str | None = None) -> list[ExperimentConfig]:
        """Active experiments, optionally for one operation, oldest first."""
        try:
            docs = await self._store.list(self._settings.collection)
        except Exception as e:
            logger.error("Failed to list experiments", error=str(e))
            return []

        active: list[ExperimentConfig] = []
        for path, doc in docs:
            try:
                config = ExperimentConfig.model_validate(doc)
            except ValidationError as e:
                logger.warning("Skipping malformed experiment", path=path, error=str(e))
                continue
            if config.active and (operation is None or config.operation == operation):
                active.append(config)
        active.sort(key=lambda c: (c.start_date or 0.0, c.id))
        return active

    async def active_for(self, operation: str) -> ExperimentConfig | None:
        """The experiment that governs ``operation``, if any."""
        active = await self.get_active(operation)
        return active[0] if active else None

    async def assign_variant(self, experiment_id: str, identity: str) -> Variant | None:
        """Deterministically assign ``identity`` to an arm.

        Returns:
            The arm, or None if the experiment is missing, inactive or
            unreadable
        """
        try:
            config = await self._load(experiment_id)
        except Exception as e:
            logger.error(
                "Variant assignment failed", experiment_id=experiment_id, error=str(e)
            )
            return None

        if config is None:
            logger.warning("Experiment not found", experiment_id=experiment_id)
            return None
        if not config.active:
            logger.debug("Experiment not active", experiment_id=experiment_id)
            return None

        return choose_variant(identity, config.split_ratio)

    async def record_outcome(
        self,
        experiment_id: str,
        variant: Variant | str,
        metrics: OutcomeMetrics,
    ) -> bool:
        """Fold one outcome into an arm's running aggregates.

        Returns:
            True if recorded; False for missing or inactive experiments and
            on store failure
        """
        arm = Variant(variant)
        async with self._lock_for(experiment_id):
            try:
                config = await self._load(experiment_id)
                if config is None:
                    logger.warning(
                        "Outcome for unknown experiment ignored",
                        experiment_id=experiment_id,
                    )
                    return False
                if not config.active:
                    logger.info(
                        "Outcome for inactive experiment ignored",
                        experiment_id=experiment_id,
                    )
                    return False

                config.results.for_variant(arm).record(metrics)
                await self._store.set(
                    self._path(experiment_id),
                    {
                        "results": config.results.model_dump(mode="json"),
                        "updated_at": self._clock(),
                    },
                    merge=True,
                )
            except Exception as e:
                logger.error(
                    "Failed to record experiment outcome",
                    experiment_id=experiment_id,
                    variant=arm.value,
                    error=str(e),
                )
                return False
        return True

    async def compare(self, experiment_id: str) -> ComparisonResult | InsufficientData:
        """Compare the two arms of an experiment.

        Raises:
            ExperimentNotFoundError: If the experiment does not exist
        """
        config = await self._load(experiment_id)
        if config is None:
            raise ExperimentNotFoundError(experiment_id)

        results: ExperimentResults = config.results
        a, b = results.variant_a, results.variant_b
        required = self._settings.min_sample_size
        if a.total_operations < required or b.total_operations < required:
            logger.info(
                "Insufficient data for comparison",
                experiment_id=experiment_id,
                required=required,
            )
            return InsufficientData(
                experiment_id=experiment_id,
                required=required,
                sample_size=SampleSize(a.total_operations, b.total_operations),
            )

        return compare_results(
            a,
            b,
            weights=self._settings.weights,
            tie_tolerance=self._settings.tie_tolerance,
        )
