"""
Detached background writes.

Best-effort side writes (cache hit counts, metrics, experiment outcomes) are
spawned as independent asyncio tasks. Their failures are logged and
discarded; the caller's critical path never awaits them.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from ai_resilience.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = get_logger(__name__)


class BackgroundWriter:
    """Spawns fire-and-forget coroutines and keeps them referenced.

    The event loop only keeps weak references to tasks, so pending tasks are
    held in a set until they finish.

    Example:
        >>> writer = BackgroundWriter()
        >>> writer.spawn(store.set(path, data, merge=True), description="hit count")
        >>> await writer.drain()  # at shutdown or in tests
    """

    def __init__(self, name: str = "background") -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._failures = 0

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        description: str = "background write",
    ) -> asyncio.Task[Any]:
        """Schedule a coroutine without awaiting it.

        Args:
            coro: Coroutine to run
            description: Label used when logging a failure

        Returns:
            The created task
        """
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, description))
        return task

    def _on_done(self, task: asyncio.Task[Any], description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._failures += 1
            logger.warning(
                "Background write failed",
                writer=self._name,
                description=description,
                error=str(error),
                error_type=type(error).__name__,
            )

    async def drain(self) -> None:
        """Wait for all pending background writes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        """Number of writes still running."""
        return len(self._tasks)

    @property
    def failures(self) -> int:
        """Number of writes that raised."""
        return self._failures
