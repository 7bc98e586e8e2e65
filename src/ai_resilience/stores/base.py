"""
Contracts for the external stores used by the resilience layer.

- SlidingWindowStore: atomic counter store backing the rate limiter
- DocumentStore: persistent document store with partial-field merge
  (result cache, experiments, usage aggregates)
- BlobStore: local durable storage of an opaque serialized blob (retry queue)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class WindowSnapshot:
    """State of one sliding window after a store operation.

    Attributes:
        count: Entries inside the window before the current request
        oldest: Timestamp (seconds) of the oldest entry still in the window
        recorded: Whether the current request was recorded
    """

    count: int
    oldest: float | None = None
    recorded: bool = False


class SlidingWindowStore(ABC):
    """Sorted-set style store of request timestamps per key.

    Entries with a timestamp at or before ``now - window_seconds`` are outside
    the window and are removed before counting.
    """

    @abstractmethod
    async def check_and_record(
        self,
        key: str,
        now: float,
        window_seconds: float,
        limit: int,
    ) -> WindowSnapshot:
        """Prune, count, and record ``now`` if the count is below ``limit``.

        Must be atomic against concurrent callers sharing ``key``.

        Args:
            key: Window key
            now: Current timestamp in seconds
            window_seconds: Window length
            limit: Maximum entries admitted in the window

        Returns:
            WindowSnapshot with the count before recording
        """
        raise NotImplementedError

    @abstractmethod
    async def prune_and_count(
        self,
        key: str,
        now: float,
        window_seconds: float,
    ) -> WindowSnapshot:
        """Prune expired entries and count the rest without recording."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete every entry for ``key``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close the store (cleanup)."""
        pass


class DocumentStore(ABC):
    """Document store addressed by slash-separated paths.

    Paths alternate collection and document ids, e.g.
    ``users/user123/ai_cache/categorization_1x2y``.
    """

    @abstractmethod
    async def get(self, path: str) -> dict[str, Any] | None:
        """Get a document, or None if absent."""
        raise NotImplementedError

    @abstractmethod
    async def set(
        self, path: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        """Write a document.

        Args:
            path: Document path
            data: Document fields
            merge: Merge fields into an existing document instead of replacing it
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a document. Returns True if it existed."""
        raise NotImplementedError

    @abstractmethod
    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """List the documents directly inside a collection.

        Returns:
            (path, data) pairs
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Close the store (cleanup)."""
        pass


class BlobStore(ABC):
    """Key/value store of opaque string blobs local to one process instance."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a blob, or None if absent."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a blob."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a blob if present."""
        raise NotImplementedError


def merge_fields(target: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``updates`` into ``target`` (nested maps are merged).

    Args:
        target: Existing document (mutated in place)
        updates: Fields to merge

    Returns:
        The merged document
    """
    for key, value in updates.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merge_fields(existing, value)
        else:
            target[key] = value
    return target
