"""
In-memory store implementations.

Suitable for tests and single-process deployments. Documents and blobs are
deep-copied on the way in and out so callers never share mutable state with
the store.
"""

from __future__ import annotations

import asyncio
import bisect
import copy
from typing import Any

from ai_resilience.stores.base import (
    BlobStore,
    DocumentStore,
    SlidingWindowStore,
    WindowSnapshot,
    merge_fields,
)


class MemorySlidingWindowStore(SlidingWindowStore):
    """In-memory sliding window store guarded by an asyncio lock.

    Example:
        >>> store = MemorySlidingWindowStore()
        >>> snap = await store.check_and_record("ratelimit:u1", now, 3600, 100)
    """

    def __init__(self) -> None:
        self._windows: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    def _prune(self, key: str, now: float, window_seconds: float) -> list[float]:
        entries = self._windows.setdefault(key, [])
        cutoff = bisect.bisect_right(entries, now - window_seconds)
        if cutoff:
            del entries[:cutoff]
        return entries

    async def check_and_record(
        self,
        key: str,
        now: float,
        window_seconds: float,
        limit: int,
    ) -> WindowSnapshot:
        async with self._lock:
            entries = self._prune(key, now, window_seconds)
            count = len(entries)
            recorded = count < limit
            if recorded:
                bisect.insort(entries, now)
            oldest = entries[0] if entries else None
            return WindowSnapshot(count=count, oldest=oldest, recorded=recorded)

    async def prune_and_count(
        self,
        key: str,
        now: float,
        window_seconds: float,
    ) -> WindowSnapshot:
        async with self._lock:
            entries = self._prune(key, now, window_seconds)
            if not entries:
                self._windows.pop(key, None)
                return WindowSnapshot(count=0)
            return WindowSnapshot(count=len(entries), oldest=entries[0])

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)

    @property
    def size(self) -> int:
        """Number of tracked keys."""
        return len(self._windows)


class MemoryDocumentStore(DocumentStore):
    """In-memory document store with merge semantics."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, path: str) -> dict[str, Any] | None:
        async with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    async def set(
        self, path: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        async with self._lock:
            if merge and path in self._docs:
                merge_fields(self._docs[path], copy.deepcopy(data))
            else:
                self._docs[path] = copy.deepcopy(data)

    async def delete(self, path: str) -> bool:
        async with self._lock:
            return self._docs.pop(path, None) is not None

    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        prefix = collection.rstrip("/") + "/"
        async with self._lock:
            return [
                (path, copy.deepcopy(doc))
                for path, doc in self._docs.items()
                if path.startswith(prefix) and "/" not in path[len(prefix):]
            ]

    @property
    def size(self) -> int:
        """Number of stored documents."""
        return len(self._docs)


class MemoryBlobStore(BlobStore):
    """In-memory blob store."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._blobs.get(key)

    async def set(self, key: str, value: str) -> None:
        self._blobs[key] = value

    async def delete(self, key: str) -> None:
        self._blobs.pop(key, None)
