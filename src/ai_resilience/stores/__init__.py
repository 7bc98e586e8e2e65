"""
External store contracts and implementations.

Provides memory, file and Redis backends for the rate limiter, result cache,
experiments and retry queue.
"""

from ai_resilience.stores.base import (
    BlobStore,
    DocumentStore,
    SlidingWindowStore,
    WindowSnapshot,
    merge_fields,
)
from ai_resilience.stores.disk import FileBlobStore, FileDocumentStore
from ai_resilience.stores.memory import (
    MemoryBlobStore,
    MemoryDocumentStore,
    MemorySlidingWindowStore,
)
from ai_resilience.stores.redis import RedisSlidingWindowStore

__all__ = [
    "BlobStore",
    "DocumentStore",
    "FileBlobStore",
    "FileDocumentStore",
    "MemoryBlobStore",
    "MemoryDocumentStore",
    "MemorySlidingWindowStore",
    "RedisSlidingWindowStore",
    "SlidingWindowStore",
    "WindowSnapshot",
    "merge_fields",
]
