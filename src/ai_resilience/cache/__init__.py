"""
Result caching for AI operations.

Provides:
- CacheKeyGenerator: content fingerprints per operation
- CacheConfig: per-operation TTL policy
- ResultCache: per-identity cache on a DocumentStore
"""

from ai_resilience.cache.key import CacheKeyGenerator, rolling_hash
from ai_resilience.cache.manager import (
    DEFAULT_OPERATION_TTLS,
    CacheConfig,
    CacheEntry,
    CacheStats,
    ResultCache,
)

__all__ = [
    "DEFAULT_OPERATION_TTLS",
    "CacheConfig",
    "CacheEntry",
    "CacheKeyGenerator",
    "CacheStats",
    "ResultCache",
    "rolling_hash",
]
