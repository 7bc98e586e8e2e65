"""
Result cache for AI operations.

Results are stored per identity at ``users/{identity}/ai_cache/{key}`` in a
DocumentStore, with a per-operation TTL. Expiry is checked at read time; an
operation whose TTL is 0 is never cached. Cache failures never fail the
caller: reads degrade to misses and writes are dropped with a log line.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ai_resilience.cache.key import CacheKeyGenerator
from ai_resilience.errors import ConfigurationError, StoreError
from ai_resilience.telemetry.logger import get_logger
from ai_resilience.utils.background import BackgroundWriter

if TYPE_CHECKING:
    from collections.abc import Callable

    from ai_resilience.stores.base import DocumentStore

logger = get_logger(__name__)

DEFAULT_OPERATION_TTLS: dict[str, float] = {
    "categorization": 86400.0,  # 24 hours
    "sentiment": 86400.0,
    "faq_detection": 604800.0,  # 7 days
    "voice_matching": 1800.0,  # 30 minutes
    "opportunity_scoring": 86400.0,
    "daily_agent": 0.0,  # never cached
}


@dataclass
class CacheStats:
    """Cache statistics.

    Attributes:
        hits: Number of cache hits
        misses: Number of cache misses (including expired and denied reads)
        sets: Number of successful writes
        expired: Misses caused by an expired entry
        errors: Store failures swallowed by the cache
        evictions: Entries physically removed by a sweep
    """

    hits: int = 0
    misses: int = 0
    sets: int = 0
    expired: int = 0
    errors: int = 0
    evictions: int = 0

    @property
    def total_requests(self) -> int:
        """Get total number of requests."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Get cache hit rate (0.0 to 1.0)."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "expired": self.expired,
            "errors": self.errors,
            "evictions": self.evictions,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }

    def reset(self) -> None:
        """Reset statistics."""
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.expired = 0
        self.errors = 0
        self.evictions = 0


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        enabled: Whether caching is enabled
        default_ttl: TTL in seconds for operations missing from the table
        operation_ttls: TTL in seconds per operation (0 disables caching)
        collection: Per-identity collection name
        strong_keys: Use SHA-256 keys instead of the 32-bit rolling hash
    """

    enabled: bool = True
    default_ttl: float = 3600.0
    operation_ttls: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_OPERATION_TTLS)
    )
    collection: str = "ai_cache"
    strong_keys: bool = False

    def __post_init__(self) -> None:
        if self.default_ttl < 0:
            raise ConfigurationError(
                "default_ttl must not be negative", key="cache.default_ttl"
            )
        for operation, ttl in self.operation_ttls.items():
            if ttl < 0:
                raise ConfigurationError(
                    f"TTL for {operation} must not be negative",
                    key=f"cache.operation_ttls.{operation}",
                )

    @classmethod
    def disabled(cls) -> CacheConfig:
        """Create disabled cache config."""
        return cls(enabled=False)

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Create configuration from environment variables.

        ``AI_RESILIENCE_CACHE_TTL_<OPERATION>`` overrides one table entry.
        """
        prefix = "AI_RESILIENCE_CACHE_TTL_"
        ttls = dict(DEFAULT_OPERATION_TTLS)
        for name, value in os.environ.items():
            if name.startswith(prefix) and len(name) > len(prefix):
                ttls[name[len(prefix):].lower()] = float(value)

        enabled = os.getenv("AI_RESILIENCE_CACHE_ENABLED", "true").lower()
        return cls(
            enabled=enabled not in ("0", "false", "no"),
            default_ttl=float(os.getenv("AI_RESILIENCE_CACHE_DEFAULT_TTL", "3600")),
            operation_ttls=ttls,
            strong_keys=os.getenv("AI_RESILIENCE_CACHE_STRONG_KEYS", "0") == "1",
        )

    def ttl_for(self, operation: str) -> float:
        return self.operation_ttls.get(operation, self.default_ttl)


@dataclass
class CacheEntry:
    """A cached operation result.

    Attributes:
        key: Cache key
        operation: Operation that produced the result
        result: The cached result payload
        cached_at: Unix timestamp of the write
        expires_at: Unix timestamp after which the entry is ignored
        hit_count: Number of hits served
        last_hit_at: Unix timestamp of the most recent hit
    """

    key: str
    operation: str
    result: dict[str, Any]
    cached_at: float
    expires_at: float
    hit_count: int = 0
    last_hit_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "operation": self.operation,
            "result": self.result,
            "cached_at": self.cached_at,
            "expires_at": self.expires_at,
            "hit_count": self.hit_count,
            "last_hit_at": self.last_hit_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            key=data["key"],
            operation=data["operation"],
            result=data["result"],
            cached_at=float(data["cached_at"]),
            expires_at=float(data["expires_at"]),
            hit_count=int(data.get("hit_count") or 0),
            last_hit_at=data.get("last_hit_at"),
        )


class ResultCache:
    """Per-identity result cache on a DocumentStore.

    Example:
        >>> cache = ResultCache(MemoryDocumentStore())
        >>> key = cache.generate_key("Love your content!", "categorization")
        >>> entry = await cache.get(key, "user123")
        >>> if entry is None:
        ...     await cache.set(key, "user123", "categorization", result)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        identity_provider: Callable[[], str | None] | None = None,
        background: BackgroundWriter | None = None,
    ) -> None:
        """Initialize the result cache.

        Args:
            store: Backing document store
            config: Cache configuration
            clock: Returns the current unix time in seconds
            identity_provider: Returns the authenticated identity; when set,
                reads and writes for any other identity are refused
            background: Writer for hit-count updates
        """
        self._store = store
        self._config = config or CacheConfig()
        self._clock = clock
        self._identity_provider = identity_provider
        self._background = background or BackgroundWriter("cache")
        self._key_generator = CacheKeyGenerator(strong=self._config.strong_keys)
        self._stats = CacheStats()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def generate_key(self, content: str, operation: str) -> str:
        """Fingerprint ``content`` for ``operation``."""
        return self._key_generator.generate(content, operation)

    def get_ttl(self, operation: str) -> float:
        return self._config.ttl_for(operation)

    def is_caching_enabled(self, operation: str) -> bool:
        """Whether results of ``operation`` are cached at all."""
        return self._config.enabled and self.get_ttl(operation) > 0

    def _path(self, key: str, identity: str) -> str:
        return f"users/{identity}/{self._config.collection}/{key}"

    def _authorized(self, identity: str, action: str) -> bool:
        if self._identity_provider is None:
            return True
        current = self._identity_provider()
        if current == identity:
            return True
        logger.warning(
            "Cache access denied for identity",
            action=action,
            identity=identity,
        )
        return False

    def _miss(self) -> None:
        self._stats.misses += 1

    async def get(self, key: str, identity: str) -> CacheEntry | None:
        """Look up a cached result.

        Args:
            key: Cache key
            identity: Owner of the cache entry

        Returns:
            The entry on a hit, None on a miss (absent, expired, disabled,
            denied, or store failure)
        """
        if not self._config.enabled or not self._authorized(identity, "get"):
            self._miss()
            return None

        path = self._path(key, identity)
        try:
            doc = await self._store.get(path)
        except Exception as e:
            self._stats.errors += 1
            self._miss()
            logger.warning("Cache read failed", key=key, error=str(e))
            return None

        if doc is None:
            self._miss()
            return None

        try:
            entry = CacheEntry.from_dict(doc)
        except (KeyError, TypeError, ValueError) as e:
            self._miss()
            logger.warning("Malformed cache entry", key=key, error=str(e))
            return None

        now = self._clock()
        if not self.is_caching_enabled(entry.operation):
            self._miss()
            return None
        if entry.is_expired(now):
            self._stats.expired += 1
            self._miss()
            logger.debug("Cache entry expired", key=key)
            return None

        self._stats.hits += 1
        entry.hit_count += 1
        entry.last_hit_at = now
        self._background.spawn(
            self._record_hit(path, entry.hit_count, now),
            description="cache hit count",
        )
        logger.debug("Cache hit", key=key, hit_count=entry.hit_count)
        return entry

    async def _record_hit(self, path: str, hit_count: int, now: float) -> None:
        # Concurrent hits may overwrite each other's increment.
        if await self._store.get(path) is None:
            return
        await self._store.set(path, {"hit_count": hit_count, "last_hit_at": now}, merge=True)

    async def set(
        self,
        key: str,
        identity: str,
        operation: str,
        result: dict[str, Any],
        ttl: float | None = None,
        *,
        raise_on_error: bool = False,
    ) -> bool:
        """Store a result.

        Args:
            key: Cache key
            identity: Owner of the cache entry
            operation: Operation that produced the result
            result: Result payload
            ttl: TTL override in seconds; ignored for operations that are
                never cached
            raise_on_error: Re-raise store failures instead of returning False

        Returns:
            True if the entry was written

        Raises:
            StoreError: If the store fails and ``raise_on_error`` is set
        """
        if not self.is_caching_enabled(operation):
            return False
        effective_ttl = self.get_ttl(operation) if ttl is None else ttl
        if effective_ttl <= 0:
            return False
        if not self._authorized(identity, "set"):
            return False

        now = self._clock()
        entry = CacheEntry(
            key=key,
            operation=operation,
            result=result,
            cached_at=now,
            expires_at=now + effective_ttl,
        )
        try:
            await self._store.set(self._path(key, identity), entry.to_dict())
        except Exception as e:
            self._stats.errors += 1
            logger.warning("Cache write failed", key=key, error=str(e))
            if raise_on_error:
                raise StoreError("Cache write failed", store="cache", cause=e) from e
            return False

        self._stats.sets += 1
        logger.debug("Cached result", key=key, operation=operation, ttl=effective_ttl)
        return True

    async def invalidate(self, key: str, identity: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        if not self._authorized(identity, "invalidate"):
            return False
        return await self._store.delete(self._path(key, identity))

    async def sweep_expired(self, identity: str) -> int:
        """Physically delete expired entries for ``identity``.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        collection = f"users/{identity}/{self._config.collection}"
        for path, doc in await self._store.list(collection):
            expires_at = doc.get("expires_at")
            # entries without an expiry can never be served
            if expires_at is None or now >= float(expires_at):
                if await self._store.delete(path):
                    removed += 1
        self._stats.evictions += removed
        if removed:
            logger.info("Swept expired cache entries", identity=identity, removed=removed)
        return removed

    async def drain(self) -> None:
        """Wait for pending hit-count writes."""
        await self._background.drain()

    def get_stats(self) -> CacheStats:
        """Get a copy of the cache statistics."""
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            sets=self._stats.sets,
            expired=self._stats.expired,
            errors=self._stats.errors,
            evictions=self._stats.evictions,
        )
