"""
Durable retry queue for failed side effects.

Failed writes (read receipts, message sends, status updates, ...) are
enqueued with an operation type and a JSON payload. A registered async
processor per type retries them with a fixed backoff schedule until they
succeed or exhaust ``max_retries`` attempts. The whole queue is persisted to
a BlobStore after every mutation and rehydrated by ``start()``.

A process-wide circuit breaker suspends dispatch after a run of consecutive
failures.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ai_resilience.errors import (
    CircuitOpenError,
    ConfigurationError,
    QueueCapacityExceededError,
)
from ai_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
)
from ai_resilience.telemetry.logger import get_logger
from ai_resilience.utils.background import BackgroundWriter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ai_resilience.stores.base import BlobStore

logger = get_logger(__name__)


class SideEffectType(str, Enum):
    """Known side-effect types handled by the retry queue."""

    READ_RECEIPT_BATCH = "READ_RECEIPT_BATCH"
    MESSAGE_SEND = "MESSAGE_SEND"
    STATUS_UPDATE = "STATUS_UPDATE"
    CONVERSATION_CREATE = "CONVERSATION_CREATE"
    CACHE_WRITE = "CACHE_WRITE"


def _type_name(operation_type: SideEffectType | str) -> str:
    if isinstance(operation_type, SideEffectType):
        return operation_type.value
    return str(operation_type)


@dataclass
class RetryQueueConfig:
    """Configuration for the retry queue.

    Attributes:
        max_retries: Total attempts before an item is dropped
        backoff_delays: Delays in seconds indexed by retry count (last repeats)
        max_queue_size: Maximum number of queued items
        enable_circuit_breaker: Whether consecutive failures suspend dispatch
        circuit_breaker_threshold: Consecutive failures that activate the breaker
        circuit_breaker_cooldown: Seconds dispatch stays suspended
        storage_key: Blob key the queue is persisted under
        auto_process: Schedule passes automatically on the running event loop
    """

    max_retries: int = 5
    backoff_delays: tuple[float, ...] = (1.0, 2.0, 4.0, 8.0, 16.0, 30.0)
    max_queue_size: int = 100
    enable_circuit_breaker: bool = True
    circuit_breaker_threshold: int = 10
    circuit_breaker_cooldown: float = 60.0
    storage_key: str = "retry_queue"
    auto_process: bool = True

    def __post_init__(self) -> None:
        self.backoff_delays = tuple(float(d) for d in self.backoff_delays)
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be at least 1", key="retry_queue.max_retries"
            )
        if not self.backoff_delays or any(d < 0 for d in self.backoff_delays):
            raise ConfigurationError(
                "backoff_delays must be a non-empty list of non-negative seconds",
                key="retry_queue.backoff_delays",
            )
        if self.max_queue_size < 1:
            raise ConfigurationError(
                "max_queue_size must be positive", key="retry_queue.max_queue_size"
            )

    @classmethod
    def from_env(cls) -> RetryQueueConfig:
        """Create configuration from environment variables."""
        delays = os.getenv("AI_RESILIENCE_RETRY_QUEUE_BACKOFF_DELAYS")
        breaker = CircuitBreakerConfig.from_env()
        kwargs: dict[str, Any] = {
            "max_retries": int(os.getenv("AI_RESILIENCE_RETRY_QUEUE_MAX_RETRIES", "5")),
            "max_queue_size": int(os.getenv("AI_RESILIENCE_RETRY_QUEUE_MAX_SIZE", "100")),
            "enable_circuit_breaker": breaker.enabled,
            "circuit_breaker_threshold": breaker.failure_threshold,
            "circuit_breaker_cooldown": breaker.cooldown_seconds,
        }
        if delays:
            kwargs["backoff_delays"] = tuple(
                float(d) for d in delays.split(",") if d.strip()
            )
        return cls(**kwargs)

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            enabled=self.enable_circuit_breaker,
            failure_threshold=self.circuit_breaker_threshold,
            cooldown_seconds=self.circuit_breaker_cooldown,
        )

    def backoff_for(self, retry_count: int) -> float:
        """Delay after the ``retry_count``-th failure (1-based)."""
        index = min(max(retry_count - 1, 0), len(self.backoff_delays) - 1)
        return self.backoff_delays[index]


@dataclass
class RetryQueueItem:
    """A queued side effect.

    Attributes:
        id: Unique item id
        operation_type: Side-effect type name
        payload: Operation-specific JSON data
        retry_count: Failed attempts so far
        next_retry_time: Unix timestamp (seconds) when the item is due
        created_at: Unix timestamp (seconds) of enqueue
        last_error: Message of the most recent failure
        sequence: Insertion order, breaks ties between equally due items
    """

    id: str
    operation_type: str
    payload: dict[str, Any]
    retry_count: int = 0
    next_retry_time: float = 0.0
    created_at: float = 0.0
    last_error: str | None = None
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type,
            "payload": self.payload,
            "retry_count": self.retry_count,
            "next_retry_time": self.next_retry_time,
            "created_at": self.created_at,
            "last_error": self.last_error,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryQueueItem:
        return cls(
            id=data["id"],
            operation_type=data["operation_type"],
            payload=data.get("payload") or {},
            retry_count=int(data.get("retry_count", 0)),
            next_retry_time=float(data.get("next_retry_time", 0.0)),
            created_at=float(data.get("created_at", 0.0)),
            last_error=data.get("last_error"),
            sequence=int(data.get("sequence", 0)),
        )

    @property
    def sort_key(self) -> tuple[float, int]:
        return (self.next_retry_time, self.sequence)


@dataclass
class ProcessResult:
    """Summary of one ``process_due`` pass.

    Attributes:
        dispatched: Items handed to a processor
        succeeded: Items that succeeded and were removed
        failed: Items whose attempt failed (including dropped ones)
        dropped: Items removed after exhausting their attempts
        skipped: Due items without a registered processor
        circuit_open: Whether the breaker stopped (part of) the pass
        error: The breaker state as a CircuitOpenError when it stopped the pass
        next_wakeup: Unix timestamp of the next scheduled pass, if any
    """

    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: int = 0
    circuit_open: bool = False
    error: CircuitOpenError | None = None
    next_wakeup: float | None = None
    dropped_ids: list[str] = field(default_factory=list)


class RetryQueue:
    """Persistent retry queue with backoff and a circuit breaker.

    The queue is an ordinary injectable object; create one per process and
    share it explicitly.

    Example:
        >>> queue = RetryQueue(RetryQueueConfig(), FileBlobStore("/var/lib/app"))
        >>> queue.register_processor(SideEffectType.MESSAGE_SEND, send_message)
        >>> await queue.start()
        >>> item_id = await queue.enqueue(SideEffectType.MESSAGE_SEND, {"id": "m1"})
    """

    def __init__(
        self,
        config: RetryQueueConfig | None = None,
        store: BlobStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the retry queue.

        Args:
            config: Queue configuration
            store: Blob store for durable state; None keeps the queue in memory
            clock: Returns the current unix time in seconds
        """
        self._config = config or RetryQueueConfig()
        self._store = store
        self._clock = clock
        self._breaker = CircuitBreaker(self._config.breaker_config(), clock=clock)

        self._items: dict[str, RetryQueueItem] = {}
        self._processors: dict[str, Callable[[RetryQueueItem], Awaitable[bool]]] = {}
        self._in_flight: set[str] = set()
        self._sequence = 0

        self._timer: asyncio.TimerHandle | None = None
        self._background = BackgroundWriter("retry_queue")
        self._closed = False

    @property
    def config(self) -> RetryQueueConfig:
        return self._config

    @property
    def size(self) -> int:
        """Number of queued items."""
        return len(self._items)

    @property
    def is_circuit_breaker_active(self) -> bool:
        return self._breaker.is_active

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def items(self) -> list[RetryQueueItem]:
        """Queued items in dispatch order."""
        return sorted(self._items.values(), key=lambda i: i.sort_key)

    def get(self, item_id: str) -> RetryQueueItem | None:
        return self._items.get(item_id)

    def register_processor(
        self,
        operation_type: SideEffectType | str,
        processor: Callable[[RetryQueueItem], Awaitable[bool]],
    ) -> None:
        """Register the handler for one operation type.

        The handler returns True on success. Returning False or raising counts
        as a failed attempt.
        """
        self._processors[_type_name(operation_type)] = processor

    async def start(self) -> int:
        """Rehydrate persisted items and schedule an immediate pass.

        Returns:
            Number of items loaded
        """
        self._closed = False
        loaded = await self._load()
        if loaded:
            logger.info("Retry queue restored", items=loaded)
            self._schedule(self._clock())
        return loaded

    async def enqueue(
        self,
        operation_type: SideEffectType | str,
        payload: dict[str, Any],
    ) -> str:
        """Add a side effect to the queue, due immediately.

        Returns:
            The new item id

        Raises:
            QueueCapacityExceededError: If the queue is full
        """
        if len(self._items) >= self._config.max_queue_size:
            raise QueueCapacityExceededError(self._config.max_queue_size)

        type_name = _type_name(operation_type)
        now = self._clock()
        self._sequence += 1
        item = RetryQueueItem(
            id=f"{type_name}_{int(now * 1000)}_{uuid.uuid4().hex[:8]}",
            operation_type=type_name,
            payload=payload,
            next_retry_time=now,
            created_at=now,
            sequence=self._sequence,
        )
        self._items[item.id] = item
        await self._persist()
        logger.debug("Side effect enqueued", item_id=item.id, operation_type=type_name)

        self._schedule(now)
        return item.id

    async def dequeue(self, item_id: str) -> bool:
        """Remove an item. Returns True if it was queued."""
        if self._items.pop(item_id, None) is None:
            return False
        await self._persist()
        return True

    async def process_due(self) -> ProcessResult:
        """Dispatch every item whose ``next_retry_time`` has passed.

        Items are processed sequentially in ``(next_retry_time, sequence)``
        order. If the breaker activates mid-pass the rest of the pass is
        skipped.
        """
        result = ProcessResult()

        if not self._breaker.allow():
            result.circuit_open = True
            result.error = self._breaker.open_error()
            logger.debug(
                "Retry queue pass skipped, circuit breaker active",
                time_until_retry=result.error.time_until_retry,
            )
            self._schedule_next(result)
            return result

        now = self._clock()
        due = sorted(
            (
                item
                for item in self._items.values()
                if item.next_retry_time <= now and item.id not in self._in_flight
            ),
            key=lambda i: i.sort_key,
        )

        for item in due:
            if not self._breaker.allow():
                result.circuit_open = True
                result.error = self._breaker.open_error()
                break
            # Another pass may have dispatched or removed it while we awaited.
            if item.id not in self._items or item.id in self._in_flight:
                continue

            processor = self._processors.get(item.operation_type)
            if processor is None:
                logger.warning(
                    "No processor registered for operation type",
                    operation_type=item.operation_type,
                    item_id=item.id,
                )
                result.skipped += 1
                continue

            result.dispatched += 1
            self._in_flight.add(item.id)
            error: str | None = None
            try:
                ok = bool(await processor(item))
            except Exception as e:
                ok = False
                error = str(e) or type(e).__name__
            finally:
                self._in_flight.discard(item.id)

            if ok:
                self._breaker.record_success()
                result.succeeded += 1
                await self.dequeue(item.id)
            else:
                await self._handle_failure(item, error, result)

        self._schedule_next(result)
        return result

    async def _handle_failure(
        self,
        item: RetryQueueItem,
        error: str | None,
        result: ProcessResult,
    ) -> None:
        result.failed += 1
        self._breaker.record_failure()
        if item.id not in self._items:
            return

        item.retry_count += 1
        if error is not None:
            item.last_error = error

        if item.retry_count >= self._config.max_retries:
            logger.error(
                "Max retries exceeded, dropping side effect",
                item_id=item.id,
                operation_type=item.operation_type,
                max_retries=self._config.max_retries,
                last_error=item.last_error,
            )
            result.dropped += 1
            result.dropped_ids.append(item.id)
            await self.dequeue(item.id)
            return

        item.next_retry_time = self._clock() + self._config.backoff_for(item.retry_count)
        await self._persist()
        logger.debug(
            "Side effect rescheduled",
            item_id=item.id,
            retry_count=item.retry_count,
            next_retry_time=item.next_retry_time,
        )

    def _next_wakeup(self) -> float | None:
        if not self._items:
            return None
        wake = min(item.next_retry_time for item in self._items.values())
        reset_time = self._breaker.reset_time
        if reset_time is not None and reset_time > wake:
            wake = reset_time
        return wake

    def _schedule_next(self, result: ProcessResult) -> None:
        result.next_wakeup = self._next_wakeup()
        if result.next_wakeup is not None:
            self._schedule(result.next_wakeup)

    def _schedule(self, when: float) -> None:
        """Replace the pending wake-up with one at ``when``."""
        if not self._config.auto_process or self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._timer is not None:
            self._timer.cancel()
        delay = max(0.0, when - self._clock())
        self._timer = loop.call_later(delay, self._wake)

    def _wake(self) -> None:
        self._timer = None
        self._background.spawn(self.process_due(), description="retry queue pass")

    async def clear(self) -> None:
        """Remove every item and the persisted blob."""
        self._items.clear()
        self._cancel_timer()
        if self._store is None:
            return
        try:
            await self._store.delete(self._config.storage_key)
        except Exception as e:
            logger.error("Failed to clear persisted retry queue", error=str(e))

    async def close(self) -> None:
        """Cancel the scheduled wake-up and wait for a running pass."""
        self._closed = True
        self._cancel_timer()
        await self._background.drain()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _persist(self) -> None:
        if self._store is None:
            return
        state = {
            "sequence": self._sequence,
            "items": [item.to_dict() for item in self.items()],
        }
        try:
            await self._store.set(self._config.storage_key, json.dumps(state))
        except Exception as e:
            logger.error("Failed to persist retry queue", error=str(e))

    async def _load(self) -> int:
        if self._store is None:
            return 0
        try:
            raw = await self._store.get(self._config.storage_key)
        except Exception as e:
            logger.error("Failed to load retry queue", error=str(e))
            return 0
        if not raw:
            return 0

        try:
            state = json.loads(raw)
            items = [RetryQueueItem.from_dict(d) for d in state.get("items", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("Persisted retry queue is corrupt, starting empty", error=str(e))
            return 0

        self._items = {item.id: item for item in items}
        self._sequence = max(
            [int(state.get("sequence", 0))] + [item.sequence for item in items]
        )
        return len(items)

    def __repr__(self) -> str:
        return (
            f"RetryQueue(size={len(self._items)}, "
            f"breaker_active={self._breaker.is_active})"
        )
