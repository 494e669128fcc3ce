"""
Rate-limited request queue.

Serializes outbound calls to third-party services that tolerate roughly one
request per second (reverse geocoding, venue search). Only one operation is
in flight at a time and consecutive starts are spaced by a minimum delay.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from app.config import settings
from app.errors import QueueCancelledError, QueueTimeoutError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class QueueItemState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(eq=False)
class QueueItem:
    """A pending operation owned by the queue."""
    id: int
    operation: Operation
    kind: str
    priority: bool
    future: "asyncio.Future[Any]"
    enqueued_at: float
    state: QueueItemState = QueueItemState.QUEUED
    started_at: Optional[float] = None
    timeout_handle: Optional[asyncio.TimerHandle] = None


@dataclass
class QueueStatus:
    """Queue position report for display purposes."""
    depth: int
    processing: int
    waiting: int


class RateLimitedQueue:
    """
    FIFO-with-priority queue with a single in-flight operation.

    Priority items run before every non-priority item; ordering is FIFO
    within each class. A single pump task drains the queue and exits once it
    is empty; the next enqueue starts a new pump.
    """

    def __init__(
        self,
        min_delay: Optional[float] = None,
        settle_delay: Optional[float] = None,
        item_timeout: Optional[float] = None,
    ) -> None:
        self.min_delay = settings.queue_min_delay if min_delay is None else min_delay
        self.settle_delay = settings.queue_settle_delay if settle_delay is None else settle_delay
        self.item_timeout = settings.queue_item_timeout if item_timeout is None else item_timeout
        self._items: List[QueueItem] = []
        self._active: Optional[QueueItem] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._last_started_at: Optional[float] = None
        self._last_finished_at: Optional[float] = None
        self._ids = itertools.count(1)

    async def enqueue(self, operation: Operation, kind: str, priority: bool = False) -> Any:
        """
        Queue an operation and wait for its result.

        Args:
            operation: Zero-argument coroutine function performing the call
            kind: Label used for logging and reporting (e.g. "reverse_geocode")
            priority: Run ahead of every non-priority item

        Returns:
            Whatever the operation returns

        Raises:
            QueueTimeoutError: The item waited longer than `item_timeout`
            QueueCancelledError: The queue was cleared before the item started
            Exception: Whatever the operation itself raised
        """
        loop = asyncio.get_running_loop()
        item = QueueItem(
            id=next(self._ids),
            operation=operation,
            kind=kind,
            priority=priority,
            future=loop.create_future(),
            enqueued_at=loop.time(),
        )
        item.timeout_handle = loop.call_later(self.item_timeout, self._expire, item)
        item.future.add_done_callback(lambda _future: self._discard(item))
        self._insert(item)
        logger.debug(
            f"Queued {kind} request #{item.id} (priority={priority}, waiting={len(self._items)})"
        )
        self._ensure_pump()
        return await item.future

    def clear(self) -> int:
        """
        Reject every queued item with a cancellation error.

        The item currently processing is left to finish.

        Returns:
            Number of rejected items
        """
        items, self._items = self._items, []
        for item in items:
            if item.timeout_handle:
                item.timeout_handle.cancel()
            item.state = QueueItemState.FAILED
            if not item.future.done():
                item.future.set_exception(
                    QueueCancelledError(f"Queued '{item.kind}' request #{item.id} was cancelled")
                )
        if items:
            logger.info(f"Cleared {len(items)} queued requests")
        return len(items)

    def status(self) -> QueueStatus:
        processing = 1 if self._active is not None else 0
        waiting = len(self._items)
        return QueueStatus(depth=processing + waiting, processing=processing, waiting=waiting)

    @property
    def is_running(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    async def aclose(self) -> None:
        """Reject queued work and stop the pump."""
        self.clear()
        if self.is_running:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        self._pump_task = None

    def _insert(self, item: QueueItem) -> None:
        position = len(self._items)
        if item.priority:
            position = next(
                (index for index, queued in enumerate(self._items) if not queued.priority),
                len(self._items),
            )
        self._items.insert(position, item)

    def _ensure_pump(self) -> None:
        if not self.is_running:
            self._pump_task = asyncio.create_task(self._pump())

    def _next_start_at(self) -> float:
        candidates = [0.0]
        if self._last_started_at is not None:
            candidates.append(self._last_started_at + self.min_delay)
        if self._last_finished_at is not None:
            candidates.append(self._last_finished_at + self.settle_delay)
        return max(candidates)

    async def _pump(self) -> None:
        loop = asyncio.get_running_loop()
        while self._items:
            wait = self._next_start_at() - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            # Items may have timed out or been cleared while sleeping
            if not self._items:
                break
            item = self._items.pop(0)
            if item.future.done():
                continue
            await self._run(item, loop)

    async def _run(self, item: QueueItem, loop: asyncio.AbstractEventLoop) -> None:
        if item.timeout_handle:
            item.timeout_handle.cancel()
        item.state = QueueItemState.PROCESSING
        item.started_at = self._last_started_at = loop.time()
        self._active = item
        logger.debug(f"Processing {item.kind} request #{item.id}")
        try:
            result = await item.operation()
        except asyncio.CancelledError:
            item.state = QueueItemState.FAILED
            item.future.cancel()
            raise
        except Exception as exc:
            item.state = QueueItemState.FAILED
            logger.warning(f"Queued {item.kind} request #{item.id} failed: {exc}")
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            item.state = QueueItemState.COMPLETED
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active = None
            self._last_finished_at = loop.time()

    def _expire(self, item: QueueItem) -> None:
        if item.state is not QueueItemState.QUEUED or item.future.done():
            return
        if item in self._items:
            self._items.remove(item)
        item.state = QueueItemState.FAILED
        waited = asyncio.get_running_loop().time() - item.enqueued_at
        logger.warning(f"Queued {item.kind} request #{item.id} timed out after {waited:.1f}s")
        item.future.set_exception(QueueTimeoutError(item.kind, waited))

    def _discard(self, item: QueueItem) -> None:
        # Abandoned or rejected items must never be started
        if item.timeout_handle:
            item.timeout_handle.cancel()
        if item in self._items:
            self._items.remove(item)
            item.state = QueueItemState.FAILED
