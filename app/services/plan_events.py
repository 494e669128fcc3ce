"""
Plan event bus.

The render callback of the planner: every state change is published as an
event and fanned out to subscribers (one asyncio.Queue each), which the
router turns into a Server-Sent-Events stream.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

Event = Tuple[str, Dict[str, Any]]


def format_sse_event(event_type: str, data: Dict[str, Any]) -> str:
    """Format an SSE frame."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"


class PlanEventBus:
    """Fan-out publisher of plan events."""

    def __init__(self, max_queue_size: int = 256) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: List["asyncio.Queue[Event]"] = []

    def subscribe(self) -> "asyncio.Queue[Event]":
        queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[Event]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """Deliver an event to every subscriber without blocking."""
        logger.debug(f"Plan event: {event_type}")
        for queue in list(self._subscribers):
            try:
                queue.put_nowait((event_type, data))
            except asyncio.QueueFull:
                # Slow consumers lose events rather than stalling generation
                logger.warning(f"Dropping '{event_type}' event for a slow subscriber")
