"""Event Sink Registry: per-discussion broadcast of stream events.

Every attached subscription receives every event published after it
attached. Publishing never blocks and never buffers for subscribers
that are not attached yet.
"""

import asyncio
import logging
import threading
from collections import defaultdict

from src.models import StreamEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One subscriber's queue of pending events."""

    def __init__(self, discussion_id: str, max_queue: int = 0) -> None:
        self.discussion_id = discussion_id
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=max_queue)
        self.dropped = 0

    def deliver(self, event: StreamEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Subscriber queue full for discussion %s, dropping %s event",
                self.discussion_id,
                event.type,
            )

    async def get(self, timeout: float | None = None) -> StreamEvent | None:
        """Next event, or None if nothing arrived within timeout seconds."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class EventSinkRegistry:
    """Tracks the live subscriptions of each discussion."""

    def __init__(self, max_queue: int = 0) -> None:
        self._max_queue = max_queue
        self._sinks: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def attach(self, discussion_id: str) -> Subscription:
        subscription = Subscription(discussion_id, self._max_queue)
        with self._lock:
            self._sinks[discussion_id].append(subscription)
            count = len(self._sinks[discussion_id])
        logger.debug("Subscriber attached to %s (%d live)", discussion_id, count)
        return subscription

    def detach(self, discussion_id: str, subscription: Subscription) -> None:
        with self._lock:
            sinks = self._sinks.get(discussion_id)
            if not sinks or subscription not in sinks:
                return
            sinks.remove(subscription)
            if not sinks:
                del self._sinks[discussion_id]
        logger.debug("Subscriber detached from %s", discussion_id)

    def publish(self, discussion_id: str, event: StreamEvent) -> None:
        """Deliver to every attached subscriber. No subscribers is a silent no-op."""
        with self._lock:
            sinks = list(self._sinks.get(discussion_id, ()))
        for subscription in sinks:
            subscription.deliver(event)

    def subscriber_count(self, discussion_id: str) -> int:
        with self._lock:
            return len(self._sinks.get(discussion_id, ()))
