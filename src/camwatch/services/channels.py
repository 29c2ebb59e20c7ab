"""Ordered fan-out event channels for frames and motion events.

Each subscriber gets its own bounded asyncio.Queue. Publishing never blocks
the producer: when a subscriber falls behind, its oldest queued item is
dropped to make room (live view prefers fresh frames). Closing a channel
ends every current subscription; the channel itself stays usable for new
subscribers.

All methods must be called from the event loop thread.

Logging Strategy:
    DEBUG - Subscribe/unsubscribe, drops for slow consumers
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Final, Generic, Optional, TypeVar

from .. import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CHANNEL_SIZE: Final[int] = 8
"""Queued items per subscriber before the oldest is dropped."""

_CLOSED: Final[object] = object()
"""Sentinel that ends a subscription."""

# ============================================================================
# Subscription
# ============================================================================

class Subscription(Generic[T]):
    """One consumer's view of a channel. Async-iterable."""

    def __init__(self, channel: EventChannel[T], maxsize: int) -> None:
        self._channel = channel
        # One extra slot so the close sentinel always fits
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._limit = maxsize
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: T) -> None:
        if self._closed:
            return
        while self._queue.qsize() >= self._limit:
            self._queue.get_nowait()
            self.dropped += 1
            metrics.channel_dropped_total.labels(channel=self._channel.name).inc()
        self._queue.put_nowait(item)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Next item, or None once the subscription is closed.

        Raises:
            asyncio.TimeoutError: Nothing arrived within timeout
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            # Leave the sentinel for any later get()
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        """Unsubscribe."""
        self._channel.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


# ============================================================================
# Channel
# ============================================================================

class EventChannel(Generic[T]):
    """Named fan-out channel preserving publish order per subscriber."""

    def __init__(self, name: str, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.name = name
        self.maxsize = maxsize
        self._subscribers: list[Subscription[T]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, maxsize or self.maxsize)
        self._subscribers.append(subscription)
        metrics.channel_subscribers.labels(channel=self.name).set(len(self._subscribers))
        logger.debug(f"[{self.name}] subscriber added (total: {len(self._subscribers)})")
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            metrics.channel_subscribers.labels(channel=self.name).set(len(self._subscribers))
            logger.debug(f"[{self.name}] subscriber removed (remaining: {len(self._subscribers)})")
        subscription._close()

    def publish(self, item: T) -> None:
        for subscription in self._subscribers:
            subscription._offer(item)

    def close(self) -> None:
        """End all current subscriptions."""
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription._close()
        metrics.channel_subscribers.labels(channel=self.name).set(0)
        if subscribers:
            logger.debug(f"[{self.name}] closed {len(subscribers)} subscription(s)")
